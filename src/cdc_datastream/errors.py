"""Exception hierarchy for Datastream provisioning."""

from __future__ import annotations

from collections.abc import Sequence


class DatastreamError(Exception):
    """Base class for every error raised by this package."""


class ControlPlaneError(DatastreamError):
    """Raised when a gcloud invocation fails or exceeds its deadline."""

    def __init__(self, command: Sequence[str], detail: str) -> None:
        self.command = list(command)
        self.detail = detail
        super().__init__(f"gcloud {' '.join(self.command)} failed: {detail}")


class ResourceError(DatastreamError):
    """An error tied to one resource of the catalog."""

    action = "handle"

    def __init__(self, kind: str, name: str, reason: str = "") -> None:
        self.kind = kind
        self.name = name
        self.reason = reason
        msg = f"failed to {self.action} {kind} [{name}]"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class ExistenceCheckError(ResourceError):
    action = "check existence of"


class ReadinessTimeoutError(ExistenceCheckError):
    """A connection profile never reported ready within the attempt bound."""

    action = "wait for readiness of"


class CreateError(ResourceError):
    action = "create"


class InvalidStateError(CreateError):
    """The private connection reported a state outside CREATING/CREATED."""

    action = "bring up"


class DeleteError(ResourceError):
    action = "delete"


class TeardownError(DatastreamError):
    """Aggregate of every resource that could not be deleted."""

    def __init__(self, failures: Sequence[DeleteError]) -> None:
        self.failures = list(failures)
        resources = ", ".join(f"{f.kind} [{f.name}]" for f in self.failures)
        super().__init__(
            f"{len(self.failures)} error(s) when deleting datastream; "
            f"needs manual cleanup: {resources}"
        )


class CredentialResolutionError(DatastreamError):
    """No (or an ambiguous) Cloud SQL instance, user or secret was found."""
