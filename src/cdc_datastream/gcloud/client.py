"""Async gcloud CLI wrapper used as the control-plane client."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

import structlog

from cdc_datastream.errors import ControlPlaneError

logger = structlog.get_logger()

_SECRET_FLAGS = ("password",)


@runtime_checkable
class ControlPlaneClient(Protocol):
    """Executes one control-plane operation and returns the decoded response."""

    async def execute(self, args: Sequence[str]) -> Any:
        """Run *args* (e.g. ``["compute", "networks", "list"]``) for the project."""
        ...


def redact(args: Sequence[str]) -> list[str]:
    """Mask the value of any ``--*password*=`` flag before it is logged."""
    out: list[str] = []
    for arg in args:
        flag, sep, _value = arg.partition("=")
        if sep and flag.startswith("--") and any(s in flag for s in _SECRET_FLAGS):
            out.append(f"{flag}=***")
        else:
            out.append(arg)
    return out


class GcloudClient:
    """Runs ``gcloud`` as a subprocess scoped to one project.

    Every call gets ``--project`` and ``--format=json`` appended and is bounded
    by *timeout* seconds; on expiry the subprocess is killed and the call fails
    like any other.
    """

    def __init__(
        self,
        project: str,
        *,
        binary: str = "gcloud",
        timeout: float = 2700.0,
    ) -> None:
        self._project = project
        self._binary = binary
        self._timeout = timeout

    @property
    def project(self) -> str:
        return self._project

    async def execute(self, args: Sequence[str]) -> Any:
        full_args = [*args, f"--project={self._project}", "--format=json"]
        safe_args = redact(full_args)
        logger.debug("gcloud.exec", args=safe_args)

        try:
            proc = await asyncio.create_subprocess_exec(
                self._binary,
                *full_args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ControlPlaneError(safe_args, str(exc)) from exc

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self._timeout
            )
        except TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise ControlPlaneError(
                safe_args, f"timed out after {self._timeout:.0f}s"
            ) from exc
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise

        if proc.returncode != 0:
            detail = stderr.decode(errors="replace").strip() or (
                f"exit status {proc.returncode}"
            )
            raise ControlPlaneError(safe_args, detail)

        text = stdout.decode(errors="replace").strip()
        if not text:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise ControlPlaneError(safe_args, f"invalid JSON output: {exc}") from exc
