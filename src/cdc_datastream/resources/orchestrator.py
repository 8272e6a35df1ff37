"""Creation and deletion orchestrators for a pipeline's resources."""

from __future__ import annotations

import structlog

from cdc_datastream.config.models import ResourceKind
from cdc_datastream.errors import (
    CreateError,
    DeleteError,
    ExistenceCheckError,
    ReadinessTimeoutError,
    TeardownError,
)
from cdc_datastream.resources.catalog import (
    ResourceCatalog,
    creation_order,
    deletion_order,
)

logger = structlog.get_logger()

LedgerEntry = tuple[ResourceKind, str]


class CreationOrchestrator:
    """Creates missing resources in dependency order, rolling back on failure.

    Existing resources are trusted as-is; nothing is reconciled.  On any
    failure every resource created earlier in the same run is deleted in
    reverse order, then the original error is raised.
    """

    def __init__(self, catalog: ResourceCatalog) -> None:
        self._catalog = catalog

    async def create_all(self) -> list[LedgerEntry]:
        logger.info("apis.ensuring")
        await self._catalog.ensure_apis()

        ledger: list[LedgerEntry] = []
        for kind in creation_order():
            descriptor = self._catalog[kind]
            name = self._catalog.name_of(kind)

            try:
                exists = await descriptor.exists(name)
            except Exception as exc:
                await self._rollback(ledger)
                if isinstance(exc, ExistenceCheckError):
                    raise
                raise ExistenceCheckError(kind, name, str(exc)) from exc

            if exists:
                logger.info("resource.exists_skip", kind=str(kind), name=name)
                continue

            logger.info("resource.creating", kind=str(kind), name=name)
            try:
                await descriptor.create(name)
                if descriptor.metadata.verify_after_create:
                    await self._verify_created(kind, name)
                ledger.append((kind, name))
            except Exception as exc:
                logger.error(
                    "resource.create_failed", kind=str(kind), name=name, error=str(exc)
                )
                await self._rollback(ledger)
                if isinstance(exc, CreateError):
                    raise
                raise CreateError(kind, name, str(exc)) from exc

            logger.info("resource.created", kind=str(kind), name=name)

        return ledger

    async def _verify_created(self, kind: ResourceKind, name: str) -> None:
        """Guard against creates that report success but leave nothing behind."""
        descriptor = self._catalog[kind]
        probe = descriptor.verify or descriptor.exists
        try:
            exists = await probe(name)
        except ReadinessTimeoutError as exc:
            raise CreateError(kind, name, str(exc)) from exc
        if not exists:
            raise CreateError(
                kind, name, "resource not found after create reported success"
            )

    async def _rollback(self, ledger: list[LedgerEntry]) -> None:
        """Best-effort deletion of everything in *ledger*, newest first."""
        if not ledger:
            return
        logger.warning(
            "rollback.started", resources=[f"{k}:{n}" for k, n in reversed(ledger)]
        )
        failed: list[LedgerEntry] = []
        for kind, name in reversed(ledger):
            try:
                await self._catalog[kind].delete(name)
                logger.info("rollback.deleted", kind=str(kind), name=name)
            except Exception as exc:
                failed.append((kind, name))
                logger.error(
                    "rollback.delete_failed", kind=str(kind), name=name, error=str(exc)
                )
        if failed:
            logger.error(
                "rollback.incomplete, manual cleanup required",
                resources=[f"{k}:{n}" for k, n in failed],
            )


class DeletionOrchestrator:
    """Tears down a pipeline's resources, keeping shared ones other pipelines use.

    Failures are collected rather than raised immediately so one stuck
    resource doesn't block cleanup of the rest; a ``TeardownError`` listing
    every failure is raised once all kinds have been attempted.
    """

    def __init__(self, catalog: ResourceCatalog) -> None:
        self._catalog = catalog

    async def other_pipelines_exist(self) -> bool:
        own = self._catalog.name_of(ResourceKind.STREAM)
        others = [s for s in await self._catalog.list_streams() if s != own]
        if others:
            logger.info("teardown.other_streams_found", streams=others)
        return bool(others)

    async def delete_all(self) -> list[LedgerEntry]:
        shared_in_use = await self.other_pipelines_exist()

        deleted: list[LedgerEntry] = []
        failures: list[DeleteError] = []
        for kind in deletion_order():
            descriptor = self._catalog[kind]
            name = self._catalog.name_of(kind)

            if descriptor.shared and shared_in_use:
                logger.info(
                    "teardown.shared_skip",
                    kind=str(kind),
                    name=name,
                    reason="other datastream(s) depend on this resource",
                )
                continue

            try:
                if not await descriptor.exists(name):
                    logger.info("resource.absent_skip", kind=str(kind), name=name)
                    continue
                logger.info("resource.deleting", kind=str(kind), name=name)
                await descriptor.delete(name)
            except Exception as exc:
                logger.error(
                    "resource.delete_failed", kind=str(kind), name=name, error=str(exc)
                )
                error = DeleteError(kind, name, str(exc))
                error.__cause__ = exc
                failures.append(error)
                continue

            deleted.append((kind, name))
            logger.info("resource.deleted", kind=str(kind), name=name)

        if failures:
            raise TeardownError(failures)
        return deleted
