"""Provisioner protocol and the Datastream implementation."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

import structlog

from cdc_datastream.config.models import OrchestratorSettings, ProvisioningConfig
from cdc_datastream.gcloud.client import ControlPlaneClient, GcloudClient
from cdc_datastream.resources.catalog import ResourceCatalog, build_catalog
from cdc_datastream.resources.orchestrator import (
    CreationOrchestrator,
    DeletionOrchestrator,
)
from cdc_datastream.resources.readiness import ReadinessPoller, SleepFn

logger = structlog.get_logger()


@runtime_checkable
class Provisioner(Protocol):
    """Creates and destroys the infrastructure behind one pipeline."""

    async def provision(self, cfg: ProvisioningConfig) -> dict[str, Any]:
        """Ensure all required resources exist for the pipeline."""
        ...

    async def teardown(self, cfg: ProvisioningConfig) -> dict[str, Any]:
        """Remove the pipeline's resources, keeping shared ones still in use."""
        ...


class DatastreamProvisioner:
    """Provisions Cloud SQL → BigQuery Datastream pipelines through gcloud.

    A ``GcloudClient`` scoped to the pipeline's project is built per run unless
    *client* is given; *sleep* is passed through to the readiness poller.
    """

    def __init__(
        self,
        settings: OrchestratorSettings | None = None,
        *,
        client: ControlPlaneClient | None = None,
        sleep: SleepFn | None = None,
    ) -> None:
        self._settings = settings or OrchestratorSettings()
        self._client = client
        self._sleep = sleep

    def catalog(self, cfg: ProvisioningConfig) -> ResourceCatalog:
        client = self._client or GcloudClient(
            cfg.project,
            binary=self._settings.gcloud_binary,
            timeout=self._settings.call_timeout_seconds,
        )
        poller_kwargs: dict[str, Any] = {}
        if self._sleep is not None:
            poller_kwargs["sleep"] = self._sleep
        poller = ReadinessPoller(
            interval=self._settings.poll_interval_seconds,
            profile_attempts=self._settings.profile_ready_attempts,
            **poller_kwargs,
        )
        return build_catalog(client, cfg, self._settings, poller)

    async def provision(self, cfg: ProvisioningConfig) -> dict[str, Any]:
        logger.info(
            "datastream.provision_started",
            project=cfg.project,
            region=cfg.region,
            database=cfg.database,
        )
        created = await CreationOrchestrator(self.catalog(cfg)).create_all()
        logger.info("datastream.provisioned", created=len(created))
        return {"created": [f"{kind}:{name}" for kind, name in created]}

    async def teardown(self, cfg: ProvisioningConfig) -> dict[str, Any]:
        logger.info(
            "datastream.teardown_started",
            project=cfg.project,
            region=cfg.region,
            database=cfg.database,
        )
        deleted = await DeletionOrchestrator(self.catalog(cfg)).delete_all()
        logger.info("datastream.torn_down", deleted=len(deleted))
        return {"deleted": [f"{kind}:{name}" for kind, name in deleted]}
