"""Datastream operations: private connections, connection profiles, streams."""

from __future__ import annotations

import asyncio
import json
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import structlog

from cdc_datastream.config.models import (
    OrchestratorSettings,
    ProvisioningConfig,
    ResourceKind,
)
from cdc_datastream.errors import InvalidStateError
from cdc_datastream.gcloud.bigquery import dataset_id_for, ensure_dataset
from cdc_datastream.gcloud.client import ControlPlaneClient

logger = structlog.get_logger()

# Datastream only supports replicating the ``public`` schema for now.
SOURCE_SCHEMA = "public"


def resource_path(cfg: ProvisioningConfig, collection: str, name: str) -> str:
    """Fully-qualified Datastream resource name."""
    return f"projects/{cfg.project}/locations/{cfg.region}/{collection}/{name}"


def _location(cfg: ProvisioningConfig) -> str:
    return f"--location={cfg.region}"


async def _list(
    client: ControlPlaneClient, cfg: ProvisioningConfig, collection: str, *extra: str
) -> list[dict[str, Any]]:
    items = await client.execute(
        ["datastream", collection, "list", _location(cfg), *extra]
    )
    return list(items or [])


# -- Private connection ------------------------------------------------------


async def private_connection_exists(
    client: ControlPlaneClient, cfg: ProvisioningConfig, name: str
) -> bool:
    target = resource_path(cfg, "privateConnections", name)
    conns = await _list(client, cfg, "private-connections")
    return any(c.get("name") == target for c in conns)


async def private_connection_state(
    client: ControlPlaneClient, cfg: ProvisioningConfig, name: str
) -> str:
    target = resource_path(cfg, "privateConnections", name)
    conns = await _list(client, cfg, "private-connections", f"--filter=name={target}")
    if len(conns) != 1:
        raise InvalidStateError(
            ResourceKind.PRIVATE_CONNECTION,
            name,
            f"expected exactly one private connection, got {len(conns)}",
        )
    return str(conns[0].get("state", ""))


async def create_private_connection(
    client: ControlPlaneClient,
    cfg: ProvisioningConfig,
    settings: OrchestratorSettings,
    name: str,
) -> None:
    logger.info("private_connection.creating", name=name, vpc=settings.vpc_name)
    await client.execute(
        [
            "datastream",
            "private-connections",
            "create",
            name,
            f"--display-name={name}",
            f"--vpc={settings.vpc_name}",
            f"--subnet={settings.datastream_subnet}",
            _location(cfg),
        ]
    )


async def delete_private_connection(
    client: ControlPlaneClient, cfg: ProvisioningConfig, name: str
) -> None:
    logger.info("private_connection.deleting", name=name)
    await client.execute(
        [
            "datastream",
            "private-connections",
            "delete",
            name,
            _location(cfg),
            "--quiet",
            "--force",
        ]
    )


# -- Connection profiles -----------------------------------------------------


async def profile_readiness(
    client: ControlPlaneClient, cfg: ProvisioningConfig, name: str
) -> bool | None:
    """``None`` if absent, ``False`` if listed but not usable yet, else ``True``.

    Profiles show up in the listing before they are ready; a non-empty
    display name is the signal that creation has actually finished.
    """
    target = resource_path(cfg, "connectionProfiles", name)
    for profile in await _list(client, cfg, "connection-profiles"):
        if profile.get("name") == target:
            display_name = profile.get("displayName") or profile.get("display_name")
            return bool(display_name)
    return None


async def create_postgres_profile(
    client: ControlPlaneClient,
    cfg: ProvisioningConfig,
    settings: OrchestratorSettings,
    name: str,
    host: str,
) -> None:
    logger.info("profile.creating", name=name, type="postgresql", host=host)
    await client.execute(
        [
            "datastream",
            "connection-profiles",
            "create",
            name,
            f"--display-name={name}",
            "--type=postgresql",
            _location(cfg),
            f"--private-connection={settings.private_connection_name}",
            f"--postgresql-database={cfg.database}",
            f"--postgresql-hostname={host}",
            f"--postgresql-username={cfg.user}",
            f"--postgresql-password={cfg.password.get_secret_value()}",
            f"--postgresql-port={cfg.port}",
        ]
    )


async def create_bigquery_profile(
    client: ControlPlaneClient, cfg: ProvisioningConfig, name: str
) -> None:
    logger.info("profile.creating", name=name, type="bigquery")
    await client.execute(
        [
            "datastream",
            "connection-profiles",
            "create",
            name,
            f"--display-name={name}",
            "--type=bigquery",
            _location(cfg),
        ]
    )


async def delete_profile(
    client: ControlPlaneClient, cfg: ProvisioningConfig, name: str
) -> None:
    logger.info("profile.deleting", name=name)
    await client.execute(
        [
            "datastream",
            "connection-profiles",
            "delete",
            name,
            _location(cfg),
            "--quiet",
        ]
    )


# -- Streams -----------------------------------------------------------------


async def list_stream_names(
    client: ControlPlaneClient, cfg: ProvisioningConfig
) -> list[str]:
    """Short names of every stream in the pipeline's region."""
    streams = await _list(client, cfg, "streams")
    return [s["name"].rsplit("/", 1)[-1] for s in streams if s.get("name")]


async def stream_exists(
    client: ControlPlaneClient, cfg: ProvisioningConfig, name: str
) -> bool:
    return name in await list_stream_names(client, cfg)


def build_source_config(cfg: ProvisioningConfig) -> dict[str, Any]:
    """PostgreSQL source config; an include list takes precedence over exclude."""
    source: dict[str, Any] = {
        "replicationSlot": cfg.replication_slot,
        "publication": cfg.publication,
    }
    table_filter = cfg.table_filter
    if table_filter is not None:
        source[table_filter.mode] = {
            "postgresqlSchemas": [
                {
                    "schema": SOURCE_SCHEMA,
                    "postgresqlTables": [{"table": t} for t in table_filter.tables],
                }
            ]
        }
    return source


def build_destination_config(
    cfg: ProvisioningConfig, dataset_id: str
) -> dict[str, Any]:
    return {
        "singleTargetDataset": {"datasetId": f"{cfg.project}:{dataset_id}"},
        "dataFreshness": f"{cfg.data_freshness}s",
    }


@contextmanager
def _json_tempfile(prefix: str, payload: dict[str, Any]) -> Iterator[Path]:
    """Write *payload* to a temp file for gcloud's ``--*-config`` flags."""
    with tempfile.NamedTemporaryFile(
        "w", prefix=prefix, suffix=".json", delete=False
    ) as f:
        json.dump(payload, f)
        path = Path(f.name)
    try:
        yield path
    finally:
        path.unlink(missing_ok=True)


def console_url(cfg: ProvisioningConfig) -> str:
    return (
        "https://console.cloud.google.com/datastream/streams"
        f"?referrer=search&project={cfg.project}"
    )


async def create_stream(
    client: ControlPlaneClient,
    cfg: ProvisioningConfig,
    settings: OrchestratorSettings,
    name: str,
    *,
    source_profile: str,
    destination_profile: str,
) -> None:
    """Ensure the target dataset, then create the stream with a full backfill.

    Streams are created paused; the operator starts them from the console.
    """
    dataset_id = dataset_id_for(cfg.database, settings.dataset_prefix)
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(
        None, ensure_dataset, cfg.project, dataset_id, cfg.region
    )

    with (
        _json_tempfile("ds-pg-config", build_source_config(cfg)) as pg_config,
        _json_tempfile(
            "ds-bq-config", build_destination_config(cfg, dataset_id)
        ) as bq_config,
    ):
        logger.info("stream.creating", name=name, dataset=dataset_id)
        await client.execute(
            [
                "datastream",
                "streams",
                "create",
                name,
                f"--display-name={name}",
                _location(cfg),
                "--source="
                + resource_path(cfg, "connectionProfiles", source_profile),
                f"--postgresql-source-config={pg_config}",
                "--destination="
                + resource_path(cfg, "connectionProfiles", destination_profile),
                f"--bigquery-destination-config={bq_config}",
                "--backfill-all",
                f"--labels={settings.resource_label}",
            ]
        )

    logger.info(
        "stream.created_activate_in_console", name=name, url=console_url(cfg)
    )


async def delete_stream(
    client: ControlPlaneClient, cfg: ProvisioningConfig, name: str
) -> None:
    logger.info("stream.deleting", name=name)
    await client.execute(
        ["datastream", "streams", "delete", name, _location(cfg), "--quiet"]
    )
