"""Service usage: enabling and disabling Google APIs."""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from cdc_datastream.gcloud.client import ControlPlaneClient

logger = structlog.get_logger()


async def list_enabled_apis(client: ControlPlaneClient) -> list[str]:
    """Return the short names (``foo.googleapis.com``) of enabled APIs."""
    apis = await client.execute(["services", "list", "--enabled"]) or []
    return [a["name"].rsplit("/", 1)[-1] for a in apis if a.get("name")]


async def enable_apis(client: ControlPlaneClient, apis: Iterable[str]) -> list[str]:
    """Enable every API in *apis* that isn't already enabled.

    Returns the APIs that were actually enabled by this call.
    """
    enabled = set(await list_enabled_apis(client))
    newly_enabled: list[str] = []
    for api in apis:
        if api in enabled:
            logger.debug("apis.already_enabled", api=api)
            continue
        logger.info("apis.enabling", api=api)
        await client.execute(["services", "enable", api])
        newly_enabled.append(api)
    return newly_enabled


async def api_enabled(client: ControlPlaneClient, api: str) -> bool:
    return api in await list_enabled_apis(client)


async def disable_api(client: ControlPlaneClient, api: str) -> None:
    logger.info("apis.disabling", api=api)
    await client.execute(["services", "disable", api, "--force"])
