"""VPC network and firewall rule operations."""

from __future__ import annotations

import structlog

from cdc_datastream.gcloud.client import ControlPlaneClient

logger = structlog.get_logger()


async def _names(client: ControlPlaneClient, collection: str) -> set[str]:
    items = await client.execute(["compute", collection, "list"]) or []
    return {item.get("name", "") for item in items}


async def vpc_exists(client: ControlPlaneClient, name: str) -> bool:
    return name in await _names(client, "networks")


async def create_vpc(client: ControlPlaneClient, name: str) -> None:
    """Create an auto-mode network; its regional subnets share the network name."""
    logger.info("vpc.creating", name=name)
    await client.execute(
        ["compute", "networks", "create", name, "--subnet-mode=auto"]
    )


async def delete_vpc(client: ControlPlaneClient, name: str) -> None:
    logger.info("vpc.deleting", name=name)
    await client.execute(["compute", "networks", "delete", name, "--quiet"])


async def firewall_rule_exists(client: ControlPlaneClient, name: str) -> bool:
    return name in await _names(client, "firewall-rules")


async def create_firewall_rule(
    client: ControlPlaneClient,
    name: str,
    *,
    network: str,
    source_range: str,
    port: int,
) -> None:
    """Allow the Datastream subnet to reach the proxy VM on *port*."""
    logger.info("firewall.creating", name=name, network=network, port=port)
    await client.execute(
        [
            "compute",
            "firewall-rules",
            "create",
            name,
            f"--source-ranges={source_range}",
            f"--network={network}",
            f"--allow=tcp:{port}",
            "--direction=INGRESS",
        ]
    )


async def delete_firewall_rule(client: ControlPlaneClient, name: str) -> None:
    logger.info("firewall.deleting", name=name)
    await client.execute(["compute", "firewall-rules", "delete", name, "--quiet"])
