"""IAM service account and Cloud SQL Auth Proxy VM operations."""

from __future__ import annotations

from typing import Any

import structlog

from cdc_datastream.config.models import (
    OrchestratorSettings,
    ProvisioningConfig,
    ResourceKind,
)
from cdc_datastream.errors import CreateError
from cdc_datastream.gcloud.client import ControlPlaneClient

logger = structlog.get_logger()


# -- Service account ---------------------------------------------------------


async def service_account_exists(client: ControlPlaneClient, email: str) -> bool:
    accounts = await client.execute(["iam", "service-accounts", "list"]) or []
    return any(a.get("email") == email for a in accounts)


async def role_binding_exists(
    client: ControlPlaneClient, project: str, email: str, role: str
) -> bool:
    policies = (
        await client.execute(
            [
                "projects",
                "get-iam-policy",
                project,
                "--flatten=bindings[].members",
                f"--filter=bindings.members=serviceAccount:{email}",
            ]
        )
        or []
    )
    return any(p.get("bindings", {}).get("role") == role for p in policies)


async def create_service_account(
    client: ControlPlaneClient,
    account_id: str,
    *,
    project: str,
    email: str,
    role: str,
) -> None:
    """Create the proxy VM's service account and grant it *role*."""
    logger.info("service_account.creating", name=account_id)
    await client.execute(
        [
            "iam",
            "service-accounts",
            "create",
            account_id,
            "--description=Datastream service account",
            f"--display-name={account_id}",
        ]
    )

    if await role_binding_exists(client, project, email, role):
        return
    logger.info("service_account.granting_role", name=account_id, role=role)
    await client.execute(
        [
            "projects",
            "add-iam-policy-binding",
            project,
            f"--member=serviceAccount:{email}",
            f"--role={role}",
            "--condition=None",
        ]
    )


async def delete_service_account(
    client: ControlPlaneClient,
    *,
    project: str,
    email: str,
    role: str,
) -> None:
    """Remove the role binding (if any), then the account itself."""
    if await role_binding_exists(client, project, email, role):
        logger.info("service_account.revoking_role", email=email, role=role)
        await client.execute(
            [
                "projects",
                "remove-iam-policy-binding",
                project,
                f"--member=serviceAccount:{email}",
                f"--role={role}",
                "--condition=None",
            ]
        )
    logger.info("service_account.deleting", email=email)
    await client.execute(["iam", "service-accounts", "delete", email, "--quiet"])


# -- Cloud SQL proxy VM ------------------------------------------------------


def proxy_zone(cfg: ProvisioningConfig, settings: OrchestratorSettings) -> str:
    return f"{cfg.region}-{settings.proxy.zone_suffix}"


async def instance_has_private_ip(client: ControlPlaneClient, instance: str) -> bool:
    """Whether the Cloud SQL instance exposes a private IP address."""
    desc: dict[str, Any] = (
        await client.execute(["sql", "instances", "describe", instance]) or {}
    )
    return any(ip.get("type") == "PRIVATE" for ip in desc.get("ipAddresses", []))


async def proxy_vm_exists(client: ControlPlaneClient, name: str) -> bool:
    instances = await client.execute(["compute", "instances", "list"]) or []
    return any(i.get("name") == name for i in instances)


async def create_proxy_vm(
    client: ControlPlaneClient,
    name: str,
    cfg: ProvisioningConfig,
    settings: OrchestratorSettings,
) -> None:
    """Start a container-optimised VM running the Cloud SQL Auth Proxy.

    The proxy listens on all interfaces so the Datastream private connection
    can reach it inside the VPC.
    """
    proxy = settings.proxy
    private_ip = await instance_has_private_ip(client, cfg.instance)
    network_interface = f"network={settings.vpc_name},subnet={settings.vpc_name}"
    machine_type = proxy.machine_type
    if private_ip:
        network_interface += ",no-address"
        machine_type = proxy.private_ip_machine_type

    args = [
        "compute",
        "instances",
        "create-with-container",
        name,
        f"--machine-type={machine_type}",
        f"--zone={proxy_zone(cfg, settings)}",
        f"--service-account={settings.service_account_email(cfg.project)}",
        f"--create-disk={proxy.disk_image}",
        "--scopes=cloud-platform",
        f"--network-interface={network_interface}",
        f"--container-image={proxy.container_image}",
        f"--container-arg={cfg.connection_name}?port={cfg.port}",
        "--container-arg=--address=0.0.0.0",
    ]
    if private_ip:
        args.append("--container-arg=--private-ip")

    logger.info("proxy.creating", name=name, private_ip=private_ip)
    await client.execute(args)


async def delete_proxy_vm(client: ControlPlaneClient, name: str, zone: str) -> None:
    logger.info("proxy.deleting", name=name, zone=zone)
    await client.execute(
        ["compute", "instances", "delete", name, f"--zone={zone}", "--quiet"]
    )


async def get_proxy_ip(
    client: ControlPlaneClient, name: str, zone: str, network: str
) -> str:
    """Return the proxy VM's internal IP on *network*."""
    desc: dict[str, Any] = (
        await client.execute(
            ["compute", "instances", "describe", name, f"--zone={zone}"]
        )
        or {}
    )
    interfaces = desc.get("networkInterfaces", [])
    if not interfaces:
        raise CreateError(
            ResourceKind.SOURCE_PROFILE,
            name,
            "proxy VM has no network interfaces",
        )
    for nic in interfaces:
        if nic.get("network", "").rsplit("/", 1)[-1] == network:
            return str(nic["networkIP"])
    raise CreateError(
        ResourceKind.SOURCE_PROFILE,
        name,
        f"proxy VM has no network interface on {network}",
    )
