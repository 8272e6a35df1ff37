"""Resource naming conventions.

Per-pipeline resources are derived from the database name; shared resources
use the fixed names from ``OrchestratorSettings``.
"""

from __future__ import annotations

from cdc_datastream.config.models import (
    OrchestratorSettings,
    ProvisioningConfig,
    ResourceKind,
)


def stream_name(cfg: ProvisioningConfig) -> str:
    return f"postgres-{cfg.database}-bigquery"


def source_profile_name(cfg: ProvisioningConfig) -> str:
    return f"postgres-{cfg.database}"


def destination_profile_name(cfg: ProvisioningConfig) -> str:
    return f"bigquery-{cfg.database}"


def proxy_vm_name(cfg: ProvisioningConfig, settings: OrchestratorSettings) -> str:
    return settings.proxy.name_prefix + cfg.database


def resource_name(
    kind: ResourceKind, cfg: ProvisioningConfig, settings: OrchestratorSettings
) -> str:
    """Deterministic name of *kind* for the pipeline described by *cfg*."""
    match kind:
        case ResourceKind.VPC:
            return settings.vpc_name
        case ResourceKind.SERVICE_ACCOUNT:
            return settings.service_account_name
        case ResourceKind.SQL_PROXY:
            return proxy_vm_name(cfg, settings)
        case ResourceKind.PRIVATE_CONNECTION:
            return settings.private_connection_name
        case ResourceKind.FIREWALL_RULE:
            return settings.firewall_rule_name
        case ResourceKind.SOURCE_PROFILE:
            return source_profile_name(cfg)
        case ResourceKind.DESTINATION_PROFILE:
            return destination_profile_name(cfg)
        case ResourceKind.STREAM:
            return stream_name(cfg)
        case ResourceKind.REPLICATION_API:
            return settings.replication_api
    msg = f"Unknown resource kind: {kind!r}"
    raise ValueError(msg)
