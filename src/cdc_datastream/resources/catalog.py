"""Resource catalog: per-kind metadata and bound gcloud operations.

Ordering and shared-ness live in ``RESOURCE_METADATA`` as plain data so they
can be audited and tested without touching any dispatch logic.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from cdc_datastream.config.models import (
    OrchestratorSettings,
    ProvisioningConfig,
    ResourceKind,
)
from cdc_datastream.gcloud import apis, compute, datastream, network
from cdc_datastream.gcloud.client import ControlPlaneClient
from cdc_datastream.resources.naming import resource_name
from cdc_datastream.resources.readiness import ReadinessPoller

ProbeFn = Callable[[str], Awaitable[bool]]
ActionFn = Callable[[str], Awaitable[None]]


@dataclass(frozen=True)
class ResourceMetadata:
    """Declarative facts about a resource kind.

    ``create_rank`` is ``None`` for kinds the creation walk never touches
    (the replication API is enabled up front with the other APIs).
    ``verify_after_create`` re-probes after a reported success because the
    control plane sometimes reports success for resources that never appear.
    """

    shared: bool
    create_rank: int | None
    delete_rank: int
    verify_after_create: bool = False


RESOURCE_METADATA: Mapping[ResourceKind, ResourceMetadata] = {
    ResourceKind.VPC: ResourceMetadata(shared=True, create_rank=0, delete_rank=6),
    ResourceKind.SERVICE_ACCOUNT: ResourceMetadata(
        shared=True, create_rank=1, delete_rank=3
    ),
    ResourceKind.SQL_PROXY: ResourceMetadata(
        shared=False, create_rank=2, delete_rank=7
    ),
    ResourceKind.PRIVATE_CONNECTION: ResourceMetadata(
        shared=True, create_rank=3, delete_rank=5
    ),
    ResourceKind.FIREWALL_RULE: ResourceMetadata(
        shared=True, create_rank=4, delete_rank=4
    ),
    ResourceKind.SOURCE_PROFILE: ResourceMetadata(
        shared=False, create_rank=5, delete_rank=1, verify_after_create=True
    ),
    ResourceKind.DESTINATION_PROFILE: ResourceMetadata(
        shared=False, create_rank=6, delete_rank=2, verify_after_create=True
    ),
    ResourceKind.STREAM: ResourceMetadata(shared=False, create_rank=7, delete_rank=0),
    ResourceKind.REPLICATION_API: ResourceMetadata(
        shared=True, create_rank=None, delete_rank=8
    ),
}

_missing = set(ResourceKind) - set(RESOURCE_METADATA)
if _missing:
    raise RuntimeError(f"RESOURCE_METADATA is missing kinds: {sorted(_missing)}")


def creation_order() -> list[ResourceKind]:
    """Kinds the creation walk visits, dependencies first."""
    ranked = [
        (meta.create_rank, kind)
        for kind, meta in RESOURCE_METADATA.items()
        if meta.create_rank is not None
    ]
    return [kind for _, kind in sorted(ranked)]


def deletion_order() -> list[ResourceKind]:
    ranked = [(meta.delete_rank, kind) for kind, meta in RESOURCE_METADATA.items()]
    return [kind for _, kind in sorted(ranked)]


@dataclass(frozen=True)
class ResourceDescriptor:
    """How to name, probe, create and delete one kind of resource.

    ``exists`` only asks whether the resource is listed.  ``verify`` is the
    stricter post-create check; kinds without one fall back to ``exists``.
    """

    kind: ResourceKind
    generate_name: Callable[[ProvisioningConfig], str]
    exists: ProbeFn
    create: ActionFn | None
    delete: ActionFn
    verify: ProbeFn | None = None

    @property
    def metadata(self) -> ResourceMetadata:
        return RESOURCE_METADATA[self.kind]

    @property
    def shared(self) -> bool:
        return self.metadata.shared


class ResourceCatalog:
    """The descriptors for one pipeline plus the project-level hooks.

    *ensure_apis* enables the provider APIs the pipeline needs;
    *list_streams* returns the short names of every stream in the region.
    """

    def __init__(
        self,
        config: ProvisioningConfig,
        descriptors: Mapping[ResourceKind, ResourceDescriptor],
        *,
        ensure_apis: Callable[[], Awaitable[Any]],
        list_streams: Callable[[], Awaitable[list[str]]],
    ) -> None:
        missing = set(ResourceKind) - set(descriptors)
        if missing:
            msg = f"Catalog is missing descriptors for: {sorted(missing)}"
            raise ValueError(msg)
        uncreatable = [k for k in creation_order() if descriptors[k].create is None]
        if uncreatable:
            msg = f"Catalog has no create operation for: {sorted(uncreatable)}"
            raise ValueError(msg)
        self.config = config
        self._descriptors = dict(descriptors)
        self.ensure_apis = ensure_apis
        self.list_streams = list_streams

    def __getitem__(self, kind: ResourceKind) -> ResourceDescriptor:
        return self._descriptors[kind]

    def __iter__(self) -> Iterator[ResourceKind]:
        return iter(self._descriptors)

    def name_of(self, kind: ResourceKind) -> str:
        return self._descriptors[kind].generate_name(self.config)


def build_catalog(
    client: ControlPlaneClient,
    cfg: ProvisioningConfig,
    settings: OrchestratorSettings,
    poller: ReadinessPoller,
) -> ResourceCatalog:
    """Bind every resource kind's operations to *client* for pipeline *cfg*."""
    zone = compute.proxy_zone(cfg, settings)
    sa_email = settings.service_account_email(cfg.project)

    def namer(kind: ResourceKind) -> Callable[[ProvisioningConfig], str]:
        return lambda c: resource_name(kind, c, settings)

    # -- Service account
    async def sa_exists(_name: str) -> bool:
        return await compute.service_account_exists(client, sa_email)

    async def sa_create(name: str) -> None:
        await compute.create_service_account(
            client,
            name,
            project=cfg.project,
            email=sa_email,
            role=settings.service_account_role,
        )

    async def sa_delete(_name: str) -> None:
        await compute.delete_service_account(
            client,
            project=cfg.project,
            email=sa_email,
            role=settings.service_account_role,
        )

    # -- Proxy VM
    async def proxy_create(name: str) -> None:
        await compute.create_proxy_vm(client, name, cfg, settings)

    async def proxy_delete(name: str) -> None:
        await compute.delete_proxy_vm(client, name, zone)

    # -- Private connection
    async def pc_exists(name: str) -> bool:
        return await datastream.private_connection_exists(client, cfg, name)

    async def pc_create(name: str) -> None:
        await datastream.create_private_connection(client, cfg, settings, name)

        async def _state() -> str:
            return await datastream.private_connection_state(client, cfg, name)

        await poller.wait_for_private_connection(name, _state)

    async def pc_delete(name: str) -> None:
        await datastream.delete_private_connection(client, cfg, name)

    # -- Firewall rule
    async def fw_create(name: str) -> None:
        await network.create_firewall_rule(
            client,
            name,
            network=settings.vpc_name,
            source_range=settings.datastream_subnet,
            port=cfg.port,
        )

    # -- Connection profiles
    async def profile_exists(name: str) -> bool:
        return await datastream.profile_readiness(client, cfg, name) is not None

    def profile_ready(kind: ResourceKind) -> ProbeFn:
        async def _ready(name: str) -> bool:
            async def _readiness() -> bool | None:
                return await datastream.profile_readiness(client, cfg, name)

            return await poller.wait_for_profile(kind, name, _readiness)

        return _ready

    async def source_profile_create(name: str) -> None:
        host = await compute.get_proxy_ip(
            client,
            resource_name(ResourceKind.SQL_PROXY, cfg, settings),
            zone,
            settings.vpc_name,
        )
        await datastream.create_postgres_profile(client, cfg, settings, name, host)

    async def destination_profile_create(name: str) -> None:
        await datastream.create_bigquery_profile(client, cfg, name)

    async def profile_delete(name: str) -> None:
        await datastream.delete_profile(client, cfg, name)

    # -- Stream
    async def stream_exists(name: str) -> bool:
        return await datastream.stream_exists(client, cfg, name)

    async def stream_create(name: str) -> None:
        await datastream.create_stream(
            client,
            cfg,
            settings,
            name,
            source_profile=resource_name(ResourceKind.SOURCE_PROFILE, cfg, settings),
            destination_profile=resource_name(
                ResourceKind.DESTINATION_PROFILE, cfg, settings
            ),
        )

    async def stream_delete(name: str) -> None:
        await datastream.delete_stream(client, cfg, name)

    # -- Replication API
    async def api_exists(name: str) -> bool:
        return await apis.api_enabled(client, name)

    async def api_disable(name: str) -> None:
        await apis.disable_api(client, name)

    descriptors = {
        ResourceKind.VPC: ResourceDescriptor(
            kind=ResourceKind.VPC,
            generate_name=namer(ResourceKind.VPC),
            exists=lambda name: network.vpc_exists(client, name),
            create=lambda name: network.create_vpc(client, name),
            delete=lambda name: network.delete_vpc(client, name),
        ),
        ResourceKind.SERVICE_ACCOUNT: ResourceDescriptor(
            kind=ResourceKind.SERVICE_ACCOUNT,
            generate_name=namer(ResourceKind.SERVICE_ACCOUNT),
            exists=sa_exists,
            create=sa_create,
            delete=sa_delete,
        ),
        ResourceKind.SQL_PROXY: ResourceDescriptor(
            kind=ResourceKind.SQL_PROXY,
            generate_name=namer(ResourceKind.SQL_PROXY),
            exists=lambda name: compute.proxy_vm_exists(client, name),
            create=proxy_create,
            delete=proxy_delete,
        ),
        ResourceKind.PRIVATE_CONNECTION: ResourceDescriptor(
            kind=ResourceKind.PRIVATE_CONNECTION,
            generate_name=namer(ResourceKind.PRIVATE_CONNECTION),
            exists=pc_exists,
            create=pc_create,
            delete=pc_delete,
        ),
        ResourceKind.FIREWALL_RULE: ResourceDescriptor(
            kind=ResourceKind.FIREWALL_RULE,
            generate_name=namer(ResourceKind.FIREWALL_RULE),
            exists=lambda name: network.firewall_rule_exists(client, name),
            create=fw_create,
            delete=lambda name: network.delete_firewall_rule(client, name),
        ),
        ResourceKind.SOURCE_PROFILE: ResourceDescriptor(
            kind=ResourceKind.SOURCE_PROFILE,
            generate_name=namer(ResourceKind.SOURCE_PROFILE),
            exists=profile_exists,
            create=source_profile_create,
            delete=profile_delete,
            verify=profile_ready(ResourceKind.SOURCE_PROFILE),
        ),
        ResourceKind.DESTINATION_PROFILE: ResourceDescriptor(
            kind=ResourceKind.DESTINATION_PROFILE,
            generate_name=namer(ResourceKind.DESTINATION_PROFILE),
            exists=profile_exists,
            create=destination_profile_create,
            delete=profile_delete,
            verify=profile_ready(ResourceKind.DESTINATION_PROFILE),
        ),
        ResourceKind.STREAM: ResourceDescriptor(
            kind=ResourceKind.STREAM,
            generate_name=namer(ResourceKind.STREAM),
            exists=stream_exists,
            create=stream_create,
            delete=stream_delete,
        ),
        ResourceKind.REPLICATION_API: ResourceDescriptor(
            kind=ResourceKind.REPLICATION_API,
            generate_name=namer(ResourceKind.REPLICATION_API),
            exists=api_exists,
            create=None,
            delete=api_disable,
        ),
    }

    async def ensure_apis() -> list[str]:
        return await apis.enable_apis(client, settings.required_apis)

    async def list_streams() -> list[str]:
        return await datastream.list_stream_names(client, cfg)

    return ResourceCatalog(
        cfg, descriptors, ensure_apis=ensure_apis, list_streams=list_streams
    )
