"""Pydantic configuration models for Datastream provisioning."""

from __future__ import annotations

import re
from enum import StrEnum
from typing import Self

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator


class ResourceKind(StrEnum):
    """Infrastructure resources that make up one Datastream pipeline."""

    VPC = "VPC"
    SERVICE_ACCOUNT = "ServiceAccount"
    SQL_PROXY = "SqlProxy"
    PRIVATE_CONNECTION = "PrivateConnection"
    FIREWALL_RULE = "FirewallRule"
    SOURCE_PROFILE = "SourceProfile"
    DESTINATION_PROFILE = "DestinationProfile"
    STREAM = "Stream"
    REPLICATION_API = "ReplicationAPI"


class PrivateConnectionState(StrEnum):
    """States reported by Datastream for a private connection.

    Anything outside these two values is treated as fatal.
    """

    CREATING = "CREATING"
    CREATED = "CREATED"


class TableFilter(BaseModel):
    """The single effective object-selection filter for a stream."""

    model_config = ConfigDict(frozen=True)

    mode: str  # "includeObjects" | "excludeObjects"
    tables: tuple[str, ...]


class ProvisioningConfig(BaseModel):
    """Everything one create/delete run needs to know about a pipeline.

    Connection fields come from the credential source; stream options come
    from the command line.  The model is frozen for the lifetime of a run.
    """

    model_config = ConfigDict(frozen=True)

    project: str
    region: str
    instance: str
    database: str
    user: str
    password: SecretStr
    port: int = Field(default=5432, ge=1, le=65535)
    namespace: str = ""

    # -- Stream options --------------------------------------------------------
    # Include and exclude lists are mutually exclusive in intent; when both are
    # given the include list wins (see ``table_filter``).
    include_tables: tuple[str, ...] = ()
    exclude_tables: tuple[str, ...] = ()
    replication_slot: str = "ds_replication"
    publication: str = "ds_publication"
    data_freshness: int = Field(default=900, ge=0)

    @field_validator("include_tables", "exclude_tables", mode="before")
    @classmethod
    def split_table_list(cls, v: object) -> object:
        """Accept a comma-separated string as well as a sequence."""
        if v is None:
            return ()
        if isinstance(v, str):
            return tuple(t.strip() for t in v.split(",") if t.strip())
        return v

    @field_validator("replication_slot", "publication")
    @classmethod
    def validate_pg_identifier(cls, v: str) -> str:
        if not re.match(r"^[a-zA-Z_][a-zA-Z0-9_]*$", v):
            msg = f"'{v}' is not a valid PostgreSQL identifier"
            raise ValueError(msg)
        return v

    @property
    def connection_name(self) -> str:
        """Cloud SQL connection name (``<project>:<region>:<instance>``)."""
        return f"{self.project}:{self.region}:{self.instance}"

    @property
    def table_filter(self) -> TableFilter | None:
        if self.include_tables:
            return TableFilter(mode="includeObjects", tables=self.include_tables)
        if self.exclude_tables:
            return TableFilter(mode="excludeObjects", tables=self.exclude_tables)
        return None

    def with_stream_options(self, **options: object) -> Self:
        """Return a validated copy with stream options applied.

        ``None`` values are ignored so CLI defaults don't clobber the model's.
        """
        updates = {k: v for k, v in options.items() if v is not None}
        data = self.model_dump()
        data["password"] = self.password
        data.update(updates)
        return type(self).model_validate(data)


class ProxyConfig(BaseModel):
    """Cloud SQL Auth Proxy VM settings."""

    model_config = ConfigDict(frozen=True)

    name_prefix: str = "datastream-"
    zone_suffix: str = "b"
    machine_type: str = "f1-micro"
    private_ip_machine_type: str = "n1-standard-2"
    container_image: str = "gcr.io/cloud-sql-connectors/cloud-sql-proxy:2.1.1-alpine"
    disk_image: str = "image-project=debian-cloud,image-family=debian-11"


class OrchestratorSettings(BaseModel):
    """Tunables and fixed resource names shared by every pipeline in a project."""

    model_config = ConfigDict(frozen=True)

    gcloud_binary: str = "gcloud"
    # Deadline for one gcloud invocation; proxy VMs and private connections
    # can take a long time.
    call_timeout_seconds: float = Field(default=2700.0, gt=0)
    poll_interval_seconds: float = Field(default=30.0, ge=0)
    profile_ready_attempts: int = Field(default=5, ge=1)

    vpc_name: str = "datastream-vpc"
    private_connection_name: str = "datastream-connection"
    firewall_rule_name: str = "allow-datastream-cloudsql-proxy"
    service_account_name: str = "datastream"
    service_account_role: str = "roles/cloudsql.client"
    datastream_subnet: str = "10.2.0.0/29"
    replication_api: str = "datastream.googleapis.com"
    required_apis: tuple[str, ...] = (
        "bigquery.googleapis.com",
        "compute.googleapis.com",
        "datastream.googleapis.com",
        "servicenetworking.googleapis.com",
    )
    dataset_prefix: str = "datastream_"
    resource_label: str = "created-by=cdc-datastream"

    proxy: ProxyConfig = Field(default_factory=ProxyConfig)

    @field_validator("datastream_subnet")
    @classmethod
    def validate_cidr(cls, v: str) -> str:
        if not re.match(r"^\d{1,3}(\.\d{1,3}){3}/\d{1,2}$", v):
            msg = f"datastream_subnet '{v}' must be an IPv4 CIDR range"
            raise ValueError(msg)
        return v

    def service_account_email(self, project: str) -> str:
        return f"{self.service_account_name}@{project}.iam.gserviceaccount.com"
