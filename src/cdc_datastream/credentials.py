"""Resolve Cloud SQL connection details from Config Connector objects."""

from __future__ import annotations

import asyncio
import base64
from typing import Any, Protocol, runtime_checkable

import structlog
from kubernetes import client, config
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException

from cdc_datastream.config.models import ProvisioningConfig
from cdc_datastream.errors import CredentialResolutionError

logger = structlog.get_logger()

CNRM_SQL_GROUP = "sql.cnrm.cloud.google.com"
CNRM_SQL_VERSION = "v1beta1"


@runtime_checkable
class CredentialSource(Protocol):
    """Looks up the database an application uses and the credentials for a user."""

    async def resolve(
        self,
        app: str,
        db_user: str,
        context: str | None = None,
        namespace: str | None = None,
    ) -> ProvisioningConfig: ...


def secret_key_marker(db_user: str) -> str:
    """Fragment a SQLUser's password secret key carries for *db_user*.

    ``my-app`` → ``_MY_APP_`` (matches e.g. ``NAIS_DATABASE_MY_APP_MY_APP_PASSWORD``).
    """
    return "_" + db_user.replace("-", "_").upper() + "_"


def parse_connection_name(connection_name: str) -> tuple[str, str, str]:
    parts = connection_name.split(":")
    if len(parts) != 3 or not all(parts):
        msg = (
            f"connection name '{connection_name}' has invalid format, "
            "should be <project>:<region>:<instance>"
        )
        raise CredentialResolutionError(msg)
    return parts[0], parts[1], parts[2]


def decode_secret_data(data: dict[str, str] | None) -> dict[str, str]:
    """Map a Secret's base64 data onto ``user``/``password``/``database``."""
    out: dict[str, str] = {}
    for key, value in (data or {}).items():
        decoded = base64.b64decode(value).decode()
        if key.endswith("USERNAME"):
            out["user"] = decoded
        elif key.endswith("PASSWORD"):
            out["password"] = decoded
        elif key.endswith("DATABASE"):
            out["database"] = decoded
    return out


class KubernetesCredentialSource:
    """Reads ``SQLInstance``/``SQLUser`` objects and the user's Secret.

    Uses the local kubeconfig; *context* and *namespace* override the current
    context and its namespace.
    """

    def __init__(self, port: int = 5432) -> None:
        self._port = port

    async def resolve(
        self,
        app: str,
        db_user: str,
        context: str | None = None,
        namespace: str | None = None,
    ) -> ProvisioningConfig:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, self._resolve_sync, app, db_user, context, namespace
        )

    def _resolve_sync(
        self,
        app: str,
        db_user: str,
        context: str | None,
        namespace: str | None,
    ) -> ProvisioningConfig:
        logger.info("credentials.resolving", app=app, db_user=db_user)
        api_client, ns = self._load_kube_config(context, namespace)
        custom = client.CustomObjectsApi(api_client)
        core = client.CoreV1Api(api_client)

        try:
            project, region, instance = self._find_instance(custom, ns, app)
            secret_name = self._find_secret_name(custom, ns, app, db_user)
            secret = core.read_namespaced_secret(secret_name, ns)
        except ApiException as exc:
            msg = f"kubernetes API error resolving app {app!r} in {ns!r}: {exc.reason}"
            raise CredentialResolutionError(msg) from exc

        creds = decode_secret_data(secret.data)
        missing = {"user", "password", "database"} - set(creds)
        if missing:
            msg = f"secret {secret_name!r} is missing {sorted(missing)}"
            raise CredentialResolutionError(msg)

        logger.info(
            "credentials.resolved",
            project=project,
            region=region,
            instance=instance,
            database=creds["database"],
        )
        return ProvisioningConfig(
            project=project,
            region=region,
            instance=instance,
            database=creds["database"],
            user=creds["user"],
            password=creds["password"],
            port=self._port,
            namespace=ns,
        )

    def _load_kube_config(
        self, context: str | None, namespace: str | None
    ) -> tuple[Any, str]:
        try:
            contexts, active = config.list_kube_config_contexts()
            api_client = config.new_client_from_config(context=context or None)
        except ConfigException as exc:
            msg = f"unable to load kubeconfig: {exc}"
            raise CredentialResolutionError(msg) from exc

        if namespace:
            return api_client, namespace
        selected = active
        if context:
            selected = next((c for c in contexts if c.get("name") == context), active)
        ns = (selected or {}).get("context", {}).get("namespace") or "default"
        return api_client, ns

    def _list_cnrm(
        self, custom: Any, ns: str, plural: str, app: str
    ) -> list[dict[str, Any]]:
        result = custom.list_namespaced_custom_object(
            group=CNRM_SQL_GROUP,
            version=CNRM_SQL_VERSION,
            namespace=ns,
            plural=plural,
            label_selector=f"app={app}",
        )
        return list(result.get("items", []))

    def _find_instance(self, custom: Any, ns: str, app: str) -> tuple[str, str, str]:
        instances = self._list_cnrm(custom, ns, "sqlinstances", app)
        if not instances:
            msg = f"no sqlinstance found for app {app!r} in {ns!r}"
            raise CredentialResolutionError(msg)
        if len(instances) > 1:
            msg = f"multiple sqlinstances found for app {app!r} in {ns!r}"
            raise CredentialResolutionError(msg)

        instance = instances[0]
        connection_name = (instance.get("status") or {}).get("connectionName")
        if not connection_name:
            name = instance.get("metadata", {}).get("name", "?")
            msg = (
                "missing 'connectionName' status field; run "
                f"'kubectl describe sqlinstance {name}' and check for status failures"
            )
            raise CredentialResolutionError(msg)
        return parse_connection_name(connection_name)

    def _find_secret_name(self, custom: Any, ns: str, app: str, db_user: str) -> str:
        marker = secret_key_marker(db_user)
        for user in self._list_cnrm(custom, ns, "sqlusers", app):
            ref = (
                user.get("spec", {})
                .get("password", {})
                .get("valueFrom", {})
                .get("secretKeyRef", {})
            )
            if marker in ref.get("key", "") and ref.get("name"):
                return str(ref["name"])
        msg = f"unable to find db secret for user {db_user!r} (app {app!r})"
        raise CredentialResolutionError(msg)
