"""Unit tests for resolving pipeline credentials from Kubernetes."""

from __future__ import annotations

import base64
from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException

from cdc_datastream.credentials import (
    CredentialSource,
    KubernetesCredentialSource,
    decode_secret_data,
    parse_connection_name,
    secret_key_marker,
)
from cdc_datastream.errors import CredentialResolutionError


def _b64(value: str) -> str:
    return base64.b64encode(value.encode()).decode()


SECRET_DATA = {
    "NAIS_DATABASE_MY_APP_APPDB_USERNAME": _b64("my-app"),
    "NAIS_DATABASE_MY_APP_APPDB_PASSWORD": _b64("s3cret"),
    "NAIS_DATABASE_MY_APP_APPDB_DATABASE": _b64("appdb"),
    "NAIS_DATABASE_MY_APP_APPDB_HOST": _b64("127.0.0.1"),
}

INSTANCE = {
    "metadata": {"name": "my-app"},
    "status": {"connectionName": "proj:europe-north1:my-app"},
}

SQL_USER = {
    "spec": {
        "password": {
            "valueFrom": {
                "secretKeyRef": {
                    "name": "google-sql-my-app",
                    "key": "NAIS_DATABASE_MY_APP_APPDB_PASSWORD",
                }
            }
        }
    }
}


def _custom_api(instances, users):
    custom = MagicMock()

    def _list(group, version, namespace, plural, label_selector):
        items = instances if plural == "sqlinstances" else users
        return {"items": items}

    custom.list_namespaced_custom_object.side_effect = _list
    return custom


def _patch_kube(custom, secret_data=None, contexts=None, active=None):
    """Patch kubeconfig loading and the API classes used by the source."""
    core = MagicMock()
    core.read_namespaced_secret.return_value = MagicMock(
        data=SECRET_DATA if secret_data is None else secret_data
    )
    config_mock = MagicMock()
    config_mock.list_kube_config_contexts.return_value = (
        contexts or [{"name": "dev", "context": {"namespace": "team"}}],
        active or {"name": "dev", "context": {"namespace": "team"}},
    )
    client_mock = MagicMock()
    client_mock.CustomObjectsApi.return_value = custom
    client_mock.CoreV1Api.return_value = core
    return (
        patch("cdc_datastream.credentials.config", config_mock),
        patch("cdc_datastream.credentials.client", client_mock),
        core,
        config_mock,
    )


class TestHelpers:
    def test_secret_key_marker(self):
        assert secret_key_marker("my-app") == "_MY_APP_"

    def test_parse_connection_name(self):
        assert parse_connection_name("p:r:i") == ("p", "r", "i")

    @pytest.mark.parametrize("value", ["p:r", "p::i", "a:b:c:d"])
    def test_parse_connection_name_invalid(self, value):
        with pytest.raises(CredentialResolutionError, match="invalid format"):
            parse_connection_name(value)

    def test_decode_secret_data(self):
        assert decode_secret_data(SECRET_DATA) == {
            "user": "my-app",
            "password": "s3cret",
            "database": "appdb",
        }

    def test_decode_empty(self):
        assert decode_secret_data(None) == {}

    def test_satisfies_protocol(self):
        assert isinstance(KubernetesCredentialSource(), CredentialSource)


@pytest.mark.asyncio
class TestKubernetesCredentialSource:
    async def test_resolves_config(self):
        custom = _custom_api([INSTANCE], [SQL_USER])
        config_patch, client_patch, core, _ = _patch_kube(custom)
        with config_patch, client_patch:
            cfg = await KubernetesCredentialSource().resolve("my-app", "my-app")

        assert cfg.project == "proj"
        assert cfg.region == "europe-north1"
        assert cfg.instance == "my-app"
        assert cfg.database == "appdb"
        assert cfg.user == "my-app"
        assert cfg.password.get_secret_value() == "s3cret"
        assert cfg.namespace == "team"
        core.read_namespaced_secret.assert_called_once_with("google-sql-my-app", "team")

    async def test_label_selector_and_namespace_override(self):
        custom = _custom_api([INSTANCE], [SQL_USER])
        config_patch, client_patch, _, config_mock = _patch_kube(custom)
        with config_patch, client_patch:
            cfg = await KubernetesCredentialSource().resolve(
                "my-app", "my-app", context="prod", namespace="other"
            )

        assert cfg.namespace == "other"
        config_mock.new_client_from_config.assert_called_once_with(context="prod")
        kwargs = custom.list_namespaced_custom_object.call_args_list[0].kwargs
        assert kwargs["label_selector"] == "app=my-app"
        assert kwargs["group"] == "sql.cnrm.cloud.google.com"
        assert kwargs["namespace"] == "other"

    async def test_namespace_from_named_context(self):
        custom = _custom_api([INSTANCE], [SQL_USER])
        contexts = [
            {"name": "dev", "context": {"namespace": "team"}},
            {"name": "prod", "context": {}},
        ]
        config_patch, client_patch, _, _ = _patch_kube(custom, contexts=contexts)
        with config_patch, client_patch:
            cfg = await KubernetesCredentialSource().resolve(
                "my-app", "my-app", context="prod"
            )
        assert cfg.namespace == "default"

    async def test_no_instance(self):
        custom = _custom_api([], [SQL_USER])
        config_patch, client_patch, _, _ = _patch_kube(custom)
        with config_patch, client_patch:
            with pytest.raises(CredentialResolutionError, match="no sqlinstance"):
                await KubernetesCredentialSource().resolve("my-app", "my-app")

    async def test_multiple_instances(self):
        custom = _custom_api([INSTANCE, INSTANCE], [SQL_USER])
        config_patch, client_patch, _, _ = _patch_kube(custom)
        with config_patch, client_patch:
            with pytest.raises(CredentialResolutionError, match="multiple"):
                await KubernetesCredentialSource().resolve("my-app", "my-app")

    async def test_instance_without_connection_name(self):
        custom = _custom_api([{"metadata": {"name": "my-app"}, "status": {}}], [])
        config_patch, client_patch, _, _ = _patch_kube(custom)
        with config_patch, client_patch:
            with pytest.raises(CredentialResolutionError, match="connectionName"):
                await KubernetesCredentialSource().resolve("my-app", "my-app")

    async def test_no_matching_user(self):
        custom = _custom_api([INSTANCE], [SQL_USER])
        config_patch, client_patch, _, _ = _patch_kube(custom)
        with config_patch, client_patch:
            with pytest.raises(CredentialResolutionError, match="reporting"):
                await KubernetesCredentialSource().resolve("my-app", "reporting")

    async def test_secret_missing_keys(self):
        custom = _custom_api([INSTANCE], [SQL_USER])
        config_patch, client_patch, _, _ = _patch_kube(
            custom, secret_data={"X_PASSWORD": _b64("pw")}
        )
        with config_patch, client_patch:
            with pytest.raises(CredentialResolutionError, match="missing"):
                await KubernetesCredentialSource().resolve("my-app", "my-app")

    async def test_api_error(self):
        custom = MagicMock()
        custom.list_namespaced_custom_object.side_effect = ApiException(
            status=403, reason="Forbidden"
        )
        config_patch, client_patch, _, _ = _patch_kube(custom)
        with config_patch, client_patch:
            with pytest.raises(CredentialResolutionError, match="Forbidden"):
                await KubernetesCredentialSource().resolve("my-app", "my-app")

    async def test_kubeconfig_error(self):
        custom = _custom_api([INSTANCE], [SQL_USER])
        config_patch, client_patch, _, config_mock = _patch_kube(custom)
        config_mock.list_kube_config_contexts.side_effect = ConfigException(
            "Invalid kube-config file"
        )
        with config_patch, client_patch:
            with pytest.raises(CredentialResolutionError, match="kubeconfig"):
                await KubernetesCredentialSource().resolve("my-app", "my-app")
