"""Unit tests for the create/delete CLI commands."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

from typer.testing import CliRunner

from cdc_datastream.cli import app
from cdc_datastream.config.models import ProvisioningConfig, ResourceKind
from cdc_datastream.errors import (
    CreateError,
    CredentialResolutionError,
    DeleteError,
    TeardownError,
)

runner = CliRunner()


def _base_cfg() -> ProvisioningConfig:
    return ProvisioningConfig(
        project="proj",
        region="europe-north1",
        instance="app-db",
        database="appdb",
        user="app",
        password="s3cret",
    )


def _patches(provision=None, teardown=None, resolve=None):
    source = MagicMock()
    source.resolve = resolve or AsyncMock(return_value=_base_cfg())
    provisioner = MagicMock()
    provisioner.provision = provision or AsyncMock(return_value={"created": []})
    provisioner.teardown = teardown or AsyncMock(return_value={"deleted": []})
    return (
        patch("cdc_datastream.cli.KubernetesCredentialSource", return_value=source),
        patch("cdc_datastream.cli.DatastreamProvisioner", return_value=provisioner),
        source,
        provisioner,
    )


class TestCreateCommand:
    def test_create_reports_created_resources(self):
        provision = AsyncMock(
            return_value={"created": ["VPC:datastream-vpc", "Stream:postgres-appdb"]}
        )
        source_patch, prov_patch, source, _ = _patches(provision=provision)
        with source_patch, prov_patch:
            result = runner.invoke(app, ["create", "my-app", "app"])

        assert result.exit_code == 0, result.output
        assert "Created 2 resource(s)" in result.output
        assert "VPC:datastream-vpc" in result.output
        source.resolve.assert_awaited_once_with(
            "my-app", "app", context=None, namespace=None
        )

    def test_create_applies_stream_options(self):
        source_patch, prov_patch, _, provisioner = _patches()
        with source_patch, prov_patch:
            result = runner.invoke(
                app,
                [
                    "create",
                    "my-app",
                    "app",
                    "--include-tables",
                    "users,orders",
                    "--replication-slot",
                    "my_slot",
                    "--publication-name",
                    "my_pub",
                    "--data-freshness",
                    "60",
                ],
            )

        assert result.exit_code == 0, result.output
        cfg = provisioner.provision.await_args.args[0]
        assert cfg.include_tables == ("users", "orders")
        assert cfg.replication_slot == "my_slot"
        assert cfg.publication == "my_pub"
        assert cfg.data_freshness == 60

    def test_create_idempotent_message(self):
        source_patch, prov_patch, _, _ = _patches()
        with source_patch, prov_patch:
            result = runner.invoke(app, ["create", "my-app", "app"])
        assert result.exit_code == 0
        assert "All resources already exist" in result.output

    def test_create_warns_when_both_table_lists_given(self):
        source_patch, prov_patch, _, provisioner = _patches()
        with source_patch, prov_patch:
            result = runner.invoke(
                app,
                [
                    "create",
                    "my-app",
                    "app",
                    "--include-tables",
                    "a",
                    "--exclude-tables",
                    "b",
                ],
            )
        assert result.exit_code == 0
        assert "using --include-tables only" in result.output
        cfg = provisioner.provision.await_args.args[0]
        assert cfg.table_filter.mode == "includeObjects"

    def test_create_passes_kube_options(self):
        source_patch, prov_patch, source, _ = _patches()
        with source_patch, prov_patch:
            result = runner.invoke(
                app, ["create", "my-app", "app", "-n", "team", "-c", "prod"]
            )
        assert result.exit_code == 0
        source.resolve.assert_awaited_once_with(
            "my-app", "app", context="prod", namespace="team"
        )

    def test_create_failure_exits_nonzero(self):
        provision = AsyncMock(
            side_effect=CreateError(ResourceKind.FIREWALL_RULE, "fw", "quota")
        )
        source_patch, prov_patch, _, _ = _patches(provision=provision)
        with source_patch, prov_patch:
            result = runner.invoke(app, ["create", "my-app", "app"])
        assert result.exit_code == 1
        assert "quota" in result.output

    def test_invalid_replication_slot_exits_nonzero(self):
        source_patch, prov_patch, _, provisioner = _patches()
        with source_patch, prov_patch:
            result = runner.invoke(
                app, ["create", "my-app", "app", "--replication-slot", "bad-slot"]
            )
        assert result.exit_code == 1
        provisioner.provision.assert_not_awaited()

    def test_credential_failure_exits_nonzero(self):
        resolve = AsyncMock(side_effect=CredentialResolutionError("no sqlinstance"))
        source_patch, prov_patch, _, provisioner = _patches(resolve=resolve)
        with source_patch, prov_patch:
            result = runner.invoke(app, ["create", "my-app", "app"])
        assert result.exit_code == 1
        assert "no sqlinstance" in result.output
        provisioner.provision.assert_not_awaited()

    def test_settings_file(self, tmp_path: Path):
        path = tmp_path / "settings.yaml"
        path.write_text("vpc_name: custom-vpc\n")
        source_patch, prov_patch, _, _ = _patches()
        with source_patch, prov_patch as prov_cls:
            result = runner.invoke(
                app, ["create", "my-app", "app", "--settings", str(path)]
            )
        assert result.exit_code == 0, result.output
        settings = prov_cls.call_args.args[0]
        assert settings.vpc_name == "custom-vpc"

    def test_missing_settings_file(self, tmp_path: Path):
        source_patch, prov_patch, _, _ = _patches()
        with source_patch, prov_patch:
            result = runner.invoke(
                app,
                ["create", "my-app", "app", "--settings", str(tmp_path / "x.yaml")],
            )
        assert result.exit_code == 1
        assert "Settings error" in result.output


class TestDeleteCommand:
    def test_delete_reports_deleted(self):
        teardown = AsyncMock(return_value={"deleted": ["Stream:postgres-appdb"]})
        source_patch, prov_patch, _, _ = _patches(teardown=teardown)
        with source_patch, prov_patch:
            result = runner.invoke(app, ["delete", "my-app", "app"])
        assert result.exit_code == 0, result.output
        assert "Deleted 1 resource(s)" in result.output
        assert "Stream:postgres-appdb" in result.output

    def test_delete_lists_teardown_failures(self):
        failures = [
            DeleteError(ResourceKind.SOURCE_PROFILE, "postgres-appdb", "in use"),
            DeleteError(ResourceKind.VPC, "datastream-vpc", "has dependents"),
        ]
        teardown = AsyncMock(side_effect=TeardownError(failures))
        source_patch, prov_patch, _, _ = _patches(teardown=teardown)
        with source_patch, prov_patch:
            result = runner.invoke(app, ["delete", "my-app", "app"])
        assert result.exit_code == 1
        assert "2 error(s)" in result.output
        assert "has dependents" in result.output


class TestHelp:
    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        assert "create" in result.output
        assert "delete" in result.output
