"""Typer CLI for provisioning Datastream pipelines."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import structlog
import typer
from rich.console import Console
from rich.markup import escape

from cdc_datastream.config.loader import load_settings
from cdc_datastream.config.models import OrchestratorSettings, ProvisioningConfig
from cdc_datastream.credentials import KubernetesCredentialSource
from cdc_datastream.errors import DatastreamError, TeardownError
from cdc_datastream.provisioner import DatastreamProvisioner

logger = structlog.get_logger()
console = Console()
err_console = Console(stderr=True)
app = typer.Typer(
    name="cdc-datastream",
    help="CLI for setting up Datastream from Cloud SQL Postgres to BigQuery.",
    no_args_is_help=True,
)

NamespaceOption = typer.Option(
    None,
    "--namespace",
    "-n",
    envvar="CDC_DATASTREAM_NAMESPACE",
    help="Kubernetes namespace of the app (defaults to the context's namespace)",
)
ContextOption = typer.Option(
    None,
    "--context",
    "-c",
    envvar="CDC_DATASTREAM_CONTEXT",
    help="Kubernetes context (defaults to the current context)",
)
SettingsOption = typer.Option(
    None, "--settings", help="YAML file overriding the built-in orchestrator settings"
)


def _settings(path: str | None) -> OrchestratorSettings:
    try:
        return load_settings(Path(path) if path else None)
    except (FileNotFoundError, TypeError, ValueError) as exc:
        err_console.print(f"[red]Settings error:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc


async def _resolve(
    app_name: str, db_user: str, context: str | None, namespace: str | None
) -> ProvisioningConfig:
    console.print("Retrieving datastream configuration...")
    source = KubernetesCredentialSource()
    return await source.resolve(app_name, db_user, context=context, namespace=namespace)


def _fail(exc: Exception) -> typer.Exit:
    err_console.print(f"[red]Error:[/red] {escape(str(exc))}")
    if isinstance(exc, TeardownError):
        for failure in exc.failures:
            err_console.print(f"  - {escape(str(failure))}")
    return typer.Exit(1)


@app.command()
def create(
    app_name: str = typer.Argument(..., metavar="APP", help="Application name"),
    db_user: str = typer.Argument(..., help="Database user the stream connects as"),
    include_tables: str | None = typer.Option(
        None,
        "--include-tables",
        help="Comma separated list of tables to include in the datastream",
    ),
    exclude_tables: str | None = typer.Option(
        None,
        "--exclude-tables",
        help="Comma separated list of tables to exclude from the datastream",
    ),
    replication_slot: str | None = typer.Option(
        None,
        "--replication-slot",
        help="Name of the replication slot in the database (default ds_replication)",
    ),
    publication_name: str | None = typer.Option(
        None,
        "--publication-name",
        help="Name of the publication in the database (default ds_publication)",
    ),
    data_freshness: int = typer.Option(
        900,
        "--data-freshness",
        min=0,
        help="Seconds between fetches from the database into BigQuery",
    ),
    namespace: str | None = NamespaceOption,
    context: str | None = ContextOption,
    settings_path: str | None = SettingsOption,
) -> None:
    """Create a new datastream."""
    settings = _settings(settings_path)
    if include_tables and exclude_tables:
        err_console.print(
            "[yellow]Both table lists given; using --include-tables only[/yellow]"
        )

    async def _create() -> dict[str, Any]:
        base = await _resolve(app_name, db_user, context, namespace)
        cfg = base.with_stream_options(
            include_tables=include_tables,
            exclude_tables=exclude_tables,
            replication_slot=replication_slot,
            publication=publication_name,
            data_freshness=data_freshness,
        )
        return await DatastreamProvisioner(settings).provision(cfg)

    try:
        result = asyncio.run(_create())
    except (DatastreamError, ValueError) as exc:
        raise _fail(exc) from exc

    created = result.get("created", [])
    if created:
        console.print(f"[green]Created {len(created)} resource(s):[/green]")
        for entry in created:
            console.print(f"  {entry}")
    else:
        console.print("[green]All resources already exist[/green]")


@app.command()
def delete(
    app_name: str = typer.Argument(..., metavar="APP", help="Application name"),
    db_user: str = typer.Argument(..., help="Database user the stream connects as"),
    namespace: str | None = NamespaceOption,
    context: str | None = ContextOption,
    settings_path: str | None = SettingsOption,
) -> None:
    """Delete a datastream."""
    settings = _settings(settings_path)

    async def _delete() -> dict[str, Any]:
        cfg = await _resolve(app_name, db_user, context, namespace)
        return await DatastreamProvisioner(settings).teardown(cfg)

    try:
        result = asyncio.run(_delete())
    except (DatastreamError, ValueError) as exc:
        raise _fail(exc) from exc

    deleted = result.get("deleted", [])
    console.print(f"[green]Deleted {len(deleted)} resource(s)[/green]")
    for entry in deleted:
        console.print(f"  {entry}")


def main() -> None:
    app()
