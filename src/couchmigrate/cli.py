"""Command line interface for running migrations from configuration files.

Commands:
- ``couchmigrate run CONFIG``: run a migration, exit status 1 on fatal error
- ``couchmigrate show-config CONFIG``: print the resolved configuration
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .config import MigrationConfig, load_config_file, load_plugin, mask_secrets
from .driver import MigrationDriver
from .exceptions import ConfigurationError, MigrationAbortedError
from .progress import LoggingReporter, MigrationProgress, ProgressReporter, RichProgressReporter
from .stores import DocumentStore, create_store

console = Console(stderr=True)

logger = logging.getLogger(__name__)


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def build_migration(
    data: dict[str, Any],
) -> tuple[DocumentStore, MigrationConfig]:
    """Create the store and migration config described by a loaded config file."""
    plugin_ref = data.get("plugin")
    if not plugin_ref:
        raise ConfigurationError("plugin", "a plugin module providing changes() is required")
    plugin = load_plugin(str(plugin_ref), base_dir=_config_dir(data))
    config = MigrationConfig.from_dict(data.get("migration", {}), plugin=plugin)
    store = create_store(data.get("store", {}))
    return store, config


def _config_dir(data: dict[str, Any]) -> Path | None:
    config_dir = data.get("config_dir")
    return Path(config_dir) if config_dir else None


async def run_migration(
    store: DocumentStore,
    config: MigrationConfig,
    reporter: ProgressReporter,
) -> MigrationProgress:
    async with store:
        return await MigrationDriver(store, config, reporter=reporter).run()


def render_summary(progress: MigrationProgress) -> Table:
    table = Table(title="Migration summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")
    table.add_row("Pages", str(progress.pages))
    table.add_row("Rows", str(progress.total))
    table.add_row("Migrated", str(progress.migrated))
    table.add_row("Failed", str(progress.failed))
    table.add_row("Filtered", str(progress.filtered))
    table.add_row("Bulk writes", str(progress.bulk_writes))
    table.add_row("Retries", str(progress.retries))
    table.add_row("Duration", f"{progress.duration:.2f}s")
    return table


@click.group()
@click.version_option(version=__version__)
def cli():
    """couchmigrate - batch migrations over document store views"""
    pass


@cli.command()
@click.argument("config_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--limit", type=click.IntRange(min=0), default=None, help="Maximum rows to process")
@click.option("--batch-size", type=click.IntRange(min=1), default=None, help="Rows per bulk write")
@click.option("--retry-conflicts", type=click.IntRange(min=0), default=None,
              help="Retries for conflicting rows (0 disables)")
@click.option("--no-progress", is_flag=True, help="Log progress instead of drawing a bar")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def run(
    config_file: str,
    limit: int | None,
    batch_size: int | None,
    retry_conflicts: int | None,
    no_progress: bool,
    verbose: bool,
):
    """Run the migration described by CONFIG_FILE"""
    configure_logging(verbose)

    try:
        data = load_config_file(config_file)
        overrides = {
            "limit": limit,
            "batch_size": batch_size,
            "retry_conflicts": retry_conflicts,
        }
        data["migration"].update({k: v for k, v in overrides.items() if v is not None})
        store, config = build_migration(data)
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(2)

    try:
        if no_progress:
            progress = asyncio.run(run_migration(store, config, LoggingReporter()))
        else:
            with RichProgressReporter(console=console) as reporter:
                progress = asyncio.run(run_migration(store, config, reporter))
    except MigrationAbortedError as e:
        console.print("[red]Critical error running migration[/red]")
        console.print(f"[red]{e.cause!r}[/red]")
        if e.cursor is not None:
            console.print(
                f"Resume from startkey={json.dumps(e.cursor.key, default=str)}"
                + (f" startkey_docid={e.cursor.doc_id}" if e.cursor.doc_id else "")
            )
        sys.exit(1)

    console.print(render_summary(progress))
    if progress.failed:
        console.print(f"[yellow]{progress.failed} rows were not migrated[/yellow]")


@cli.command("show-config")
@click.argument("config_file", type=click.Path(exists=True, dir_okay=False))
def show_config(config_file: str):
    """Print the resolved configuration with secrets masked"""
    try:
        data = load_config_file(config_file)
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(2)
    data.pop("config_dir", None)
    click.echo(json.dumps(mask_secrets(data), indent=2, default=str))


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
