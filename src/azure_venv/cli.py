"""Command-line interface for azure-venv.

Provides commands for:
- sync: Load .env tiers and sync the configured blob prefix once
- watch: Sync, then poll for changes until interrupted
- tree: Show the files recorded in the sync manifest
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from azure_venv.core.config import AzureVenvOptions
from azure_venv.core.errors import AzureVenvError
from azure_venv.core.types import LogLevel, SyncMode
from azure_venv.initialize import SyncResult, init_azure_venv, watch_azure_venv
from azure_venv.introspection import FileTreeNode, build_file_tree, files_from_manifest
from azure_venv.sync.manifest import ManifestManager, manifest_path_for


def common_options(func):  # type: ignore[no-untyped-def]
    """Options shared by sync and watch."""
    func = click.option(
        "--root-dir",
        type=click.Path(file_okay=False, path_type=Path),
        default=None,
        help="Directory to sync into (default: current directory).",
    )(func)
    func = click.option(
        "--log-level",
        type=click.Choice([level.value for level in LogLevel]),
        default=None,
        help="Log verbosity.",
    )(func)
    func = click.option(
        "--fail-on-error",
        is_flag=True,
        default=None,
        help="Exit with an error instead of continuing when Azure is unavailable.",
    )(func)
    func = click.option(
        "--concurrency",
        type=click.IntRange(1, 50),
        default=None,
        help="Maximum parallel downloads.",
    )(func)
    func = click.option(
        "--sync-mode",
        type=click.Choice([mode.value for mode in SyncMode]),
        default=None,
        help="full re-downloads everything, incremental only changed blobs.",
    )(func)
    return func


def build_options(
    root_dir: Path | None,
    log_level: str | None,
    fail_on_error: bool | None,
    concurrency: int | None,
    sync_mode: str | None,
    **extra: object,
) -> AzureVenvOptions:
    """Build library options from CLI flags. Unset flags stay None."""
    return AzureVenvOptions(
        root_dir=root_dir,
        log_level=log_level,
        fail_on_error=fail_on_error or None,
        concurrency=concurrency,
        sync_mode=sync_mode,
        **extra,  # type: ignore[arg-type]
    )


def print_summary(result: SyncResult) -> None:
    """Print a one-line summary of a sync result."""
    if not result.attempted:
        click.echo("AZURE_VENV not configured, nothing to sync.")
        return
    click.echo(
        f"Synced {result.downloaded}/{result.total_blobs} blob(s): "
        f"{result.skipped} skipped, {result.failed} failed "
        f"({result.duration * 1000:.0f}ms)"
    )
    for name in result.failed_blobs:
        click.echo(f"  failed: {name}", err=True)
    if result.remote_env_loaded:
        click.echo(f"Remote .env applied ({len(result.env_details.remote_keys)} variable(s))")


def print_tree(nodes: list[FileTreeNode], indent: int = 0) -> None:
    """Print file tree nodes, one per line."""
    for node in nodes:
        if node.is_directory:
            click.echo(f"{'  ' * indent}{node.name}/")
            print_tree(node.children, indent + 1)
        else:
            click.echo(f"{'  ' * indent}{node.name} ({node.size} bytes)")


@click.group()
@click.version_option(package_name="azure-venv")
def cli() -> None:
    """azure-venv - Sync an Azure Blob Storage prefix and its .env into your environment."""


@cli.command()
@common_options
def sync(**kwargs: object) -> None:
    """Sync the configured blob prefix once.

    Reads AZURE_VENV and AZURE_VENV_SAS_TOKEN from the environment (or the
    local .env) and downloads the prefix into the root directory.
    """
    try:
        result = init_azure_venv(build_options(**kwargs))  # type: ignore[arg-type]
    except AzureVenvError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    print_summary(result)
    if result.failed:
        sys.exit(2)


@cli.command()
@common_options
@click.option(
    "--poll-interval",
    type=click.FloatRange(5, 3600),
    default=None,
    help="Seconds between polls (default: AZURE_VENV_POLL_INTERVAL or 30).",
)
def watch(poll_interval: float | None, **kwargs: object) -> None:
    """Sync, then keep polling for changes until Ctrl+C."""
    options = build_options(watch_enabled=True, **kwargs)  # type: ignore[arg-type]
    try:
        result = watch_azure_venv(options, poll_interval=poll_interval)
    except AzureVenvError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    print_summary(result.initial_sync)
    if result.handle is None:
        return

    click.echo("Watching for changes... (Ctrl+C to stop)")
    try:
        # Short waits keep Ctrl+C responsive when signal handlers are not ours
        while not result.handle.wait(timeout=1.0):
            pass
    except KeyboardInterrupt:
        click.echo("\nStopping...")
    finally:
        result.stop()


@cli.command()
@click.option(
    "--root-dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=".",
    show_default=True,
    help="Sync root containing the manifest.",
)
def tree(root_dir: Path) -> None:
    """Show the files recorded by the last sync."""
    manifest = ManifestManager(manifest_path_for(root_dir.resolve())).load()
    if not manifest.entries:
        click.echo("No synced files recorded.")
        return
    print_tree(build_file_tree(files_from_manifest(manifest)))
    if manifest.last_sync_at:
        click.echo(f"\nLast sync: {manifest.last_sync_at}")


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
