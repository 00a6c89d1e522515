"""Stencil CLI commands."""

import json
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from stencil_core import build_sync_config, load_lock, load_project_config
from stencil_core.config import CONFIG_FILE_NAME, default_config_location, resolve_root_dir
from stencil_core.errors import FetchError, StencilError, SyncConflictError, ValidationError
from stencil_core.lockfile import LOCK_FILE_NAME
from stencil_core.models import SyncConfig
from stencil_sync import (
    HttpFetcher,
    ManifestSync,
    Outcome,
    SyncFileProgress,
    SyncOptions,
    SyncResult,
)

app = typer.Typer(help="Stencil - keep shared template files in sync across repositories")
console = Console()

EXIT_OK = 0
EXIT_SYNC_FAILED = 1
EXIT_CONFIG_ERROR = 2
EXIT_CONFLICT = 3

# Configure logging (default to WARNING, can be lowered to INFO in debug mode)
logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M",
)
logger = logging.getLogger(__name__)

OUTCOME_STYLES = {
    Outcome.CREATED: "green",
    Outcome.UPDATED: "cyan",
    Outcome.UNCHANGED: "dim",
    Outcome.SKIPPED: "yellow",
    Outcome.CONFLICT: "red",
}

CONFIG_TEMPLATE = """\
version: 1
# Shorthand: one source + one file rule per listed file.
repositories:
  - _comment: example repository
    url: https://example.com/templates/
    headers: {}
    files:
      - file_name: ci/lint.yaml
        out_dir: .github/workflows
        rename: lint.yaml
        x_stencil:
          merge: three_way
          backup: timestamp
# Explicit form.
sources: {}
files: []
profiles: {}
"""


def _set_debug(debug: bool) -> None:
    level = logging.INFO if debug else logging.WARNING
    logging.getLogger().setLevel(level)
    logging.getLogger("stencil_sync").setLevel(level)


def _load_config(config: str | None) -> tuple[SyncConfig, Path]:
    location = config or default_config_location()
    try:
        project = load_project_config(location)
        sync_cfg = build_sync_config(project)
    except (FileNotFoundError, ValidationError, FetchError) as e:
        console.print(f"[red]Config error:[/red] {escape(str(e))}")
        raise typer.Exit(EXIT_CONFIG_ERROR) from e
    return sync_cfg, resolve_root_dir(location)


def _print_progress(progress: SyncFileProgress) -> None:
    style = OUTCOME_STYLES.get(progress.outcome, "")
    console.print(
        f"[dim][{progress.index}/{progress.total}][/dim] "
        f"[{style}]{progress.outcome.value:<9}[/{style}] {escape(progress.path)}"
    )


def _print_result(result: SyncResult) -> None:
    console.print(
        f"created={result.created} updated={result.updated} "
        f"unchanged={result.unchanged} skipped={result.skipped}"
    )
    for path in result.conflicts:
        console.print(f"[red]conflict:[/red] {escape(path)}")


def _run_sync(
    config: str | None,
    *,
    mode: str = "",
    backup: str = "",
    dry_run: bool = False,
    profile: str = "",
    debug: bool = False,
) -> None:
    _set_debug(debug)
    sync_cfg, root = _load_config(config)
    options = SyncOptions(
        root_dir=root,
        lock_path=root / LOCK_FILE_NAME,
        mode_override=mode,
        backup_override=backup,
        dry_run=dry_run,
        profile=profile,
        on_file=_print_progress,
    )

    if dry_run:
        console.print(f"[cyan]Planning sync in {root} (dry run)[/cyan]")
    else:
        console.print(f"[cyan]Syncing {root}[/cyan]")

    try:
        with HttpFetcher() as fetcher:
            result = ManifestSync(sync_cfg, options, fetcher=fetcher).sync()
    except SyncConflictError as e:
        _print_result(e.result)
        console.print("[yellow][WARN] Sync completed with conflicts; lock file not updated[/yellow]")
        raise typer.Exit(EXIT_CONFLICT) from e
    except ValidationError as e:
        console.print(f"[red]Config error:[/red] {escape(str(e))}")
        raise typer.Exit(EXIT_CONFIG_ERROR) from e
    except (StencilError, OSError) as e:
        console.print(f"[red][ERROR] Sync failed:[/red] {escape(str(e))}")
        logger.debug("Sync failed", exc_info=True)
        raise typer.Exit(EXIT_SYNC_FAILED) from e

    _print_result(result)
    console.print("[green][OK] Sync completed successfully[/green]")


@app.command()
def sync(
    config: str | None = typer.Option(None, "--config", "-c", help="Path or URL of stencil.yaml"),
    mode: str = typer.Option(
        "", "--mode", help="Merge mode override: three_way | overwrite | keep_local"
    ),
    backup: str = typer.Option("", "--backup", help="Backup strategy override: none | timestamp"),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Show what would be done without doing it"
    ),
    profile: str = typer.Option("", "--profile", help="Append this profile's file rules"),
    debug: bool = typer.Option(False, "--debug", help="Verbose logging"),
):
    """Sync files from manifest sources."""
    _run_sync(config, mode=mode, backup=backup, dry_run=dry_run, profile=profile, debug=debug)


@app.command()
def plan(
    config: str | None = typer.Option(None, "--config", "-c", help="Path or URL of stencil.yaml"),
    profile: str = typer.Option("", "--profile", help="Append this profile's file rules"),
    debug: bool = typer.Option(False, "--debug", help="Verbose logging"),
):
    """Preview sync changes (dry run)."""
    _run_sync(config, dry_run=True, profile=profile, debug=debug)


@app.command()
def init(
    path: str = typer.Argument(CONFIG_FILE_NAME, help="Where to write the config template"),
):
    """Create a stencil.yaml template."""
    target = Path(path)
    if target.exists():
        console.print(f"[yellow]{escape(str(target))} already exists[/yellow]")
        raise typer.Exit(1)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(CONFIG_TEMPLATE, encoding="utf-8")
    console.print(f"[green][OK][/green] initialized: {escape(str(target))}")


@app.command()
def status(
    config: str | None = typer.Option(None, "--config", "-c", help="Path or URL of stencil.yaml"),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show the baselines recorded in the lock file."""
    location = config or default_config_location()
    lock_path = resolve_root_dir(location) / LOCK_FILE_NAME
    try:
        lock = load_lock(lock_path)
    except StencilError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(EXIT_SYNC_FAILED) from e

    if json_out:
        print(json.dumps(lock.model_dump(), indent=2))
        return

    console.rule(f"[bold cyan]{escape(str(lock_path))}[/bold cyan]")
    if not lock.files:
        console.print("[yellow]No files recorded[/yellow]")
        return
    table = Table(show_header=True, header_style="bold")
    table.add_column("Path")
    table.add_column("Source")
    table.add_column("Applied hash")
    table.add_column("Updated at")
    for target, entry in sorted(lock.files.items()):
        table.add_row(target, entry.source_url, entry.applied_hash[:12], entry.updated_at)
    console.print(table)


if __name__ == "__main__":
    app()
