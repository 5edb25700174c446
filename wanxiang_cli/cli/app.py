"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import functools
import logging
import os
import time
from enum import Enum
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from wanxiang_cli import __version__
from wanxiang_cli.api.releases import CNB_BASE, GITHUB_API, ReleaseClient
from wanxiang_cli.core.filesystem import LocalFileSystem
from wanxiang_cli.core.installer import ArchiveInstaller
from wanxiang_cli.core.orchestrator import DownloadOrchestrator
from wanxiang_cli.core.resolver import FileBookmarkResolver, InstallRootResolver
from wanxiang_cli.core.transfer import StreamingTransfer, create_session, fetch_content_length
from wanxiang_cli.core.update_manager import UPDATE_ORDER, UpdateManager
from wanxiang_cli.exceptions import UpdaterError
from wanxiang_cli.models.components import ComponentKind, OverwritePolicy, UpdateResult
from wanxiang_cli.models.config import UpdaterConfig
from wanxiang_cli.storage.config_manager import ConfigManager
from wanxiang_cli.storage.kv_store import SqliteKeyValueStore
from wanxiang_cli.storage.manifest import ExtractionTracker
from wanxiang_cli.storage.metadata import VersionMetadataStore
from wanxiang_cli.storage.migrations import get_schema_version, run_migrations
from wanxiang_cli.storage.release_cache import ReleaseCache

from .formatters import (
    print_bookmarks_table,
    print_check_table,
    print_config,
    print_status_table,
    print_summary_panel,
)
from .progress_manager import ProgressManager

console = Console()

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("wanxiang_cli")

app = typer.Typer(
    name="wanxiang-cli",
    help=(
        "Keeps the Wanxiang Rime scheme, dictionary and language model up to date."
        " Use 'wanxiang-cli <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)
bookmark_app = typer.Typer(help="Manage named install-folder bookmarks.")
app.add_typer(bookmark_app, name="bookmark")


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "wanxiang-cli"


CONFIG_DIR = get_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.ini"
BOOKMARKS_FILE = CONFIG_DIR / "bookmarks.json"


class UpdateTarget(str, Enum):
    ALL = "all"
    SCHEME = "scheme"
    DICT = "dict"
    MODEL = "model"


async def _open_state() -> SqliteKeyValueStore:
    """Opens the state database and applies pending schema migrations."""
    store = SqliteKeyValueStore(CONFIG_DIR)
    await run_migrations(store)
    return store


def _build_manager(config: UpdaterConfig, session, store) -> UpdateManager:
    fs = LocalFileSystem()
    orchestrator = DownloadOrchestrator(
        fs,
        StreamingTransfer(session),
        poll_interval=config.poll_interval,
        stall_timeout=config.stall_timeout,
        hard_timeout=config.hard_timeout,
        max_attempts=config.max_attempts,
    )
    return UpdateManager(
        config,
        InstallRootResolver(fs, FileBookmarkResolver(BOOKMARKS_FILE)),
        ReleaseClient(session, config, ReleaseCache(CONFIG_DIR)),
        orchestrator,
        ArchiveInstaller(fs),
        ExtractionTracker(store, fs),
        VersionMetadataStore(store),
        fs,
        content_length_probe=functools.partial(fetch_content_length, session),
    )


def _load_config(source: str | None = None) -> UpdaterConfig:
    config_manager = ConfigManager(CONFIG_FILE)
    return config_manager.load_config({"release_source": source})


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    show_config: bool = typer.Option(
        False, "--show-config", help="Display the current configuration."
    ),
    clear_cache: bool = typer.Option(
        False, "--clear-cache", help="Clear the release listing cache and exit."
    ),
):
    """Wanxiang Updater CLI"""
    if version:
        console.print(f"[bold]wanxiang-cli[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    log_level = "INFO"
    if verbose >= 2:
        log_level = "DEBUG"
    logging.getLogger("wanxiang_cli").setLevel(log_level)

    if clear_cache:
        cache = ReleaseCache(CONFIG_DIR)
        console.print("[cyan]Clearing release cache...[/cyan]")
        files_count = cache.entry_count()
        if cache.clear():
            console.print(
                f"[green]✓ Cache cleared successfully ({files_count} entries removed"
                ").[/green]"
            )
        else:
            console.print("[red]✗ Failed to clear cache.[/red]")
        raise typer.Exit()

    if show_config:
        if not CONFIG_FILE.is_file():
            console.print(
                "[red]✗ Config file not found.[/] Run [cyan]wanxiang-cli init[/cyan]"
                " first."
            )
            raise typer.Exit(code=1)
        config_manager = ConfigManager(CONFIG_FILE)
        config_manager.load_config()
        print_config(CONFIG_FILE, config_manager._get_config_as_dict())
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    install_root: str = typer.Argument(
        "", help="The Rime user folder to install into (ignored when --bookmark is set)."
    ),
    bookmark: str = typer.Option(
        "", "--bookmark", "-b", help="Resolve the install folder through a named bookmark."
    ),
    source: str = typer.Option("cnb", "--source", help="Release source: cnb or github."),
    edition: str = typer.Option("base", "--edition", help="Scheme edition: base or pro."),
    key: str = typer.Option("moqi", "--key", help="Auxiliary code scheme for the pro edition."),
    exclude: list[str] = typer.Option(  # noqa: B008
        [], "--exclude", "-e", help="A file pattern never overwritten or removed."
    ),
    keep_existing: bool = typer.Option(
        False, "--keep-existing", help="Never overwrite files that already exist."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing configuration without asking."
    ),
):
    """Create the configuration file."""
    if not install_root and not bookmark:
        console.print("[red]✗ Give an install folder or a --bookmark name.[/red]")
        raise typer.Exit(code=1)
    if (
        CONFIG_FILE.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    settings = {
        "install_root": os.path.abspath(os.path.expanduser(install_root)) if install_root else "",
        "bookmark_name": bookmark,
        "release_source": source,
        "scheme_edition": edition,
        "pro_scheme_key": key,
        "exclude_patterns": exclude,
        "overwrite_policy": (
            OverwritePolicy.KEEP_EXISTING if keep_existing else OverwritePolicy.OVERWRITE
        ),
    }
    ConfigManager(CONFIG_FILE).save_new_config(settings)
    console.print(f"\n[bold green]✓ Configuration saved to '{CONFIG_FILE}'[/bold green]")
    console.print("Ready! Try: [cyan]wanxiang-cli check[/cyan]")


@bookmark_app.command("add")
def bookmark_add(
    name: str = typer.Argument(..., help="The bookmark name."),
    path: Path = typer.Argument(..., help="The folder the bookmark points at."),  # noqa: B008
):
    """Save or move a bookmark."""
    if not path.expanduser().is_dir():
        console.print(f"[red]✗ Folder not found: {path}[/red]")
        raise typer.Exit(code=1)
    FileBookmarkResolver(BOOKMARKS_FILE).add(name, path)
    console.print(f"[green]✓ Bookmark '{name}' now points at '{path.expanduser()}'.[/green]")


@bookmark_app.command("remove")
def bookmark_remove(name: str = typer.Argument(..., help="The bookmark name.")):
    """Delete a bookmark."""
    if FileBookmarkResolver(BOOKMARKS_FILE).remove(name):
        console.print(f"[green]✓ Bookmark '{name}' removed.[/green]")
    else:
        console.print(f"[yellow]No bookmark named '{name}'.[/yellow]")


@bookmark_app.command("list")
def bookmark_list():
    """List saved bookmarks."""
    print_bookmarks_table(FileBookmarkResolver(BOOKMARKS_FILE).load())


@app.command()
def check(
    refresh: bool = typer.Option(False, "--refresh", help="Bypass the release cache."),
    source: str | None = typer.Option(None, "--source", help="Override the release source."),
):
    """Check which components have updates available."""
    config = _load_config(source)

    async def _check_async():
        store = await _open_state()
        async with create_session() as session:
            manager = _build_manager(config, session, store)
            with console.status("[cyan]Checking releases...[/cyan]"):
                checks = await manager.check_all(refresh=refresh)
        print_check_table(checks)

    asyncio.run(_check_async())


@app.command()
def update(
    target: UpdateTarget = typer.Argument(  # noqa: B008
        UpdateTarget.ALL, help="Which component to update."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Reinstall even when already up to date."
    ),
    refresh: bool = typer.Option(False, "--refresh", help="Bypass the release cache."),
    source: str | None = typer.Option(None, "--source", help="Override the release source."),
):
    """Download and install component updates."""
    config = _load_config(source)

    async def _update_async():
        store = await _open_state()
        start_time = time.monotonic()
        results = []
        async with create_session() as session:
            manager = _build_manager(config, session, store)
            async with ProgressManager(console) as progress:
                if target is UpdateTarget.ALL:
                    checks = await manager.check_all(refresh=refresh)
                    updated = await manager.auto_update_all(
                        on_stage=progress.on_stage,
                        on_progress=progress.on_progress,
                        force=force,
                        prechecked=checks,
                    )
                    by_kind = {r.kind: r for r in updated}
                    root = await manager.resolve_root()
                    for kind in UPDATE_ORDER:
                        check = checks[kind]
                        if kind in by_kind:
                            results.append(by_kind[kind])
                        elif check.asset is not None:
                            results.append(
                                UpdateResult(
                                    kind,
                                    False,
                                    check.asset.remote_mark(kind),
                                    check.asset.display_tag,
                                    root,
                                )
                            )
                else:
                    kind = ComponentKind(target.value)
                    asset = await manager.release_client.latest_asset(kind, refresh=refresh)
                    results.append(
                        await manager.update_component(
                            kind,
                            on_stage=progress.on_stage,
                            on_progress=progress.on_progress,
                            force=force,
                            asset=asset,
                        )
                    )
        print_summary_panel(results, time.monotonic() - start_time)

    asyncio.run(_update_async())


@app.command()
def status():
    """Show the versions installed in the configured folder."""
    config = _load_config()

    async def _status_async():
        store = await _open_state()
        fs = LocalFileSystem()
        resolver = InstallRootResolver(fs, FileBookmarkResolver(BOOKMARKS_FILE))
        root = await resolver.resolve(config.install_root, config.bookmark_name)
        records = await VersionMetadataStore(store).load_all(root, config.bookmark_name)
        print_status_table(root, records)

    asyncio.run(_status_async())


@app.command()
def forget(
    force: bool = typer.Option(
        False, "--force", "-f", help="Bypass the confirmation prompt."
    ),
):
    """Forget installed versions and tracked files for the configured folder."""
    config = _load_config()
    if not force and not typer.confirm(
        "Forget the installed versions? The next update will reinstall everything "
        "and will no longer remove files from earlier installs."
    ):
        console.print("[yellow]Operation cancelled.[/yellow]")
        raise typer.Abort()

    async def _forget_async():
        store = await _open_state()
        fs = LocalFileSystem()
        resolver = InstallRootResolver(fs, FileBookmarkResolver(BOOKMARKS_FILE))
        root = await resolver.resolve(config.install_root, config.bookmark_name)
        records_cleared = await VersionMetadataStore(store).clear_root(root)
        files_cleared = await ExtractionTracker(store, fs).clear_root(root)
        if records_cleared or files_cleared:
            console.print(f"[green]✓ Forgot everything recorded for '{root}'.[/green]")
        else:
            console.print(f"[dim]Nothing was recorded for '{root}'.[/dim]")

    asyncio.run(_forget_async())


@app.command()
def diagnose():
    """Diagnose common configuration, folder and connectivity issues."""
    console.print("\n[bold cyan]Running diagnostics...[/bold cyan]\n")
    issues_found = False
    if CONFIG_FILE.is_file():
        console.print(f"[green]✓[/] Config file exists at: [dim]{CONFIG_FILE}[/dim]")
    else:
        console.print(
            "[red]✗ Config file not found.[/] Run [cyan]wanxiang-cli init[/cyan]."
        )
        raise typer.Exit(code=1)
    try:
        config = _load_config()
        console.print("[green]✓[/] Configuration file is valid and can be loaded.")
    except UpdaterError as e:
        console.print(f"[red]✗ Configuration validation failed: {e}[/red]")
        raise typer.Exit(code=1) from e

    async def _diagnose_async() -> bool:
        ok = True
        store = await _open_state()
        console.print(
            f"[green]✓[/] State database is at schema version "
            f"{await get_schema_version(store)}."
        )

        resolver = InstallRootResolver(LocalFileSystem(), FileBookmarkResolver(BOOKMARKS_FILE))
        try:
            root = await resolver.resolve(config.install_root, config.bookmark_name)
            console.print(f"[green]✓[/] Install folder is writable: [dim]{root}[/dim]")
        except UpdaterError as e:
            console.print(f"[red]✗ Install folder check failed: {e}[/red]")
            ok = False

        console.print("\n[dim]Testing connectivity to the release source...[/dim]")
        url = GITHUB_API if config.release_source == "github" else CNB_BASE
        try:
            async with create_session() as session, session.get(url) as resp:
                if resp.status < 400:
                    console.print(f"[green]✓[/] Successfully connected to {url}.")
                else:
                    console.print(f"[red]✗ Could not connect to {url} (Status: {resp.status}).[/red]")
                    ok = False
        except Exception as e:
            console.print(f"[red]✗ Connection test failed: {e}[/red]")
            ok = False
        return ok

    if not asyncio.run(_diagnose_async()):
        issues_found = True
    console.print()
    if not issues_found:
        console.print(
            "[bold green]✓ All checks passed! Your setup looks good.[/bold green]\n"
        )
    else:
        console.print(
            "[bold red]✗ Some issues were found. "
            "Please review the messages above.[/bold red]\n"
        )
