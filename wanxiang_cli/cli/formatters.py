"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path
from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from wanxiang_cli.models.components import ComponentKind, ComponentVersionRecord, UpdateResult
from wanxiang_cli.utils.formatting import format_duration, format_size, short_identifier

KIND_LABELS = {
    ComponentKind.SCHEME: "Scheme",
    ComponentKind.DICT: "Dictionary",
    ComponentKind.MODEL: "Model",
}


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "ConfigurationError": [
            "• Run `wanxiang-cli init <INSTALL_ROOT>` to create a configuration.",
            "• Check the values shown by `wanxiang-cli --show-config`.",
        ],
        "AccessDeniedError": [
            "• Make sure the install folder exists and is writable.",
            "• If you use a bookmark, check it with `wanxiang-cli bookmark list`.",
            "• Re-add a moved folder with `wanxiang-cli bookmark add`.",
        ],
        "NoRemoteAssetError": [
            "• The release may not be published yet for your edition.",
            "• Check `scheme_edition` and `pro_scheme_key` in the configuration.",
            "• Try the other release source with `--source github` or `--source cnb`.",
        ],
        "NetworkError": [
            "• A network connection issue occurred.",
            "• The release server might be temporarily unavailable.",
            "• Please try again in a few minutes.",
        ],
        "StallTimeoutError": [
            "• The download stopped making progress and was retried.",
            "• Check your internet connection, or switch release source.",
        ],
        "HardTimeoutError": [
            "• The download took longer than `hard_timeout` allows.",
            "• Raise `hard_timeout` in the configuration on slow connections.",
        ],
        "FileIntegrityError": [
            "• The downloaded file does not match the published size.",
            "• Run the update again; use `--refresh` to bypass the release cache.",
        ],
        "InvalidArchiveError": [
            "• The archive is damaged or empty.",
            "• Run the update again with `--force`.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    suggestion_text = Text("\n".join(suggestions))

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(suggestion_text)

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, config_data: dict[str, Any]):
    """Displays the current configuration, hiding sensitive data."""
    console = Console()
    content = ""
    for key, value in config_data.items():
        if key == "github_token" and value:
            value = "[hidden]"
        elif isinstance(value, list):
            value = ", ".join(value)
        content += f"{key} = {value}\n"

    console.print(
        Panel(
            content.strip(),
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def print_check_table(checks: dict):
    """Displays the installed and latest remote version of every component."""
    console = Console()
    table = Table(title="Component Updates", box=box.ROUNDED)
    table.add_column("Component", style="bold cyan")
    table.add_column("Installed")
    table.add_column("Latest")
    table.add_column("Size", justify="right")
    table.add_column("Status")

    for kind, check in checks.items():
        installed = check.installed.display_tag if check.installed else "[dim]none[/dim]"
        if check.asset is None:
            table.add_row(
                KIND_LABELS[kind], installed, "[dim]-[/dim]", "", f"[red]✗ {check.error}[/red]"
            )
            continue
        status = (
            "[yellow]↑ Update available[/yellow]"
            if check.needs_update
            else "[green]✓ Up to date[/green]"
        )
        table.add_row(
            KIND_LABELS[kind],
            installed,
            f"{check.asset.display_tag} [dim]({check.asset.name})[/dim]",
            format_size(check.asset.size) if check.asset.size else "-",
            status,
        )
    console.print(table)


def print_status_table(root: Path, records: dict[ComponentKind, ComponentVersionRecord | None]):
    """Displays the version records stored for an install root."""
    console = Console()
    table = Table(show_header=True, box=box.SIMPLE, padding=(0, 2))
    table.add_column("Component", style="bold cyan")
    table.add_column("Version")
    table.add_column("Identifier", style="dim")
    table.add_column("Source")
    table.add_column("Applied", style="dim")

    for kind, record in records.items():
        if record is None:
            table.add_row(KIND_LABELS[kind], "[dim]not installed[/dim]", "", "", "")
            continue
        table.add_row(
            KIND_LABELS[kind],
            record.display_tag or "-",
            short_identifier(record.remote_identifier),
            record.release_source or "-",
            record.applied_at[:19].replace("T", " ") if record.applied_at else "-",
        )

    console.print(
        Panel(table, title=f"Installed in [dim]{root}[/dim]", border_style="cyan", expand=False)
    )


def print_bookmarks_table(bookmarks: dict[str, str]):
    console = Console()
    if not bookmarks:
        console.print("[dim]No bookmarks saved yet.[/dim]")
        return
    table = Table(box=box.SIMPLE)
    table.add_column("Name", style="bold cyan")
    table.add_column("Path")
    table.add_column("Exists", justify="center")
    for name, path in sorted(bookmarks.items()):
        exists = "[green]✓[/green]" if Path(path).is_dir() else "[red]✗[/red]"
        table.add_row(name, path, exists)
    console.print(table)


def print_summary_panel(results: list[UpdateResult], duration_s: float):
    """Displays the final summary of an update run."""
    console = Console()

    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column(style="bold cyan", justify="right", width=16)
    stats_table.add_column(style="white", justify="left")

    for result in results:
        label = KIND_LABELS[result.kind] + ":"
        if result.applied:
            detail = f"[bold green]✓ {result.display_tag}[/bold green]"
            detail += f" [dim]({result.files_written} written"
            if result.files_removed:
                detail += f", {result.files_removed} removed"
            detail += ")[/dim]"
        else:
            detail = f"[dim]○ {result.display_tag} already installed[/dim]"
        stats_table.add_row(label, detail)

    stats_table.add_row("", "")
    stats_table.add_row("Time Elapsed:", f"[blue]{format_duration(duration_s)}[/blue]")

    applied = any(r.applied for r in results)
    console.print()
    console.print(
        Panel(
            stats_table,
            title="[bold]Update Complete![/bold]" if applied else "[bold]Nothing To Update[/bold]",
            border_style="green" if applied else "cyan",
            box=box.DOUBLE,
            expand=False,
            padding=(1, 2),
        )
    )
    console.print()
