"""
Main entry point for the wanxiang-cli application.
Runs the Typer app and turns engine errors into a readable panel and exit code.
"""

import asyncio
import logging
import os
import sys

import typer
from rich.console import Console

from wanxiang_cli.cli.app import app
from wanxiang_cli.cli.formatters import format_error_with_suggestions
from wanxiang_cli.exceptions import (
    AccessDeniedError,
    DownloadCancelledError,
    StallTimeoutError,
    UpdaterError,
)


def _error_context(error: UpdaterError) -> dict | None:
    context = {}
    command = next((arg for arg in sys.argv[1:] if not arg.startswith("-")), "")
    if command:
        context["command"] = command
    if isinstance(error, AccessDeniedError) and error.path:
        context["path"] = error.path
    if isinstance(error, StallTimeoutError):
        context["attempts"] = error.attempts
    return context or None


def main() -> None:
    """Main entry point function."""
    if os.name == "nt":
        # Rime folders and release titles are often non-ASCII.
        for stream in (sys.stdout, sys.stderr):
            try:
                stream.reconfigure(encoding="utf-8")
            except (TypeError, AttributeError):
                pass

    log = logging.getLogger("wanxiang_cli")
    console = Console()

    try:
        app()
    except (typer.Exit, typer.Abort):
        pass
    except (KeyboardInterrupt, asyncio.CancelledError, DownloadCancelledError):
        console.print("\n[yellow]⚠️  Update cancelled. Partial downloads were removed.[/yellow]")
        sys.exit(0)
    except UpdaterError as e:
        console.print(f"\n{format_error_with_suggestions(e, _error_context(e))}")
        log.debug(f"{type(e).__name__} raised", exc_info=True)
        sys.exit(1)
    except Exception as e:
        console.print(f"\n{format_error_with_suggestions(e, {'type': 'Unexpected'})}")
        log.debug("Full traceback:", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
