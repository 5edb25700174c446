"""
Manages a Rich Live display showing the current update stage and a progress
bar for every download.
"""

import asyncio
import logging

from rich.console import Console, Group
from rich.live import Live
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)
from rich.text import Text

from wanxiang_cli.models.progress import DownloadProgress

log = logging.getLogger("wanxiang_cli")


class ProgressManager:
    """
    Renders the stage stream and the progress stream of an update.

    A new progress bar is opened by the first progress event after each stage
    change, labelled with that stage.
    """

    def __init__(self, console: Console):
        self.console = console

        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}", justify="left"),
            BarColumn(bar_width=30),
            "[progress.percentage]{task.percentage:>3.0f}%",
            "•",
            DownloadColumn(),
            "•",
            TransferSpeedColumn(),
            "•",
            TimeRemainingColumn(),
            console=console,
            transient=False,
        )
        self._stage = Text("Starting...", style="bold cyan")
        self._live: Live | None = None
        self._task_id: TaskID | None = None
        self._stage_text = ""
        self._downloads = 0

    def on_stage(self, text: str) -> None:
        if text == self._stage_text:
            return
        self._stage_text = text
        self._stage = Text(text, style="bold cyan")
        self._task_id = None
        log.debug(f"Stage: {text}")
        self._refresh()

    def on_progress(self, progress: DownloadProgress) -> None:
        if self._task_id is None:
            description = self._stage_text or "Downloading"
            if len(description) > 50:
                description = description[:47] + "..."
            self._task_id = self.progress.add_task(
                description, total=progress.total_bytes, start=True
            )
            self._downloads += 1
        if progress.total_bytes:
            self.progress.update(
                self._task_id, total=progress.total_bytes, completed=progress.received_bytes
            )
        else:
            self.progress.update(self._task_id, completed=progress.received_bytes)
        self._refresh()

    @property
    def download_count(self) -> int:
        return self._downloads

    def _renderable(self) -> Group:
        return Group(self._stage, self.progress)

    def _refresh(self) -> None:
        if self._live:
            self._live.update(self._renderable())

    async def __aenter__(self):
        self._live = Live(
            self._renderable(),
            console=self.console,
            refresh_per_second=12,
            vertical_overflow="visible",
        )
        self._live.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._live:
            await asyncio.sleep(0.2)
            self._live.stop()
            self._live = None
