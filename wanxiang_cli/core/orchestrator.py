"""
Drives one download to completion: polls the transfer, detects stalls and
timeouts, retries once with a fresh destination and forwards normalized
progress to the caller.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from pathlib import Path

from wanxiang_cli.core.progress import ProgressEmitter
from wanxiang_cli.core.transfer import BackgroundTransfer, TransferHandle
from wanxiang_cli.exceptions import (
    DownloadCancelledError,
    HardTimeoutError,
    NetworkError,
    StallTimeoutError,
)
from wanxiang_cli.models.progress import (
    DownloadEvent,
    DownloadProgress,
    DownloadState,
    DownloadTask,
)

log = logging.getLogger(__name__)

ProgressCallback = Callable[[DownloadProgress], None]
EventCallback = Callable[[DownloadEvent], None]


class _Stalled(Exception):
    """Internal signal: the current attempt made no progress for too long."""


class _FileMissing(Exception):
    """Internal signal: the transfer finished but left no file behind."""


class DownloadOrchestrator:
    """
    Runs the download state machine
    ``Pending -> Running -> {Completed | Stalled -> Retrying -> Running | Failed}``.

    The first attempt uses the background transfer when the host provides one.
    Attempts after a stall, and hosts without a background transfer, use the
    streaming fallback.
    """

    def __init__(
        self,
        fs,
        fallback: BackgroundTransfer,
        transfer: BackgroundTransfer | None = None,
        poll_interval: float = 0.5,
        stall_timeout: float = 180.0,
        hard_timeout: float = 3600.0,
        max_attempts: int = 2,
        file_wait_timeout: float = 3.0,
        throttle_interval: float = 0.25,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._fs = fs
        self._fallback = fallback
        self._transfer = transfer
        self.poll_interval = poll_interval
        self.stall_timeout = stall_timeout
        self.hard_timeout = hard_timeout
        self.max_attempts = max(1, min(2, max_attempts))
        self.file_wait_timeout = file_wait_timeout
        self.throttle_interval = throttle_interval
        self._clock = clock
        self._sleep = sleep

    async def download(
        self,
        url: str,
        destination: Path,
        on_progress: ProgressCallback | None = None,
        on_event: EventCallback | None = None,
        cancel_event: asyncio.Event | None = None,
        expected_size: int | None = None,
    ) -> DownloadTask:
        """
        Downloads ``url`` to ``destination``.

        When the transfer reports it finished but the file never shows up,
        the whole file is fetched once more through the streaming fallback.
        That re-fetch reports a ``refetching`` event and its progress starts
        over from zero.

        Raises:
            StallTimeoutError: Every allowed attempt stalled.
            HardTimeoutError: The absolute time bound elapsed.
            NetworkError: The transfer failed, or the re-fetch left no file either.
            DownloadCancelledError: ``cancel_event`` was set.
        """
        task = DownloadTask(url=url, destination=destination, max_attempts=self.max_attempts)
        emitter = self._new_emitter(expected_size)
        deadline = self._clock() + self.hard_timeout
        refetching = False

        def forward(progress: DownloadProgress | None) -> None:
            if progress is None:
                return
            task.apply(progress)
            if on_progress:
                on_progress(progress)

        def notify(event_type: str, reason: str) -> None:
            if on_event:
                on_event(
                    DownloadEvent(
                        type=event_type,
                        attempt=task.attempt,
                        max_attempts=task.max_attempts,
                        reason=reason,
                    )
                )

        while True:
            # A retry must never append to stale bytes.
            await self._fs.remove_quietly(destination)
            await self._fs.makedirs(destination.parent)

            if refetching:
                starter = self._fallback
            else:
                starter = self._transfer if self._transfer and task.attempt == 1 else self._fallback
                emitter.begin_attempt()
            handle = starter.start(url, destination)
            task.state = DownloadState.RUNNING
            log.debug(f"Download attempt {task.attempt}/{task.max_attempts}: {url}")

            try:
                await self._poll(handle, task, emitter, deadline, cancel_event, forward)
            except _Stalled:
                task.state = DownloadState.STALLED
                await handle.cancel()
                await self._fs.remove_quietly(destination)
                if not task.attempts_left:
                    task.state = DownloadState.FAILED
                    log.error(f"Download stalled {task.attempt} time(s), giving up: {url}")
                    raise StallTimeoutError(
                        f"No progress for {self.stall_timeout:.0f}s "
                        f"after {task.attempt} attempt(s)",
                        attempts=task.attempt,
                    )
                task.begin_retry()
                refetching = False
                log.warning(
                    f"[yellow]Download stalled, retrying "
                    f"({task.attempt}/{task.max_attempts})[/yellow]"
                )
                notify(DownloadState.RETRYING.value, "stalled")
                continue
            except _FileMissing:
                await handle.cancel()
                await self._fs.remove_quietly(destination)
                if refetching:
                    task.state = DownloadState.FAILED
                    raise NetworkError("Transfer finished but the file never appeared")
                log.warning("Finished transfer left no file, fetching it again")
                refetching = True
                emitter = self._new_emitter(emitter.total_bytes)
                notify("refetching", "file missing")
                continue
            except BaseException:
                task.state = DownloadState.FAILED
                await handle.cancel()
                await self._fs.remove_quietly(destination)
                raise

            if not emitter.finished:
                forward(emitter.finish())
            task.state = DownloadState.COMPLETED
            return task

    def _new_emitter(self, hinted_total: int | None) -> ProgressEmitter:
        return ProgressEmitter(
            throttle_interval=self.throttle_interval,
            hinted_total=hinted_total,
            clock=self._clock,
        )

    async def _poll(
        self,
        handle: TransferHandle,
        task: DownloadTask,
        emitter: ProgressEmitter,
        deadline: float,
        cancel_event: asyncio.Event | None,
        forward: ProgressCallback,
    ) -> None:
        """
        Returns once the destination holds the complete file: either the
        transfer signalled it finished and the file appeared, or the emitted
        percent reached 1 and the file is on disk. A percent of 1 without the
        file only means the size hint was low, so polling carries on.
        """
        destination = task.destination

        while True:
            if cancel_event is not None and cancel_event.is_set():
                log.debug("Download cancelled by caller")
                raise DownloadCancelledError("Download cancelled")

            now = self._clock()
            if now >= deadline:
                raise HardTimeoutError(
                    f"Download did not finish within {self.hard_timeout:.0f}s"
                )

            status = handle.snapshot()
            if status.error is not None:
                raise NetworkError(f"Transfer failed: {status.error}") from status.error

            forward(emitter.observe(status.to_raw()))

            if status.finished:
                if await self._wait_for_file(destination, self.file_wait_timeout):
                    return
                raise _FileMissing()

            if emitter.finished and await self._fs.exists(destination):
                return

            if now - emitter.last_growth_at > self.stall_timeout:
                log.debug(
                    f"No growth for {now - emitter.last_growth_at:.0f}s on attempt "
                    f"{task.attempt}"
                )
                raise _Stalled()

            await self._sleep(self.poll_interval)

    async def _wait_for_file(self, path: Path, timeout: float) -> bool:
        start = self._clock()
        while True:
            if await self._fs.exists(path):
                return True
            if self._clock() - start >= timeout:
                return False
            await self._sleep(0.2)
