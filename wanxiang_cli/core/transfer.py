"""
Transfer primitives polled by the download orchestrator: the background
transfer protocol, an aiohttp streaming implementation, the content-length
probe and the HTTP session factory.
"""

import asyncio
import logging
import re
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import aiofiles
import aiofiles.os
import aiohttp

from wanxiang_cli import __version__
from wanxiang_cli.models.progress import RawProgress

log = logging.getLogger(__name__)

MIN_CHUNK_SIZE = 131072  # 128 KB
MAX_CHUNK_SIZE = 1048576  # 1 MB
PART_SUFFIX = ".part"


def adapt_chunk_size(current_speed_bps: float) -> int:
    """Picks a read size suited to the measured network speed."""
    if current_speed_bps > 10 * 1024 * 1024:  # > 10 MB/s
        return MAX_CHUNK_SIZE
    if current_speed_bps > 5 * 1024 * 1024:  # > 5 MB/s
        return 524288  # 512 KB
    if current_speed_bps > 1 * 1024 * 1024:  # > 1 MB/s
        return 262144  # 256 KB
    return MIN_CHUNK_SIZE


@dataclass(frozen=True)
class TransferStatus:
    """The native progress fields of a transfer at one instant."""

    fraction: float | None = None
    received_bytes: int | None = None
    total_bytes: int | None = None
    finished: bool = False
    error: BaseException | None = None

    def to_raw(self) -> RawProgress:
        return RawProgress(
            fraction=self.fraction,
            received_bytes=self.received_bytes,
            total_bytes=self.total_bytes,
        )


class TransferHandle(Protocol):
    def snapshot(self) -> TransferStatus: ...

    async def cancel(self) -> None: ...


class BackgroundTransfer(Protocol):
    """Starts a download to a destination path and returns a pollable handle."""

    def start(self, url: str, destination: Path) -> TransferHandle: ...


class StreamingHandle:
    """
    A transfer running as an asyncio task that appends response chunks to a
    ``.part`` file and moves it onto the destination once the body is complete.
    """

    def __init__(self, session: aiohttp.ClientSession, url: str, destination: Path):
        self.url = url
        self.destination = destination
        self.part_path = destination.with_name(destination.name + PART_SUFFIX)
        self.received_bytes = 0
        self.total_bytes: int | None = None
        self.finished = False
        self.error: BaseException | None = None
        self._session = session
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            async with self._session.get(self.url, allow_redirects=True) as response:
                response.raise_for_status()
                length = response.headers.get("Content-Length", "")
                if length.isdigit() and int(length) > 0:
                    self.total_bytes = int(length)

                await aiofiles.os.makedirs(self.part_path.parent, exist_ok=True)
                async with aiofiles.open(self.part_path, "wb") as f:
                    chunk_size = MIN_CHUNK_SIZE
                    last_speed_check = loop.time()
                    last_bytes = 0
                    while True:
                        chunk = await response.content.read(chunk_size)
                        if not chunk:
                            break
                        await f.write(chunk)
                        self.received_bytes += len(chunk)
                        now = loop.time()
                        if now - last_speed_check > 2.0:
                            speed = (self.received_bytes - last_bytes) / (
                                now - last_speed_check
                            )
                            chunk_size = adapt_chunk_size(speed)
                            last_speed_check = now
                            last_bytes = self.received_bytes

            await aiofiles.os.replace(self.part_path, self.destination)
            if self.total_bytes is None:
                self.total_bytes = self.received_bytes
            self.finished = True
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            log.debug(f"Streaming transfer of '{self.destination.name}' failed: {e}")
            self.error = e

    def snapshot(self) -> TransferStatus:
        return TransferStatus(
            received_bytes=self.received_bytes,
            total_bytes=self.total_bytes,
            finished=self.finished,
            error=self.error,
        )

    async def wait(self) -> None:
        await asyncio.shield(self._task)

    async def cancel(self) -> None:
        if not self._task.done():
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
        with suppress(OSError):
            await aiofiles.os.remove(self.part_path)


class StreamingTransfer:
    """
    The streaming-fetch fallback. Chunks are appended to disk as they arrive,
    so memory use does not depend on the artifact size.
    """

    def __init__(self, session: aiohttp.ClientSession):
        self._session = session

    def start(self, url: str, destination: Path) -> StreamingHandle:
        log.debug(f"Starting streaming fetch of {url}")
        return StreamingHandle(self._session, url, destination)


_CONTENT_RANGE_TOTAL = re.compile(r"/(\d+)\s*$")


async def fetch_content_length(session: aiohttp.ClientSession, url: str) -> int | None:
    """
    Probes the size of a remote file: HEAD first, then a one-byte range
    request for servers that refuse HEAD. Returns None when unknown.
    """
    try:
        async with session.head(url, allow_redirects=True) as response:
            length = response.headers.get("Content-Length", "")
            if response.status < 400 and length.isdigit() and int(length) > 0:
                return int(length)
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        log.debug(f"HEAD probe failed for {url}: {e}")

    try:
        async with session.get(
            url, headers={"Range": "bytes=0-0"}, allow_redirects=True
        ) as response:
            match = _CONTENT_RANGE_TOTAL.search(response.headers.get("Content-Range", ""))
            if match and int(match.group(1)) > 0:
                return int(match.group(1))
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        log.debug(f"Range probe failed for {url}: {e}")
    return None


def create_session(max_connections: int = 8) -> aiohttp.ClientSession:
    """
    Creates the HTTP session used for release lookups and downloads. The
    caller owns it and must close it.
    """
    connector = aiohttp.TCPConnector(
        limit=max_connections * 2,
        limit_per_host=max_connections,
        ttl_dns_cache=600,  # 10 minutes
        keepalive_timeout=30,
        enable_cleanup_closed=True,
        force_close=False,
    )
    timeout = aiohttp.ClientTimeout(total=None, sock_connect=15, sock_read=90)
    return aiohttp.ClientSession(
        connector=connector,
        timeout=timeout,
        headers={"User-Agent": f"wanxiang-cli/{__version__}"},
    )
