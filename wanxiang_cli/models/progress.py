"""
Data models describing a single download and the progress it reports.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class DownloadState(str, Enum):
    """States of the download state machine."""

    PENDING = "pending"
    RUNNING = "running"
    STALLED = "stalled"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class RawProgress:
    """One unnormalized progress reading taken from a transfer."""

    fraction: float | None = None
    received_bytes: int | None = None
    total_bytes: int | None = None
    finished_hint: bool = False


@dataclass(frozen=True)
class DownloadProgress:
    """A normalized progress emission forwarded to callers."""

    percent: float | None
    received_bytes: int
    total_bytes: int | None = None
    speed_bps: float | None = None


@dataclass(frozen=True)
class DownloadEvent:
    """A notable state change reported to the caller (e.g. a retry)."""

    type: str
    attempt: int
    max_attempts: int
    reason: str = ""


@dataclass
class DownloadTask:
    """Tracks a single download for the duration of one download call."""

    url: str
    destination: Path
    max_attempts: int = 2
    received_bytes: int = 0
    total_bytes: int | None = None
    percent: float | None = None
    speed_bps: float | None = None
    attempt: int = 1
    state: DownloadState = DownloadState.PENDING

    def apply(self, progress: DownloadProgress) -> None:
        """Copies an emission onto the task, never letting counters shrink."""
        self.received_bytes = max(self.received_bytes, progress.received_bytes)
        if progress.total_bytes is not None:
            self.total_bytes = max(self.total_bytes or 0, progress.total_bytes)
        if progress.percent is not None:
            self.percent = max(self.percent or 0.0, progress.percent)
        self.speed_bps = progress.speed_bps

    def begin_retry(self) -> None:
        self.attempt += 1
        self.speed_bps = None
        self.state = DownloadState.RETRYING

    @property
    def attempts_left(self) -> bool:
        return self.attempt < self.max_attempts
