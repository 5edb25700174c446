"""
Normalizes noisy transfer-progress readings into a single monotonic stream.
"""

import logging
import time
from collections.abc import Callable

from wanxiang_cli.models.progress import DownloadProgress, RawProgress

log = logging.getLogger(__name__)


class ProgressEmitter:
    """
    A stateful accumulator, one per download task.

    Every reading passes through :meth:`observe`. The emitted percent and
    total never shrink, readings inside the throttle window are coalesced,
    and the final reading is always emitted with ``percent == 1``.
    """

    SPEED_SAMPLE_INTERVAL = 0.5
    SPEED_WINDOW = 10

    def __init__(
        self,
        throttle_interval: float = 0.25,
        hinted_total: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            throttle_interval: Minimum seconds between two non-final emissions.
            hinted_total: A size known before the transfer starts, if any.
            clock: Monotonic time source.
        """
        self.throttle_interval = throttle_interval
        self._clock = clock

        self.total_bytes: int | None = (
            hinted_total if hinted_total and hinted_total > 0 else None
        )
        self.received_bytes = 0
        self.percent: float | None = None
        self.speed_bps: float | None = None
        self.finished = False

        self._last_emitted: DownloadProgress | None = None
        self._last_emit_time: float | None = None
        self._pending = False

        # Attempt-scoped state used for stall detection and speed.
        self._attempt_received = 0
        self._attempt_percent: float | None = None
        self.last_growth_at = self._clock()
        self._speed_samples: list[float] = []
        self._last_sample_time = self.last_growth_at
        self._last_sample_bytes = 0

    @property
    def last_emitted(self) -> DownloadProgress | None:
        return self._last_emitted

    def begin_attempt(self) -> None:
        """
        Resets the per-attempt counters after a retry. Emitted values keep
        their floor, so callers never see progress move backwards.
        """
        now = self._clock()
        self._attempt_received = 0
        self._attempt_percent = None
        self.last_growth_at = now
        self._speed_samples.clear()
        self._last_sample_time = now
        self._last_sample_bytes = 0
        self.speed_bps = None

    def observe(self, raw: RawProgress) -> DownloadProgress | None:
        """
        Folds one reading into the accumulated state.

        Returns the progress to forward to the caller, or None when the reading
        was coalesced into a later emission.
        """
        now = self._clock()

        if raw.total_bytes is not None and raw.total_bytes > 0:
            if self.total_bytes is None or raw.total_bytes > self.total_bytes:
                self.total_bytes = int(raw.total_bytes)

        if raw.received_bytes is not None and raw.received_bytes >= 0:
            received = int(raw.received_bytes)
            if received > self._attempt_received:
                self._attempt_received = received
                self.last_growth_at = now
            self.received_bytes = max(self.received_bytes, received)
            self._update_speed(now)

        if self.finished:
            return None

        candidate = self._candidate_percent(raw.fraction)
        if candidate is not None:
            if self._attempt_percent is None or candidate > self._attempt_percent:
                if self._attempt_percent is not None:
                    self.last_growth_at = now
                self._attempt_percent = candidate
            if self.percent is None or candidate > self.percent:
                self.percent = candidate

        if raw.finished_hint or (self.percent is not None and self.percent >= 1.0):
            return self.finish()

        self._pending = True
        if (
            self._last_emit_time is not None
            and now - self._last_emit_time < self.throttle_interval
        ):
            return None
        return self._emit(now)

    def finish(self) -> DownloadProgress:
        """Forces the final emission: percent is 1 and received equals total."""
        if self.finished and self._last_emitted is not None:
            return self._last_emitted
        self.finished = True
        self.total_bytes = max(self.total_bytes or 0, self.received_bytes) or None
        if self.total_bytes is not None:
            self.received_bytes = self.total_bytes
        self.percent = 1.0
        return self._emit(self._clock())

    def flush(self) -> DownloadProgress | None:
        """Emits the latest coalesced state, if any reading is still pending."""
        if not self._pending or self.finished:
            return None
        return self._emit(self._clock())

    def _candidate_percent(self, fraction: float | None) -> float | None:
        if fraction is not None:
            value = float(fraction)
        elif self.total_bytes:
            value = self._attempt_received / self.total_bytes
        else:
            return None
        return min(1.0, max(0.0, value))

    def _update_speed(self, now: float) -> None:
        elapsed = now - self._last_sample_time
        if elapsed < self.SPEED_SAMPLE_INTERVAL:
            return
        bytes_diff = self._attempt_received - self._last_sample_bytes
        if bytes_diff >= 0:
            self._speed_samples.append(bytes_diff / elapsed)
            if len(self._speed_samples) > self.SPEED_WINDOW:
                self._speed_samples.pop(0)
            self.speed_bps = sum(self._speed_samples) / len(self._speed_samples)
        self._last_sample_time = now
        self._last_sample_bytes = self._attempt_received

    def _emit(self, now: float) -> DownloadProgress:
        percent = self.percent
        if self._last_emitted is not None and self._last_emitted.percent is not None:
            percent = max(percent or 0.0, self._last_emitted.percent)
        total = self.total_bytes
        if self._last_emitted is not None and self._last_emitted.total_bytes:
            total = max(total or 0, self._last_emitted.total_bytes)

        progress = DownloadProgress(
            percent=percent,
            received_bytes=self.received_bytes,
            total_bytes=total,
            speed_bps=self.speed_bps,
        )
        self._last_emitted = progress
        self._last_emit_time = now
        self._pending = False
        return progress
