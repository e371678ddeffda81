import threading

from dataclasses import dataclass
from typing import Optional

from .bandwidth import BandwidthEstimator
from .constants import DEFAULT_HISTORY_SIZE, DEFAULT_WINDOW_MILLISECONDS, TICKS_PER_MILLISECOND, TICKS_PER_SECOND
from .exceptions import ConfigurationError


@dataclass(frozen=True)
class TransferProgress:
    fraction: float = 0.0
    bytes_per_second: float = 0.0
    completed_bytes_per_second: Optional[float] = None


@dataclass
class _TrackerState:
    start_ticks: int = 0
    position: int = 0
    length: int = 0
    end_ticks: Optional[int] = None
    completed_length: int = 0


class TransferProgressTracker:
    """
    Progress and bandwidth of a single transfer.

    Time is divided into windows (300ms by default) and the bytes transferred
    in each window are recorded; only the most recent history_size windows
    count towards the bandwidth.

    Writes come from the thread doing the I/O while progress() is polled from
    elsewhere, so every operation takes the same lock.
    """

    def __init__(
        self,
        now_ticks: int,
        history_size: int = DEFAULT_HISTORY_SIZE,
        window_milliseconds: int = DEFAULT_WINDOW_MILLISECONDS,
    ):
        if window_milliseconds < 1:
            raise ConfigurationError(f"Window width must be a positive number of milliseconds, got {window_milliseconds=}")

        self._lock = threading.Lock()
        self._estimator = BandwidthEstimator(history_size)
        self._state = _TrackerState()
        self._ticks_per_window = TICKS_PER_MILLISECOND * window_milliseconds
        self._windows_per_second = 1000 / window_milliseconds
        self.reset(now_ticks)

    def reset(self, now_ticks: int) -> None:
        """
        Restart the bandwidth calculation, e.g. after a seek.
        """
        with self._lock:
            self._estimator.clear()
            self._state.start_ticks = now_ticks
            self._state.position = 0
            self._state.end_ticks = None
            self._state.completed_length = 0

    def set_bytes_transferred(self, now_ticks: int, byte_count: int, new_position: int, total_length: int) -> None:
        with self._lock:
            window_index = (now_ticks - self._state.start_ticks) // self._ticks_per_window
            self._estimator.accumulate(window_index, byte_count)
            self._state.position = new_position
            self._state.length = total_length
            if new_position == total_length and self._state.end_ticks is None:
                self._state.end_ticks = now_ticks
                self._state.completed_length = total_length

    def progress(self) -> TransferProgress:
        with self._lock:
            state = self._state
            fraction = 0.0 if state.length == 0 else state.position / state.length

            completed_bytes_per_second = None
            if state.end_ticks is not None:
                elapsed_ticks = max(state.end_ticks - state.start_ticks, 1)
                completed_bytes_per_second = state.completed_length / (elapsed_ticks / TICKS_PER_SECOND)

            return TransferProgress(
                fraction=fraction,
                bytes_per_second=self._estimator.bytes_per_window() * self._windows_per_second,
                completed_bytes_per_second=completed_bytes_per_second,
            )


__all__ = ["TransferProgress", "TransferProgressTracker"]
