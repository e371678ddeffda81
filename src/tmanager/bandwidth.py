from .accumulator import AverageAccumulator, SlidingWindowBuffer, SumAccumulator
from .constants import DEFAULT_HISTORY_SIZE
from .exceptions import ConfigurationError, OrderingError


class BandwidthEstimator:
    """
    Moving average of bytes transferred per time window.

    The caller repeatedly reports a byte count together with the window it was
    observed in. A window is an incrementing number standing for a slice of
    time, e.g. window 1 is 0ms to 300ms, window 2 is 300ms to 600ms.

    The estimate is the average of the most recent completed windows; the
    current, still filling window is never included.
    """

    def __init__(self, history_size: int = DEFAULT_HISTORY_SIZE):
        if history_size < 1:
            raise ConfigurationError(f"BandwidthEstimator history_size must be at least 1, got {history_size=}")

        self._history: SlidingWindowBuffer[int, float] = SlidingWindowBuffer(history_size, AverageAccumulator())
        self._current_bytes = SumAccumulator()
        self.current_window_index = -1

    def clear(self) -> None:
        self._history.clear()
        self._current_bytes.clear()
        self.current_window_index = -1

    def accumulate(self, window_index: int, byte_count: int) -> None:
        if window_index < 0:
            raise OrderingError(f"Window index must not be negative, got {window_index=}")

        if self.current_window_index == -1:
            self.current_window_index = window_index

        # Late observations are folded into the current window.
        if window_index < self.current_window_index:
            window_index = self.current_window_index

        if window_index > self.current_window_index:
            self._history.add(self._current_bytes.total())
            self._current_bytes.clear()
            self.current_window_index += 1

        # Windows skipped without any observation count as empty.
        if window_index != self.current_window_index:
            self._history.add_n(window_index - self.current_window_index)
            self.current_window_index = window_index

        self._current_bytes.accumulate(byte_count)

    def bytes_per_window(self) -> float:
        return self._history.accumulated_value()

    def history(self) -> list[int]:
        return self._history.to_list()


__all__ = ["BandwidthEstimator"]
