import io
import os
import time

from typing import Callable, Optional

from .constants import DEFAULT_HISTORY_SIZE, DEFAULT_WINDOW_MILLISECONDS
from .progress import TransferProgress, TransferProgressTracker


class InstrumentedStream(io.RawIOBase):
    """
    Binary stream wrapper that reports progress and bandwidth.

    Every read and write is timestamped and fed to a TransferProgressTracker.
    Seeking restarts the bandwidth history.

    Args:
        raw: The underlying binary file object.
        length: Total number of bytes expected to pass through the stream.
            Measured from a seekable readable stream when omitted. Writes only
            use a length given here; without one they never complete.
        clock: Returns the current time in nanosecond ticks.
    """

    def __init__(
        self,
        raw,
        length: Optional[int] = None,
        clock: Callable[[], int] = time.monotonic_ns,
        history_size: int = DEFAULT_HISTORY_SIZE,
        window_milliseconds: int = DEFAULT_WINDOW_MILLISECONDS,
    ):
        super().__init__()
        self._raw = raw
        self._clock = clock
        self._length = length
        self._write_length = length
        if self._length is None and raw.readable() and raw.seekable():
            self._length = self._measure_length()
        self._tracker = TransferProgressTracker(clock(), history_size, window_milliseconds)

    def _measure_length(self) -> int:
        position = self._raw.tell()
        end = self._raw.seek(0, os.SEEK_END)
        self._raw.seek(position)
        return end

    def _record(self, byte_count: int, expected_length: Optional[int]) -> None:
        position = self._raw.tell()
        length = 0 if expected_length is None else max(expected_length, position)
        self._tracker.set_bytes_transferred(self._clock(), byte_count, position, length)

    @property
    def tracker(self) -> TransferProgressTracker:
        return self._tracker

    @property
    def length(self) -> Optional[int]:
        return self._length

    def progress(self) -> TransferProgress:
        return self._tracker.progress()

    def readable(self) -> bool:
        return self._raw.readable()

    def writable(self) -> bool:
        return self._raw.writable()

    def seekable(self) -> bool:
        return self._raw.seekable()

    def fileno(self) -> int:
        return self._raw.fileno()

    def readinto(self, buffer) -> Optional[int]:
        bytes_read = self._raw.readinto(buffer)
        if bytes_read is None:
            return None
        self._record(bytes_read, self._length)
        return bytes_read

    def write(self, data) -> int:
        bytes_written = self._raw.write(data)
        if bytes_written is None:
            bytes_written = len(data)
        self._record(bytes_written, self._write_length)
        return bytes_written

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        self._tracker.reset(self._clock())
        return self._raw.seek(offset, whence)

    def tell(self) -> int:
        return self._raw.tell()

    def flush(self) -> None:
        if not self._raw.closed:
            self._raw.flush()

    def close(self) -> None:
        if not self.closed:
            self._raw.close()
        super().close()


class AsyncInstrumentedStream:
    """
    The same instrumentation around an aiofiles file handle, used when the
    event loop writes downloaded chunks to disk.
    """

    def __init__(
        self,
        handle,
        length: Optional[int] = None,
        clock: Callable[[], int] = time.monotonic_ns,
        history_size: int = DEFAULT_HISTORY_SIZE,
        window_milliseconds: int = DEFAULT_WINDOW_MILLISECONDS,
    ):
        self._handle = handle
        self._clock = clock
        self._length = length
        self._position = 0
        self._tracker = TransferProgressTracker(clock(), history_size, window_milliseconds)

    @property
    def tracker(self) -> TransferProgressTracker:
        return self._tracker

    @property
    def position(self) -> int:
        return self._position

    def set_expected_length(self, length: Optional[int]) -> None:
        self._length = length

    def progress(self) -> TransferProgress:
        return self._tracker.progress()

    def _record(self, byte_count: int) -> None:
        self._position += byte_count
        length = 0 if self._length is None else max(self._length, self._position)
        self._tracker.set_bytes_transferred(self._clock(), byte_count, self._position, length)

    async def read(self, size: int = -1) -> bytes:
        data = await self._handle.read(size)
        self._record(len(data))
        return data

    async def write(self, data: bytes) -> int:
        bytes_written = await self._handle.write(data)
        if bytes_written is None:
            bytes_written = len(data)
        self._record(bytes_written)
        return bytes_written

    async def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        self._tracker.reset(self._clock())
        self._position = await self._handle.seek(offset, whence)
        return self._position

    async def tell(self) -> int:
        return await self._handle.tell()

    async def flush(self) -> None:
        await self._handle.flush()

    async def close(self) -> None:
        await self._handle.close()


__all__ = ["InstrumentedStream", "AsyncInstrumentedStream"]
