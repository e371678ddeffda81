import io
import os
import pytest
import aiofiles

from tmanager.stream import AsyncInstrumentedStream, InstrumentedStream
from tests.helpers import FakeClock


def test_read_reports_progress():
    clock = FakeClock("10")
    stream = InstrumentedStream(io.BytesIO(b"a" * 100), clock=clock, history_size=3, window_milliseconds=100)
    assert stream.length == 100

    assert stream.read(40) == b"a" * 40
    assert stream.progress().fraction == pytest.approx(0.4)
    assert stream.progress().bytes_per_second == 0

    clock.advance("0.1")
    stream.read(40)
    assert stream.progress().fraction == pytest.approx(0.8)
    assert stream.progress().bytes_per_second == pytest.approx(400)
    assert stream.progress().completed_bytes_per_second is None

    clock.advance("0.1")
    stream.read()
    p = stream.progress()
    assert p.fraction == 1
    assert p.completed_bytes_per_second == pytest.approx(100 / 0.2)


def test_length_is_measured_without_moving_position():
    raw = io.BytesIO(b"0123456789")
    raw.seek(3)
    stream = InstrumentedStream(raw)
    assert stream.length == 10
    assert stream.tell() == 3
    assert stream.read(2) == b"34"


def test_seek_resets_progress():
    clock = FakeClock("0")
    stream = InstrumentedStream(io.BytesIO(b"x" * 50), clock=clock, history_size=3, window_milliseconds=100)
    stream.read()
    clock.advance("0.2")
    stream.read()
    assert stream.progress().fraction == 1

    stream.seek(0)
    p = stream.progress()
    assert p.fraction == 0
    assert p.bytes_per_second == 0
    assert p.completed_bytes_per_second is None

    clock.advance("0.5")
    assert stream.read(10) == b"x" * 10
    assert stream.progress().fraction == pytest.approx(0.2)
    assert stream.progress().bytes_per_second == 0


def test_write_reports_progress_against_expected_length():
    clock = FakeClock("0")
    raw = io.BytesIO()
    stream = InstrumentedStream(raw, length=20, clock=clock, history_size=3, window_milliseconds=100)
    stream.write(b"b" * 10)
    assert stream.progress().fraction == pytest.approx(0.5)
    clock.advance("0.1")
    stream.write(b"b" * 10)
    assert stream.progress().fraction == 1
    assert stream.progress().completed_bytes_per_second == pytest.approx(200)
    assert raw.getvalue() == b"b" * 20


def test_write_without_known_length_never_completes():
    stream = InstrumentedStream(io.BytesIO(), clock=FakeClock())
    stream.write(b"abc")
    assert stream.progress().fraction == 0
    assert stream.progress().completed_bytes_per_second is None


def test_write_to_readable_file_ignores_its_current_size(tmp_path):
    clock = FakeClock("0")
    path = tmp_path / "existing.bin"
    path.write_bytes(b"o" * 10)
    with InstrumentedStream(open(path, "r+b"), clock=clock) as stream:
        assert stream.length == 10
        for _ in range(4):
            clock.advance("1")
            stream.write(b"n" * 5)
        assert stream.progress().fraction == 0
        assert stream.progress().completed_bytes_per_second is None


def test_close_closes_underlying_and_keeps_progress(tmp_path):
    path = tmp_path / "data.bin"
    path.write_bytes(b"z" * 10)
    raw = open(path, "rb")
    stream = InstrumentedStream(raw, clock=FakeClock())
    stream.read()
    stream.close()
    stream.close()
    assert raw.closed
    assert stream.progress().fraction == 1


def test_file_descriptor_passthrough(tmp_path):
    path = tmp_path / "data.bin"
    path.write_bytes(b"q" * 7)
    with InstrumentedStream(open(path, "rb")) as stream:
        assert os.fstat(stream.fileno()).st_size == 7
        assert stream.readable()
        assert stream.seekable()
        assert not stream.writable()


@pytest.mark.asyncio
async def test_async_stream_write_and_seek(tmp_path):
    clock = FakeClock("0")
    path = tmp_path / "out.bin"
    handle = await aiofiles.open(path, "wb")
    stream = AsyncInstrumentedStream(handle, clock=clock, history_size=3, window_milliseconds=100)

    await stream.write(b"a" * 10)
    assert stream.progress().fraction == 0

    stream.set_expected_length(40)
    clock.advance("0.1")
    await stream.write(b"a" * 10)
    assert stream.position == 20
    assert stream.progress().fraction == pytest.approx(0.5)
    assert stream.progress().bytes_per_second == pytest.approx(100)

    assert await stream.seek(0) == 0
    assert stream.progress().bytes_per_second == 0

    await stream.write(b"c" * 40)
    assert stream.progress().fraction == 1
    await stream.flush()
    await stream.close()

    assert path.read_bytes() == b"c" * 40


@pytest.mark.asyncio
async def test_async_stream_read(tmp_path):
    path = tmp_path / "in.bin"
    path.write_bytes(b"r" * 8)
    async with aiofiles.open(path, "rb") as handle:
        stream = AsyncInstrumentedStream(handle, length=8, clock=FakeClock())
        assert await stream.read(4) == b"rrrr"
        assert stream.progress().fraction == pytest.approx(0.5)
        assert await stream.tell() == 4
