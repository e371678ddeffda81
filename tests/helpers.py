import asyncio
import time

from decimal import Decimal
from typing import List

from tmanager.scheduler import TransferEvent, TransferState

DEFAULT_TIMEOUT = 10


def ticks(seconds: str) -> int:
    """
    Nanosecond ticks from a decimal string, so window boundaries are exact.
    """
    return int(Decimal(seconds) * 1_000_000_000)


class FakeClock:
    def __init__(self, start: str = "0"):
        self.now = ticks(start)

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: str) -> None:
        self.now += ticks(seconds)


class RecordingSink:
    def __init__(self):
        self.events: List[TransferEvent] = []

    def __call__(self, event: TransferEvent) -> None:
        self.events.append(event)

    def states_for(self, job_id: str) -> List[TransferState]:
        return [e.state for e in self.events if e.job_id == job_id]

    def progress_events(self, job_id: str) -> List[TransferEvent]:
        return [e for e in self.events if e.job_id == job_id and e.progress is not None and e.state == TransferState.SUBMITTED]


async def wait_until(predicate, timeout_sec=DEFAULT_TIMEOUT):
    start = time.monotonic()
    while time.monotonic() - start < timeout_sec:
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("Timed out while waiting for condition.")
