from enum import Enum
from dataclasses import dataclass
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional, Union

import asyncio
import logging
import os
import queue
import time
import traceback

import aiofiles

from .constants import (
    DEFAULT_CONCURRENCY,
    DEFAULT_HISTORY_SIZE,
    DEFAULT_WINDOW_MILLISECONDS,
    EVENTS_QUEUE_SIZE,
    MAX_CONCURRENCY,
    MIN_CONCURRENCY,
    PROGRESS_POLL_INTERVAL_SECONDS,
)
from .exceptions import ConfigurationError, TransferFailure
from .progress import TransferProgress
from .stream import AsyncInstrumentedStream, InstrumentedStream


class TransferDirection(Enum):
    UPLOAD = 0
    DOWNLOAD = 1


class TransferState(Enum):
    PENDING = 0
    SUBMITTED = 1
    SUCCEEDED = 2
    FAILED = 3


@dataclass
class TransferJob:
    job_id: str
    local_path: str
    destination: str
    size_hint: Optional[int] = None
    direction: TransferDirection = TransferDirection.UPLOAD


@dataclass
class TransferEvent:
    job_id: str
    state: TransferState
    time: datetime = None
    progress: Optional[TransferProgress] = None
    error_string: Optional[str] = ""
    worker_id: int = None

    def __post_init__(self):
        self.time = datetime.now()


@dataclass
class TransferOutcome:
    job: TransferJob
    state: TransferState
    error: Optional[TransferFailure] = None
    progress: Optional[TransferProgress] = None

    @property
    def succeeded(self) -> bool:
        return self.state == TransferState.SUCCEEDED


TransferStream = Union[InstrumentedStream, AsyncInstrumentedStream]
TransferOperation = Callable[[TransferJob, TransferStream], Awaitable[Any]]
ProgressSink = Callable[[TransferEvent], None]


class QueueProgressSink:
    """
    Progress sink that buffers events for a consumer on another thread.
    """

    def __init__(self, maxsize: int = EVENTS_QUEUE_SIZE):
        self.events_queue: queue.Queue[TransferEvent] = queue.Queue(maxsize=maxsize)

    def __call__(self, event: TransferEvent) -> None:
        if self.events_queue.full():
            drop = self.events_queue.maxsize // 4 or 1
            logging.error(f"Events queue is FULL! Make sure events are being consumed.\nRemoving the first {drop} items.")
            for _ in range(drop):
                try:
                    self.events_queue.get_nowait()
                except queue.Empty:
                    break
        self.events_queue.put_nowait(event)

    def get_oldest_event(self) -> Optional[TransferEvent]:
        """
        Retrieve and remove the oldest event from the event queue.
        If the queue is empty, this method returns None.
        """
        try:
            return self.events_queue.get_nowait()
        except queue.Empty:
            return None


class TransferScheduler:
    """
    Runs transfer jobs with at most `concurrency` of them in flight.

    A fixed pool of worker tasks pulls jobs from a bounded queue that is fed
    lazily from the job source, so the limit holds by construction. Each
    worker wraps the job's local file in an instrumented stream, hands it to
    the transfer operation and pushes the outcome onto a results queue which
    run() harvests in completion order. A failed job never cancels the others.
    """

    def __init__(
            self,
            transfer: TransferOperation,
            concurrency: int = DEFAULT_CONCURRENCY,
            progress_sink: Optional[ProgressSink] = None,
            poll_interval_seconds: float = PROGRESS_POLL_INTERVAL_SECONDS,
            transfer_timeout: Optional[float] = None,
            history_size: int = DEFAULT_HISTORY_SIZE,
            window_milliseconds: int = DEFAULT_WINDOW_MILLISECONDS,
            clock: Callable[[], int] = time.monotonic_ns
        ) -> None:

        if not isinstance(concurrency, int) or not MIN_CONCURRENCY <= concurrency <= MAX_CONCURRENCY:
            raise ConfigurationError(f"Concurrency must be between {MIN_CONCURRENCY} and {MAX_CONCURRENCY}, got {concurrency=}")
        if history_size < 1:
            raise ConfigurationError(f"History size must be a positive number of windows, got {history_size=}")
        if window_milliseconds < 1:
            raise ConfigurationError(f"Window width must be a positive number of milliseconds, got {window_milliseconds=}")
        if transfer_timeout is not None and transfer_timeout <= 0:
            raise ConfigurationError(f"Transfer timeout must be positive, got {transfer_timeout=}")

        self._transfer = transfer
        self._concurrency = concurrency
        self._progress_sink = progress_sink
        self._poll_interval_seconds = poll_interval_seconds
        self._transfer_timeout = transfer_timeout
        self._history_size = history_size
        self._window_milliseconds = window_milliseconds
        self._clock = clock

        self._in_flight: Dict[int, str] = {}
        self.max_in_flight = 0

    @property
    def concurrency(self) -> int:
        return self._concurrency

    def get_in_flight(self) -> Dict[int, str]:
        return dict(self._in_flight)

    def _emit(self, event: TransferEvent) -> None:
        if self._progress_sink is None:
            return
        try:
            self._progress_sink(event)
        except Exception as err:
            logging.error(f"Progress sink failed for {event.job_id=}: {repr(err)}")

    async def run(self, jobs: Iterable[TransferJob]) -> List[TransferOutcome]:
        """
        Transfer every job and return every job's outcome.

        - Submits jobs in the order the source yields them
        - Reports each completion as soon as it is harvested
        - Drains all in-flight jobs before returning

        Returns:
            List[TransferOutcome]: one outcome per job, in completion order.
        """

        job_queue: asyncio.Queue[Optional[TransferJob]] = asyncio.Queue(maxsize=self._concurrency)
        results: asyncio.Queue[Optional[TransferOutcome]] = asyncio.Queue()
        outcomes: List[TransferOutcome] = []

        feeder = asyncio.create_task(self._feed(jobs, job_queue))
        workers = [
            asyncio.create_task(self._worker(n, job_queue, results))
            for n in range(self._concurrency)
        ]

        try:
            finished_workers = 0
            while finished_workers < self._concurrency:
                outcome = await results.get()
                if outcome is None:
                    finished_workers += 1
                    continue
                self._harvest(outcome)
                outcomes.append(outcome)

            # Re-raises if the job source itself failed.
            await feeder
        finally:
            for task in [feeder, *workers]:
                if not task.done():
                    task.cancel()
                    try:
                        await task
                    except asyncio.CancelledError:
                        pass

        failed = sum(1 for outcome in outcomes if not outcome.succeeded)
        logging.info(f"Transfers finished: {len(outcomes) - failed} succeeded, {failed} failed.")
        return outcomes

    async def _feed(self, jobs: Iterable[TransferJob], job_queue: asyncio.Queue) -> None:
        try:
            for job in jobs:
                self._emit(TransferEvent(job_id=job.job_id, state=TransferState.PENDING))
                await job_queue.put(job)
        except Exception as err:
            logging.error(f"Job source failed: {repr(err)}, {err}")
            await self._stop_workers(job_queue)
            raise
        await self._stop_workers(job_queue)

    async def _stop_workers(self, job_queue: asyncio.Queue) -> None:
        for _ in range(self._concurrency):
            await job_queue.put(None)

    async def _worker(self, worker_id: int, job_queue: asyncio.Queue, results: asyncio.Queue) -> None:
        logging.debug(f"Worker {worker_id} initialized.")
        while True:
            job = await job_queue.get()
            if job is None:
                logging.debug(f"Worker {worker_id} found no more jobs, worker complete.")
                await results.put(None)
                return
            outcome = await self._run_job(worker_id, job)
            await results.put(outcome)

    async def _run_job(self, worker_id: int, job: TransferJob) -> TransferOutcome:
        self._in_flight[worker_id] = job.job_id
        self.max_in_flight = max(self.max_in_flight, len(self._in_flight))
        logging.debug(f"Worker {worker_id} picked up {job.job_id=}, {job.destination=}")
        self._emit(TransferEvent(job_id=job.job_id, state=TransferState.SUBMITTED, worker_id=worker_id))

        try:
            async with self._open_stream(job) as stream:
                reporter = None
                if self._progress_sink is not None:
                    reporter = asyncio.create_task(self._report_progress(worker_id, job, stream))
                try:
                    await self._await_transfer(job, stream)
                finally:
                    if reporter is not None:
                        reporter.cancel()
                        try:
                            await reporter
                        except asyncio.CancelledError:
                            pass
                progress = stream.progress()
            return TransferOutcome(job=job, state=TransferState.SUCCEEDED, progress=progress)
        except asyncio.CancelledError as err:
            # Only a cancelled transfer is a job failure, cancelling the scheduler propagates.
            if asyncio.current_task().cancelling():
                raise
            return TransferOutcome(job=job, state=TransferState.FAILED, error=TransferFailure.from_exception(job.job_id, err))
        except Exception as err:
            tb = traceback.format_exc()
            logging.debug(f"Traceback: {tb}")
            return TransferOutcome(job=job, state=TransferState.FAILED, error=TransferFailure.from_exception(job.job_id, err))
        finally:
            del self._in_flight[worker_id]

    async def _await_transfer(self, job: TransferJob, stream: TransferStream) -> None:
        if self._transfer_timeout is None:
            await self._transfer(job, stream)
        else:
            await asyncio.wait_for(self._transfer(job, stream), timeout=self._transfer_timeout)

    @asynccontextmanager
    async def _open_stream(self, job: TransferJob) -> AsyncIterator[TransferStream]:
        tracker_settings = dict(
            clock=self._clock,
            history_size=self._history_size,
            window_milliseconds=self._window_milliseconds,
        )

        if job.direction == TransferDirection.UPLOAD:
            stream = InstrumentedStream(open(job.local_path, "rb"), **tracker_settings)
            try:
                yield stream
            finally:
                stream.close()
        else:
            directory = os.path.dirname(job.local_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            handle = await aiofiles.open(job.local_path, "wb")
            stream = AsyncInstrumentedStream(handle, length=job.size_hint, **tracker_settings)
            try:
                yield stream
            finally:
                await stream.close()

    async def _report_progress(self, worker_id: int, job: TransferJob, stream: TransferStream) -> None:
        while True:
            await asyncio.sleep(self._poll_interval_seconds)
            self._emit(TransferEvent(
                job_id=job.job_id,
                state=TransferState.SUBMITTED,
                progress=stream.progress(),
                worker_id=worker_id
            ))

    def _harvest(self, outcome: TransferOutcome) -> None:
        if outcome.succeeded:
            logging.info(f"Succeeded: {outcome.job.job_id}")
            self._emit(TransferEvent(
                job_id=outcome.job.job_id,
                state=outcome.state,
                progress=outcome.progress
            ))
        else:
            logging.info(f"Failed: {outcome.error}")
            self._emit(TransferEvent(
                job_id=outcome.job.job_id,
                state=outcome.state,
                error_string=str(outcome.error)
            ))


def any_failed(outcomes: Iterable[TransferOutcome]) -> bool:
    return any(not outcome.succeeded for outcome in outcomes)


__all__ = [
    "TransferScheduler",
    "TransferJob",
    "TransferOutcome",
    "TransferEvent",
    "TransferState",
    "TransferDirection",
    "QueueProgressSink",
    "any_failed",
]
