from concurrent.futures import CancelledError
from typing import Dict, List, Optional

import argparse
import logging
import os
import sys
import time
import traceback

from .asyncio_thread import AsyncioEventLoopThread
from .client import ObjectStoreClient
from .constants import DEFAULT_CONCURRENCY, DEFAULT_HISTORY_SIZE, DEFAULT_WINDOW_MILLISECONDS, PROGRESS_POLL_INTERVAL_SECONDS
from .exceptions import ConfigurationError
from .progress import TransferProgress
from .scanner import download_jobs, upload_jobs
from .scheduler import QueueProgressSink, TransferEvent, TransferOutcome, TransferScheduler, TransferState, any_failed

EXIT_OK = 0
EXIT_TRANSFER_FAILED = 1
EXIT_CONFIGURATION_ERROR = 2
EXIT_INTERRUPTED = 130

TOKEN_ENVIRONMENT_VARIABLE = "TMANAGER_TOKEN"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tmanager", description="Upload and download files to object storage.")
    parser.add_argument("--debug", action="store_true")
    parser.add_argument("-j", "--parallel", type=int, default=DEFAULT_CONCURRENCY, help="Maximum number of simultaneous transfers (1-8)")
    parser.add_argument("--window-ms", type=int, default=DEFAULT_WINDOW_MILLISECONDS, help="Width of a bandwidth window in milliseconds")
    parser.add_argument("--history-size", type=int, default=DEFAULT_HISTORY_SIZE, help="Number of windows averaged for the bandwidth")
    parser.add_argument("--timeout", type=float, default=None, help="Give up on a single transfer after this many seconds")
    parser.add_argument("--token", default=os.environ.get(TOKEN_ENVIRONMENT_VARIABLE), help=f"Authorization token, defaults to ${TOKEN_ENVIRONMENT_VARIABLE}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    upload = subparsers.add_parser("upload", help="Upload a file or directory")
    upload.add_argument("source")
    upload.add_argument("destination", nargs="?", default="")
    upload.add_argument("--upload-url", required=True)
    upload.add_argument("-r", "--recursive", action=argparse.BooleanOptionalAction, default=True)

    download = subparsers.add_parser("download", help="Download one or more files")
    download.add_argument("names", nargs="+")
    download.add_argument("--download-url", required=True)
    download.add_argument("-b", "--bucket", required=True)
    download.add_argument("--dest", default=os.getcwd())

    return parser


def format_rate(bytes_per_second: Optional[float]) -> str:
    if bytes_per_second is None:
        return "-"
    for unit in ["B/s", "KiB/s", "MiB/s", "GiB/s"]:
        if bytes_per_second < 1024:
            return f"{bytes_per_second:.1f} {unit}"
        bytes_per_second /= 1024
    return f"{bytes_per_second:.1f} TiB/s"


class ConsoleReporter:
    """
    Prints finished jobs and keeps a single live progress line on stderr.
    """

    def __init__(self, out=None, err=None):
        self._out = out or sys.stdout
        self._err = err or sys.stderr
        self._in_flight: Dict[str, TransferProgress] = {}
        self._live = self._err.isatty()

    def handle(self, event: TransferEvent) -> None:
        if event.state == TransferState.SUBMITTED:
            self._in_flight[event.job_id] = event.progress or TransferProgress()
            self._render()
        elif event.state == TransferState.SUCCEEDED:
            self._in_flight.pop(event.job_id, None)
            self._clear_line()
            rate = event.progress.completed_bytes_per_second if event.progress else None
            print(f"{event.job_id} ({format_rate(rate)})", file=self._out)
        elif event.state == TransferState.FAILED:
            self._in_flight.pop(event.job_id, None)
            self._clear_line()
            print(event.error_string, file=self._err)

    def _clear_line(self) -> None:
        if self._live:
            self._err.write("\r\033[K")

    def _render(self) -> None:
        if not self._live or not self._in_flight:
            return
        total_rate = sum(p.bytes_per_second for p in self._in_flight.values())
        parts = [f"{os.path.basename(job_id)} {p.fraction:.0%}" for job_id, p in self._in_flight.items()]
        self._err.write(f"\r\033[K[{len(self._in_flight)} active, {format_rate(total_rate)}] " + ", ".join(parts))
        self._err.flush()


async def run_transfers(scheduler: TransferScheduler, client: ObjectStoreClient, jobs) -> List[TransferOutcome]:
    async with client:
        return await scheduler.run(jobs)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
    else:
        logging.getLogger().setLevel(logging.INFO)

    sink = QueueProgressSink()
    if args.command == "upload":
        client = ObjectStoreClient(upload_url=args.upload_url, token=args.token, request_timeout=args.timeout)
        if not os.path.exists(args.source):
            logging.error(f"Source does not exist: {args.source}")
            return EXIT_CONFIGURATION_ERROR
        jobs = upload_jobs(args.source, args.destination, args.recursive)
    else:
        client = ObjectStoreClient(download_url=args.download_url, bucket=args.bucket, token=args.token, request_timeout=args.timeout)
        jobs = download_jobs(args.names, args.dest)

    try:
        scheduler = TransferScheduler(
            client.transfer,
            concurrency=args.parallel,
            progress_sink=sink,
            transfer_timeout=args.timeout,
            history_size=args.history_size,
            window_milliseconds=args.window_ms
        )
    except ConfigurationError as err:
        logging.error(f"Invalid configuration: {err}")
        return EXIT_CONFIGURATION_ERROR

    reporter = ConsoleReporter()
    runner = AsyncioEventLoopThread()
    future = runner.submit(run_transfers(scheduler, client, jobs))

    try:
        while not future.done():
            _drain_events(sink, reporter)
            time.sleep(PROGRESS_POLL_INTERVAL_SECONDS)
        _drain_events(sink, reporter)
        outcomes = future.result()
    except KeyboardInterrupt:
        logging.warning("Interrupted, cancelling transfers.")
        future.cancel()
        try:
            future.result(timeout=10)
        except (CancelledError, TimeoutError):
            pass
        return EXIT_INTERRUPTED
    except Exception as err:
        tb = traceback.format_exc()
        logging.debug(f"Traceback: {tb}")
        logging.error(f"Transfers aborted: {repr(err)}, {err}")
        return EXIT_TRANSFER_FAILED
    finally:
        logging.debug("Shutting down async thread")
        runner.shutdown()

    return EXIT_TRANSFER_FAILED if any_failed(outcomes) else EXIT_OK


def _drain_events(sink: QueueProgressSink, reporter: ConsoleReporter) -> None:
    while True:
        event = sink.get_oldest_event()
        if event is None:
            return
        reporter.handle(event)


__all__ = ["main", "build_parser", "ConsoleReporter", "format_rate"]
