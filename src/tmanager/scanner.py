from dataclasses import dataclass
from typing import Iterator, Optional

import logging
import os
import posixpath

from .scheduler import TransferDirection, TransferJob


@dataclass(frozen=True)
class ScannedEntry:
    path: str
    relative_path: str
    size: int
    is_dir: bool


def _entry(path: str, parent: Optional[ScannedEntry]) -> ScannedEntry:
    name = os.path.basename(os.path.normpath(path))
    relative_path = name if parent is None else posixpath.join(parent.relative_path, name)
    is_dir = os.path.isdir(path)
    return ScannedEntry(
        path=os.path.abspath(path),
        relative_path=relative_path,
        size=0 if is_dir else os.path.getsize(path),
        is_dir=is_dir
    )


def scan(path: str, recursive: bool = True) -> Iterator[ScannedEntry]:
    """
    Lazily list a file, or a directory and its contents.

    A path ending with a separator means the contents of the directory (the
    rsync convention), so the directory itself is neither yielded nor part
    of the relative paths. Within each directory files come first, then
    subdirectories, each sorted by name; subdirectories are recursed into as
    they are found.
    """

    if not os.path.isdir(path):
        yield _entry(path, None)
        return

    parent = None
    if not path.endswith((os.sep, "/")):
        parent = _entry(path, None)
        yield parent

    yield from _scan_directory_contents(path, recursive, parent)


def _scan_directory_contents(directory: str, recursive: bool, parent: Optional[ScannedEntry]) -> Iterator[ScannedEntry]:
    with os.scandir(directory) as it:
        entries = sorted(it, key=lambda e: e.name)

    for entry in entries:
        if not entry.is_dir():
            yield _entry(entry.path, parent)

    for entry in entries:
        if entry.is_dir():
            scanned_subdirectory = _entry(entry.path, parent)
            yield scanned_subdirectory
            if recursive:
                yield from _scan_directory_contents(entry.path, recursive, scanned_subdirectory)


def upload_jobs(path: str, destination_prefix: str = "", recursive: bool = True) -> Iterator[TransferJob]:
    """
    Turn the files found by scan() into upload jobs, in scan order.
    """
    for entry in scan(path, recursive):
        if entry.is_dir:
            continue
        destination = posixpath.join(destination_prefix, entry.relative_path) if destination_prefix else entry.relative_path
        logging.debug(f"Scanned {entry.path=} -> {destination=}")
        yield TransferJob(
            job_id=entry.path,
            local_path=entry.path,
            destination=destination,
            size_hint=entry.size,
            direction=TransferDirection.UPLOAD
        )


def download_jobs(names: list[str], destination_directory: str) -> Iterator[TransferJob]:
    for name in names:
        yield TransferJob(
            job_id=name,
            local_path=os.path.join(destination_directory, *name.split("/")),
            destination=name,
            direction=TransferDirection.DOWNLOAD
        )


__all__ = ["ScannedEntry", "scan", "upload_jobs", "download_jobs"]
