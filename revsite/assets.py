from __future__ import annotations

import logging
import mmap
import os
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, TypeVar

import pathspec

from .cache import content_hash
from .errors import InvalidPathError

logger = logging.getLogger(__name__)

SRC_SUB_DIRS = ("assets", "content", "static", "templates")
IGNORE_FILES = (".gitignore", ".ignore")
QUEUE_SIZE = 256
POLL_INTERVAL = 0.05
MAX_WORKERS = 32

T = TypeVar("T")


@dataclass(slots=True)
class LocalFile:
    disk_path: Path
    logical_path: str
    size: int

    @property
    def extension(self) -> str:
        return self.disk_path.suffix.lstrip(".").lower()


class Contents:
    """Read-only bytes of an asset.

    ``kind`` is ``"empty"`` for zero-length files (never mapped), ``"mapped"``
    for a memory-mapped file and ``"owned"`` for an in-memory buffer such as
    minified CSS. ``data`` is usable anywhere a bytes-like object is.
    """

    __slots__ = ("kind", "data")

    def __init__(self, kind: str, data: bytes | mmap.mmap) -> None:
        self.kind = kind
        self.data = data

    @classmethod
    def empty(cls) -> "Contents":
        return cls("empty", b"")

    @classmethod
    def owned(cls, data: bytes) -> "Contents":
        return cls("owned", bytes(data))

    @classmethod
    def mapped(cls, path: Path) -> "Contents":
        with path.open("rb") as stream:
            return cls("mapped", mmap.mmap(stream.fileno(), 0, access=mmap.ACCESS_READ))

    @classmethod
    def load(cls, meta: LocalFile) -> "Contents":
        if meta.size == 0:
            return cls.empty()
        return cls.mapped(meta.disk_path)

    def __len__(self) -> int:
        return len(self.data)

    def tobytes(self) -> bytes:
        if isinstance(self.data, bytes):
            return self.data
        return self.data[:]

    def close(self) -> None:
        if isinstance(self.data, mmap.mmap) and not self.data.closed:
            self.data.close()


@dataclass(slots=True)
class Asset:
    meta: LocalFile
    contents: Contents
    hash: bytes

    def with_contents(self, data: bytes) -> "Asset":
        """Swap in preprocessed bytes, rehashing them under the same logical path."""
        self.release()
        return Asset(self.meta, Contents.owned(data), content_hash(self.meta.logical_path, data))

    def release(self) -> None:
        self.contents.close()


def load_asset(meta: LocalFile) -> Asset:
    logger.debug("Processing: %s", meta.logical_path)
    contents = Contents.load(meta)
    return Asset(meta, contents, content_hash(meta.logical_path, contents.data))


def walk_src_dirs(src: Path) -> Iterator[LocalFile]:
    for prefix in SRC_SUB_DIRS:
        yield from walk_dir(src / prefix, src)


def walk_dir(directory: Path, base: Path) -> Iterator[LocalFile]:
    if not directory.exists():
        logger.debug("Skipping missing directory %s", directory)
        return
    if not directory.is_dir():
        raise InvalidPathError(f"expected a directory: {directory}")
    logger.debug("Working on %s", directory)
    yield from _walk(directory, base, [])


def _walk(
    directory: Path, base: Path, specs: list[tuple[Path, pathspec.PathSpec]]
) -> Iterator[LocalFile]:
    specs = specs + _load_ignore_specs(directory)
    with os.scandir(directory) as scanner:
        entries = sorted(scanner, key=lambda entry: entry.name)
    for entry in entries:
        if entry.name.startswith("."):
            continue
        path = Path(entry.path)
        is_dir = entry.is_dir(follow_symlinks=False)
        if _is_ignored(path, is_dir, specs):
            continue
        if is_dir:
            yield from _walk(path, base, specs)
        elif entry.is_file():
            yield LocalFile(
                disk_path=path,
                logical_path=logical_path_for(path, base),
                size=entry.stat().st_size,
            )


def _load_ignore_specs(directory: Path) -> list[tuple[Path, pathspec.PathSpec]]:
    specs = []
    for name in IGNORE_FILES:
        ignore_file = directory / name
        if ignore_file.is_file():
            lines = ignore_file.read_text(encoding="utf-8").splitlines()
            specs.append((directory, pathspec.GitIgnoreSpec.from_lines(lines)))
    return specs


def _is_ignored(path: Path, is_dir: bool, specs: list[tuple[Path, pathspec.PathSpec]]) -> bool:
    # deepest ignore file with a matching pattern decides, negations included
    for root, spec in reversed(specs):
        relative = path.relative_to(root).as_posix()
        if is_dir:
            relative += "/"
        result = spec.check_file(relative)
        if result.include is not None:
            return result.include
    return False


def logical_path_for(path: Path, base: Path) -> str:
    logical = path.relative_to(base).as_posix()
    try:
        logical.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise InvalidPathError(f"not a valid UTF-8 path: {path!r}") from exc
    return logical


def determine_workers(requested: int | None = None) -> int:
    workers = int(requested or 0)
    if workers <= 0:
        workers = os.cpu_count() or 1
    return max(1, min(workers, MAX_WORKERS))


_DONE = object()


@dataclass(slots=True)
class _Failure:
    error: Exception


def walk(src: Path, consume: Callable[[Iterator[Asset]], T], workers: int | None = None) -> T:
    """Scan ``src`` and feed hashed assets to ``consume``.

    One thread walks the source tree, a pool of workers maps and hashes the
    files, and ``consume`` runs in the calling thread as the only reader of the
    results. Arrival order is not deterministic. The first failure from any
    stage is raised out of the iterator handed to ``consume``, and whatever
    ``consume`` raises is propagated after the pool is stopped.
    """
    src = Path(src)
    if not src.is_dir():
        raise InvalidPathError(f"source directory does not exist: {src}")

    worker_count = determine_workers(workers)
    discovered: queue.Queue = queue.Queue(maxsize=QUEUE_SIZE)
    hashed: queue.Queue = queue.Queue(maxsize=QUEUE_SIZE)
    cancelled = threading.Event()

    def discover() -> None:
        try:
            for meta in walk_src_dirs(src):
                if not _put(discovered, meta, cancelled):
                    return
        except Exception as exc:
            _put(hashed, _Failure(exc), cancelled)
        finally:
            for _ in range(worker_count):
                _put(discovered, _DONE, cancelled)

    def hash_files() -> None:
        try:
            while True:
                meta = _get(discovered, cancelled)
                if meta is _DONE:
                    return
                asset = load_asset(meta)
                if not _put(hashed, asset, cancelled):
                    asset.release()
                    return
        except Exception as exc:
            _put(hashed, _Failure(exc), cancelled)
        finally:
            _put(hashed, _DONE, cancelled)

    def results() -> Iterator[Asset]:
        remaining = worker_count
        while remaining:
            item = hashed.get()
            if item is _DONE:
                remaining -= 1
            elif isinstance(item, _Failure):
                raise item.error
            else:
                yield item

    logger.info("Scanning %s with %d workers", src, worker_count)
    pool = ThreadPoolExecutor(max_workers=worker_count + 1, thread_name_prefix="revsite-walk")
    try:
        pool.submit(discover)
        for _ in range(worker_count):
            pool.submit(hash_files)
        return consume(results())
    finally:
        cancelled.set()
        pool.shutdown(wait=True)
        _release_pending(hashed)


def _put(channel: queue.Queue, item: object, cancelled: threading.Event) -> bool:
    while not cancelled.is_set():
        try:
            channel.put(item, timeout=POLL_INTERVAL)
            return True
        except queue.Full:
            continue
    return False


def _get(channel: queue.Queue, cancelled: threading.Event) -> object:
    while not cancelled.is_set():
        try:
            return channel.get(timeout=POLL_INTERVAL)
        except queue.Empty:
            continue
    return _DONE


def _release_pending(channel: queue.Queue) -> None:
    while True:
        try:
            item = channel.get_nowait()
        except queue.Empty:
            return
        if isinstance(item, Asset):
            item.release()
