"""Durable sinks for emitted trace records.

A sink receives one JSON-ready dict per trace record, in order. Sinks may be
shared between tracers running on different threads, so every sink
serializes its own writes.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import IO, Any

from . import constants

logger = logging.getLogger(__name__)


def encode_line(record: dict[str, Any]) -> str:
    """Compact JSON plus newline, one record per line."""
    return json.dumps(record, separators=(",", ":")) + "\n"


class TraceSink(ABC):
    """Append-only destination for trace records."""

    @abstractmethod
    def write(self, record: dict[str, Any]) -> None:
        """Persist one record. Raises on failure."""
        ...

    def close(self) -> None:
        pass

    def __enter__(self) -> TraceSink:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class MemorySink(TraceSink):
    """Collects records in a list; used by tests and embedding hosts."""

    def __init__(self):
        self._lock = threading.Lock()
        self.records: list[dict[str, Any]] = []

    def write(self, record: dict[str, Any]) -> None:
        with self._lock:
            self.records.append(record)


class JsonLinesSink(TraceSink):
    """Writes JSON lines to an already-open text stream (stdout by default)."""

    def __init__(self, stream: IO[str] | None = None):
        self._stream = stream if stream is not None else sys.stdout
        self._lock = threading.Lock()

    def write(self, record: dict[str, Any]) -> None:
        line = encode_line(record)
        with self._lock:
            self._stream.write(line)
            self._stream.flush()


def shard_path(
    base_dir: str | os.PathLike, block_number: int, per_folder: int, per_file: int
) -> Path:
    """``<base>/<block // per_folder>/<block // per_file>.log``."""
    return (
        Path(base_dir)
        / str(block_number // per_folder)
        / f"{block_number // per_file}{constants.TRACE_FILE_SUFFIX}"
    )


class ShardedFileSink(TraceSink):
    """Appends JSON lines to block-range shard files under *base_dir*.

    The shard is picked from each record's ``blockNumber``, so many
    executions share one physical file while ordering within an execution
    is preserved. Only the current shard stays open; block numbers arrive in
    ascending order, so moving to a new shard closes the previous file.
    """

    def __init__(
        self,
        base_dir: str | os.PathLike = constants.DEFAULT_TRACE_DIR,
        per_folder: int = constants.DEFAULT_PER_FOLDER,
        per_file: int = constants.DEFAULT_PER_FILE,
    ):
        if per_folder <= 0 or per_file <= 0:
            raise ValueError(
                f"Shard sizes must be positive: per_folder={per_folder}, "
                f"per_file={per_file}"
            )
        self._base_dir = Path(base_dir)
        self._per_folder = per_folder
        self._per_file = per_file
        self._lock = threading.Lock()
        self._path: Path | None = None
        self._handle: IO[str] | None = None

    def path_for(self, block_number: int) -> Path:
        return shard_path(
            self._base_dir, block_number, self._per_folder, self._per_file
        )

    def write(self, record: dict[str, Any]) -> None:
        path = self.path_for(int(record["blockNumber"]))
        line = encode_line(record)
        with self._lock:
            if self._handle is None or path != self._path:
                self._switch(path)
            self._handle.write(line)
            self._handle.flush()

    @property
    def current_path(self) -> Path | None:
        """Shard file currently held open, if any."""
        return self._path

    def _switch(self, path: Path) -> None:
        self._close_current()
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Opening trace log %s", path)
        self._handle = open(path, "a", encoding="utf-8")
        self._path = path

    def _close_current(self) -> None:
        if self._handle is not None:
            self._handle.close()
        self._handle = None
        self._path = None

    def close(self) -> None:
        with self._lock:
            self._close_current()


def get_sink(name: str, **kwargs: Any) -> TraceSink:
    """Factory for trace sinks.

    Args:
        name: "memory", "stream" or "sharded"
        kwargs: Passed to the sink's constructor.
    """
    if name == constants.SINK_MEMORY:
        return MemorySink()
    if name == constants.SINK_STREAM:
        return JsonLinesSink(**kwargs)
    if name == constants.SINK_SHARDED:
        return ShardedFileSink(**kwargs)
    raise ValueError(f"Unknown sink: {name}")
