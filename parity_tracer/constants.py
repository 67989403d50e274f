"""Named constants — eliminates magic strings across the codebase."""

from __future__ import annotations

TRACE_TYPE_CALL = "call"
TRACE_TYPE_CREATE = "create"
TRACE_TYPE_SUICIDE = "suicide"
TRACE_TYPE_UNKNOWN = "unknown"

ADDRESS_LENGTH = 20
HASH_LENGTH = 32
UINT64_MAX = 2**64 - 1

HEX_PREFIX = "0x"
EMPTY_HEX = "0x"

ZERO_HASH = bytes(HASH_LENGTH)

GENERIC_ERROR_KIND = "error"

DEFAULT_TRACE_DIR = "traces"
DEFAULT_PER_FOLDER = 1_000_000
DEFAULT_PER_FILE = 10_000
TRACE_FILE_SUFFIX = ".log"

SINK_MEMORY = "memory"
SINK_STREAM = "stream"
SINK_SHARDED = "sharded"
