"""Tracer configuration and emission statistics (pure data, no business logic)."""

from __future__ import annotations

from dataclasses import dataclass, field

from . import constants
from .precompiles import MAINNET_CHAIN_CONFIG, ChainConfig


@dataclass(frozen=True)
class TracerConfig:
    """Groups tracer output configuration."""

    trace_dir: str = constants.DEFAULT_TRACE_DIR
    per_folder: int = constants.DEFAULT_PER_FOLDER
    per_file: int = constants.DEFAULT_PER_FILE
    chain_config: ChainConfig = MAINNET_CHAIN_CONFIG

    def __post_init__(self):
        if self.per_folder <= 0 or self.per_file <= 0:
            raise ValueError(
                f"Shard sizes must be positive: per_folder={self.per_folder}, "
                f"per_file={self.per_file}"
            )


@dataclass
class EmitFailure:
    sequence_index: int
    reason: str


@dataclass
class EmitStats:
    """Returned by TraceEmitter.emit for one transaction."""

    emitted: int = 0
    failed: int = 0
    failures: list[EmitFailure] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.emitted + self.failed
