"""Trace Emitter — writes a finalized transaction trace to a sink, in order."""

from __future__ import annotations

import logging
from typing import Iterable

from .sinks import TraceSink
from .trace_types import ParityTraceItem
from .tracer_types import EmitFailure, EmitStats

logger = logging.getLogger(__name__)


class TraceEmitter:
    """Hands each record to the sink as one JSON-ready dict.

    No batching, reordering or deduplication. A record that fails to
    serialize or write is logged and counted; the rest are still written.
    """

    def emit(self, items: Iterable[ParityTraceItem], sink: TraceSink) -> EmitStats:
        stats = EmitStats()
        for item in items:
            try:
                sink.write(item.to_dict())
            except Exception as exc:
                logger.warning(
                    "Dropped trace record %d of tx %s: %s",
                    item.sequence_index,
                    item.transaction_position,
                    exc,
                )
                stats.failed += 1
                stats.failures.append(
                    EmitFailure(sequence_index=item.sequence_index, reason=str(exc))
                )
                continue
            stats.emitted += 1
        return stats
