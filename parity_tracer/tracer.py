"""ParityTracer — the hook object a host VM drives during execution."""

from __future__ import annotations

import logging
from typing import Any

from . import hexutil
from .builder import CallTreeBuilder
from .emitter import TraceEmitter
from .opcodes import OpLike
from .precompiles import ChainRulesResolver, PrecompileResolver
from .sinks import MemorySink, ShardedFileSink, TraceSink
from .trace_types import ExecutionContext
from .tracer_types import EmitStats, TracerConfig

logger = logging.getLogger(__name__)


class ParityTracer:
    """Builds Parity-style call traces from VM call hooks and emits them.

    The VM calls capture_start once per transaction, capture_enter and
    capture_exit around every nested call, and capture_end once. Records
    are written to the sink only at capture_end.
    """

    def __init__(
        self,
        context: ExecutionContext | None = None,
        sink: TraceSink | None = None,
        precompile_resolver: PrecompileResolver | None = None,
        emitter: TraceEmitter | None = None,
        owns_sink: bool = False,
    ):
        self.context = context or ExecutionContext()
        self.sink = sink if sink is not None else MemorySink()
        self._owns_sink = owns_sink
        self._builder = CallTreeBuilder(precompile_resolver)
        self._emitter = emitter or TraceEmitter()
        self.last_stats: EmitStats | None = None

    @property
    def builder(self) -> CallTreeBuilder:
        return self._builder

    def capture_start(
        self,
        from_address: hexutil.BytesLike,
        to_address: hexutil.BytesLike,
        create: bool,
        input: hexutil.BytesLike | None,
        gas: int,
        value: int | None,
        context: ExecutionContext | None = None,
    ) -> None:
        """Begin a transaction; *context* replaces the tracer's context if given."""
        if context is not None:
            self.context = context
        self.last_stats = None
        self._builder.start_execution(
            self.context, create, from_address, to_address, input, gas, value
        )

    def capture_enter(
        self,
        op: OpLike,
        from_address: hexutil.BytesLike,
        to_address: hexutil.BytesLike,
        input: hexutil.BytesLike | None,
        gas: int,
        value: int | None,
    ) -> None:
        self._builder.enter(op, from_address, to_address, input, gas, value)

    def capture_exit(
        self, output: hexutil.BytesLike | None, gas_used: int, error: Any = None
    ) -> None:
        self._builder.exit(output, gas_used, error)

    def capture_end(
        self,
        output: hexutil.BytesLike | None,
        gas_used: int,
        duration: float | None = None,
        error: Any = None,
    ) -> EmitStats:
        items = self._builder.finish_execution(output, gas_used, duration, error)
        stats = self._emitter.emit(items, self.sink)
        self.last_stats = stats
        logger.info(
            "Traced tx %d of block %d: %d record(s) emitted, %d failed%s",
            self.context.transaction_position,
            self.context.block_number,
            stats.emitted,
            stats.failed,
            f" in {duration * 1000:.1f}ms" if duration is not None else "",
        )
        return stats

    # Per-opcode hooks; call traces only need the call boundaries.
    def capture_state(self, *args: Any, **kwargs: Any) -> None:
        pass

    def capture_fault(self, *args: Any, **kwargs: Any) -> None:
        pass

    def close(self) -> None:
        self._builder.abandon()
        if self._owns_sink:
            self.sink.close()

    def __enter__(self) -> ParityTracer:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def new_parity_tracer(
    context: ExecutionContext | None = None,
    config: TracerConfig = TracerConfig(),
) -> ParityTracer:
    """Tracer writing to the block-sharded log directory from *config*."""
    sink = ShardedFileSink(config.trace_dir, config.per_folder, config.per_file)
    if context is not None:
        logger.info(
            "Trace log path: %s, block: %d",
            sink.path_for(context.block_number),
            context.block_number,
        )
    return ParityTracer(
        context=context,
        sink=sink,
        precompile_resolver=ChainRulesResolver(config.chain_config),
        owns_sink=True,
    )
