"""Parity-style call tracer for EVM execution."""

from .builder import BuilderPhase, CallNestingError, CallTreeBuilder  # noqa: F401
from .emitter import TraceEmitter  # noqa: F401
from .opcodes import CallOpcode  # noqa: F401
from .precompiles import (  # noqa: F401
    ChainConfig,
    ChainRulesResolver,
    StaticPrecompileResolver,
    MAINNET_CHAIN_CONFIG,
)
from .sinks import JsonLinesSink, MemorySink, ShardedFileSink, get_sink  # noqa: F401
from .trace_types import (  # noqa: F401
    ExecutionContext,
    ParityTraceItem,
    TraceError,
    TraceRecord,
)
from .tracer import ParityTracer, new_parity_tracer  # noqa: F401
from .tracer_types import EmitStats, TracerConfig  # noqa: F401
