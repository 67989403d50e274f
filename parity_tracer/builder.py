"""Call-Tree Builder — reconstructs the nested call structure of one execution.

Records live in an arena list that owns them in open order; the stack of
open calls holds arena indices, and each record keeps the index of its
parent. Trace addresses are fixed when a call is opened. Calls into
precompiled contracts are dropped when they exit, and only their parent's
subtrace count is adjusted.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from . import hexutil
from .opcodes import CallOpcode, OpLike, call_type_for, trace_type_for
from .precompiles import ChainRulesResolver, PrecompileResolver
from .trace_types import ExecutionContext, ParityTraceItem, TraceError, TraceRecord

logger = logging.getLogger(__name__)


class CallNestingError(RuntimeError):
    """Enter/exit events arrived out of order; the trace is unusable."""


class BuilderPhase(Enum):
    IDLE = "idle"
    STARTED = "started"
    FAILED = "failed"


class CallTreeBuilder:
    """Stateful core of the tracer, scoped to one top-level execution at a time.

    Not thread-safe: a builder is driven from the VM thread that owns it.
    Independent builders share no mutable state.
    """

    def __init__(self, precompile_resolver: PrecompileResolver | None = None):
        self._resolver = precompile_resolver or ChainRulesResolver()
        self._context = ExecutionContext()
        self._precompiles: frozenset[bytes] = frozenset()
        self._records: list[TraceRecord] = []
        self._stack: list[int] = []
        self._phase = BuilderPhase.IDLE

    @property
    def phase(self) -> BuilderPhase:
        return self._phase

    @property
    def depth(self) -> int:
        """Number of calls currently open."""
        return len(self._stack)

    @property
    def records(self) -> tuple[TraceRecord, ...]:
        """Records opened so far and not elided, in open order."""
        return tuple(self._records)

    @property
    def precompiles(self) -> frozenset[bytes]:
        return self._precompiles

    def start_execution(
        self,
        context: ExecutionContext | None,
        is_create: bool,
        from_address: hexutil.BytesLike,
        to_address: hexutil.BytesLike,
        input: hexutil.BytesLike | None,
        gas: int,
        value: int | None,
    ) -> None:
        """Reset all state and open the root call of a new execution.

        Invalid root arguments raise ValueError and leave the builder IDLE.
        """
        self._reset()
        self._context = context or ExecutionContext()
        self._precompiles = self._resolver.resolve(
            self._context.block_number, self._context.block_time
        )
        logger.debug(
            "Start execution: block=%d tx_pos=%d create=%s",
            self._context.block_number,
            self._context.transaction_position,
            is_create,
        )
        op = CallOpcode.CREATE if is_create else CallOpcode.CALL
        self._open(op, from_address, to_address, input, gas, value)
        self._phase = BuilderPhase.STARTED

    def enter(
        self,
        op: OpLike,
        from_address: hexutil.BytesLike,
        to_address: hexutil.BytesLike,
        input: hexutil.BytesLike | None,
        gas: int,
        value: int | None,
    ) -> None:
        """Open a call beneath the innermost open call."""
        self._require_started("enter")
        self._open(op, from_address, to_address, input, gas, value)

    def exit(
        self, output: hexutil.BytesLike | None, gas_used: int, error: Any = None
    ) -> None:
        """Close the innermost open call.

        The root call is closed only by finish_execution.
        """
        self._require_started("exit")
        if len(self._stack) < 2:
            self._fail("exit on the root call; close it with finish_execution")
        self._close(output, gas_used, error)

    def finish_execution(
        self,
        output: hexutil.BytesLike | None,
        gas_used: int,
        duration: float | None = None,
        error: Any = None,
    ) -> list[ParityTraceItem]:
        """Close the root call and return the finalized, ordered trace.

        The builder is back in IDLE afterwards.
        """
        self._require_started("finish_execution")
        if len(self._stack) != 1:
            self._fail(f"finish_execution with {len(self._stack)} open calls")

        self._close(output, gas_used, error)
        last = len(self._records) - 1
        items = [
            record.freeze(sequence_index=i, is_last=(i == last))
            for i, record in enumerate(self._records)
        ]
        logger.debug(
            "Finish execution: tx_pos=%d records=%d duration=%s",
            self._context.transaction_position,
            len(items),
            duration,
        )
        self._reset()
        return items

    def abandon(self) -> None:
        """Drop the current execution without emitting anything."""
        if self._phase is BuilderPhase.STARTED:
            logger.debug("Abandoning execution with %d open calls", len(self._stack))
        self._reset()

    # ── internals ───────────────────────────────────────────────

    def _open(
        self,
        op: OpLike,
        from_address: hexutil.BytesLike,
        to_address: hexutil.BytesLike,
        input: hexutil.BytesLike | None,
        gas: int,
        value: int | None,
    ) -> None:
        # All arguments are checked before the parent is touched.
        from_bytes = hexutil.to_address(from_address)
        to_bytes = hexutil.to_address(to_address)
        gas = hexutil.check_uint64(gas, "gas")
        encoded_value = hexutil.value_bytes(value)
        input_bytes = hexutil.to_bytes(input)
        kind, call_type = trace_type_for(op), call_type_for(op)

        parent_index: int | None = None
        trace_address: tuple[int, ...] = ()
        if self._stack:
            parent_index = self._stack[-1]
            parent = self._records[parent_index]
            trace_address = parent.child_address()
            parent.subtraces += 1

        record = TraceRecord(
            kind=kind,
            call_type=call_type,
            from_address=from_bytes,
            to_address=to_bytes,
            gas=gas,
            input=input_bytes,
            value=encoded_value,
            trace_address=trace_address,
            parent_index=parent_index,
            context=self._context,
        )
        self._records.append(record)
        self._stack.append(len(self._records) - 1)
        logger.debug(
            "Enter %s %s depth=%d", record.call_type, trace_address, len(self._stack)
        )

    def _close(
        self, output: hexutil.BytesLike | None, gas_used: int, error: Any
    ) -> None:
        gas_used = hexutil.check_uint64(gas_used, "gas_used")
        output_bytes = hexutil.to_bytes(output)
        trace_error = TraceError.from_reported(error)

        index = self._stack.pop()
        record = self._records[index]
        record.gas_used = gas_used
        record.output = output_bytes
        record.error = trace_error

        if record.to_address in self._precompiles:
            self._elide(index)

    def _elide(self, index: int) -> None:
        # Everything after `index` in the arena was opened while this call was
        # open, so it is this call's subtree.
        record = self._records[index]
        removed = len(self._records) - index
        del self._records[index:]
        if record.parent_index is not None:
            self._records[record.parent_index].subtraces -= 1
        logger.debug(
            "Elided precompile call to 0x%s %s (%d record(s))",
            record.to_address.hex(),
            record.trace_address,
            removed,
        )

    def _require_started(self, operation: str) -> None:
        if self._phase is BuilderPhase.FAILED:
            raise CallNestingError(
                f"{operation} on a failed builder; call start_execution to reset"
            )
        if self._phase is not BuilderPhase.STARTED:
            raise CallNestingError(f"{operation} before start_execution")

    def _fail(self, reason: str) -> None:
        self._phase = BuilderPhase.FAILED
        self._records = []
        self._stack = []
        raise CallNestingError(reason)

    def _reset(self) -> None:
        self._records = []
        self._stack = []
        self._precompiles = frozenset()
        self._phase = BuilderPhase.IDLE
