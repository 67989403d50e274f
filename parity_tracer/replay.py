"""Replay a recorded JSON-lines log of VM call events through a tracer.

One event per line::

    {"event": "start", "context": {...}, "from": "0x..", "to": "0x..",
     "create": false, "input": "0x..", "gas": 100000, "value": 0}
    {"event": "enter", "op": "CALL", "from": ..., "to": ..., "gas": ...}
    {"event": "exit", "output": "0x..", "gas_used": 21, "error": null}
    {"event": "end", "output": "0x..", "gas_used": 50000, "duration": 0.01}

A log may hold several transactions back to back.
"""

from __future__ import annotations

import logging
from typing import Annotated, Iterable, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from . import constants
from .trace_types import ExecutionContext, TraceError
from .tracer import ParityTracer
from .tracer_types import EmitStats

logger = logging.getLogger(__name__)


class _Event(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class ContextPayload(_Event):
    block_hash: str = "0x" + "00" * constants.HASH_LENGTH
    block_number: int = 0
    block_time: int = 0
    transaction_hash: str = "0x" + "00" * constants.HASH_LENGTH
    transaction_position: int = 0

    def to_context(self) -> ExecutionContext:
        return ExecutionContext.create(
            block_hash=self.block_hash,
            block_number=self.block_number,
            transaction_hash=self.transaction_hash,
            transaction_position=self.transaction_position,
            block_time=self.block_time,
        )


class _ErrorFields(_Event):
    error: str | None = None
    error_kind: str = constants.GENERIC_ERROR_KIND

    def trace_error(self) -> TraceError | None:
        if self.error is None:
            return None
        return TraceError(kind=self.error_kind, message=self.error)


class StartEvent(_Event):
    event: Literal["start"]
    context: ContextPayload | None = None
    from_address: str = Field(alias="from")
    to_address: str = Field(alias="to")
    create: bool = False
    input: str = "0x"
    gas: int
    value: int | None = None


class EnterEvent(_Event):
    event: Literal["enter"]
    op: str
    from_address: str = Field(alias="from")
    to_address: str = Field(alias="to")
    input: str = "0x"
    gas: int
    value: int | None = None


class ExitEvent(_ErrorFields):
    event: Literal["exit"]
    output: str = "0x"
    gas_used: int = 0


class EndEvent(_ErrorFields):
    event: Literal["end"]
    output: str = "0x"
    gas_used: int = 0
    duration: float | None = None


CallEvent = Annotated[
    Union[StartEvent, EnterEvent, ExitEvent, EndEvent],
    Field(discriminator="event"),
]

EVENT_ADAPTER: TypeAdapter[CallEvent] = TypeAdapter(CallEvent)


def parse_events(lines: Iterable[str]) -> list[CallEvent]:
    """Validate every non-blank line; raises pydantic.ValidationError."""
    return [EVENT_ADAPTER.validate_json(line) for line in lines if line.strip()]


def apply_event(tracer: ParityTracer, event: CallEvent) -> EmitStats | None:
    """Feed one event to *tracer*; returns stats when a transaction ends."""
    if isinstance(event, StartEvent):
        context = event.context.to_context() if event.context else None
        tracer.capture_start(
            event.from_address,
            event.to_address,
            event.create,
            event.input,
            event.gas,
            event.value,
            context=context,
        )
        return None
    if isinstance(event, EnterEvent):
        tracer.capture_enter(
            event.op,
            event.from_address,
            event.to_address,
            event.input,
            event.gas,
            event.value,
        )
        return None
    if isinstance(event, ExitEvent):
        tracer.capture_exit(event.output, event.gas_used, event.trace_error())
        return None
    return tracer.capture_end(
        event.output, event.gas_used, event.duration, event.trace_error()
    )


def replay(lines: Iterable[str], tracer: ParityTracer) -> list[EmitStats]:
    """Replay a whole log; one EmitStats per completed transaction."""
    results: list[EmitStats] = []
    events = parse_events(lines)
    logger.info("Replaying %d call events", len(events))
    for event in events:
        stats = apply_event(tracer, event)
        if stats is not None:
            results.append(stats)
    if tracer.builder.depth:
        logger.warning(
            "Event log ended with %d open call(s); trailing transaction dropped",
            tracer.builder.depth,
        )
        tracer.builder.abandon()
    return results
