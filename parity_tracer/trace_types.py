"""Trace data types (pure data, no business logic)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from . import constants, hexutil


@dataclass(frozen=True)
class ExecutionContext:
    """Per-transaction metadata, fixed for the duration of one execution."""

    block_hash: bytes = constants.ZERO_HASH
    block_number: int = 0
    block_time: int = 0
    transaction_hash: bytes = constants.ZERO_HASH
    transaction_position: int = 0

    @classmethod
    def create(
        cls,
        block_hash: hexutil.BytesLike = constants.ZERO_HASH,
        block_number: int = 0,
        transaction_hash: hexutil.BytesLike = constants.ZERO_HASH,
        transaction_position: int = 0,
        block_time: int = 0,
    ) -> ExecutionContext:
        """Build a context from bytes or hex-string hashes."""
        return cls(
            block_hash=hexutil.to_hash(block_hash),
            block_number=hexutil.check_uint64(block_number, "block_number"),
            block_time=hexutil.check_uint64(block_time, "block_time"),
            transaction_hash=hexutil.to_hash(transaction_hash),
            transaction_position=transaction_position,
        )


@dataclass(frozen=True)
class TraceError:
    """An error reported by the VM for one call, carried as data."""

    kind: str
    message: str

    @classmethod
    def from_reported(cls, err: Any) -> TraceError | None:
        if err is None:
            return None
        if isinstance(err, TraceError):
            return err
        if isinstance(err, BaseException):
            return cls(kind=type(err).__name__, message=str(err))
        return cls(kind=constants.GENERIC_ERROR_KIND, message=str(err))


@dataclass
class TraceRecord:
    """One call as seen by the builder.

    Mutated only by its own exit and by elision of its children; frozen
    into a ParityTraceItem at finalization.
    """

    kind: str
    call_type: str
    from_address: bytes
    to_address: bytes
    gas: int
    input: bytes = b""
    value: bytes | None = None  # None when the call carried no value parameter
    gas_used: int = 0
    output: bytes = b""
    error: TraceError | None = None
    subtraces: int = 0
    trace_address: tuple[int, ...] = ()
    parent_index: int | None = None
    context: ExecutionContext = field(default_factory=ExecutionContext)

    def child_address(self) -> tuple[int, ...]:
        return self.trace_address + (self.subtraces,)

    def freeze(self, sequence_index: int, is_last: bool) -> ParityTraceItem:
        return ParityTraceItem(
            trace_type=self.kind,
            action=ParityTraceAction(
                call_type=self.call_type,
                from_address=self.from_address,
                to_address=self.to_address,
                gas=self.gas,
                input=self.input,
                value=self.value or b"",
            ),
            result=ParityTraceResult(gas_used=self.gas_used, output=self.output),
            subtraces=self.subtraces,
            trace_address=list(self.trace_address),
            error=self.error.message if self.error else None,
            block_hash=self.context.block_hash,
            block_number=self.context.block_number,
            transaction_hash=self.context.transaction_hash,
            transaction_position=self.context.transaction_position,
            sequence_index=sequence_index,
            is_last_in_transaction=is_last,
        )


# ── Wire schema (finalized, immutable) ──────────────────────────


class _WireModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class ParityTraceAction(_WireModel):
    call_type: str = Field(alias="callType")
    from_address: bytes = Field(alias="from")
    to_address: bytes = Field(alias="to")
    gas: int
    input: bytes = b""
    value: bytes = b""

    @field_serializer("from_address", "to_address", "input", "value")
    def serialize_bytes(self, data: bytes) -> str:
        return hexutil.encode_bytes(data)

    @field_serializer("gas")
    def serialize_gas(self, gas: int) -> str:
        return hexutil.encode_uint64(gas)


class ParityTraceResult(_WireModel):
    gas_used: int = Field(default=0, alias="gasUsed")
    output: bytes = b""

    @field_serializer("gas_used")
    def serialize_gas_used(self, gas_used: int) -> str:
        return hexutil.encode_uint64(gas_used)

    @field_serializer("output")
    def serialize_output(self, output: bytes) -> str:
        return hexutil.encode_bytes(output)


class ParityTraceItem(_WireModel):
    trace_type: str = Field(alias="type")
    action: ParityTraceAction
    result: ParityTraceResult
    subtraces: int = 0
    trace_address: list[int] = Field(default_factory=list, alias="traceAddress")
    error: str | None = None
    block_hash: bytes = Field(default=constants.ZERO_HASH, alias="blockHash")
    block_number: int = Field(default=0, alias="blockNumber")
    transaction_hash: bytes = Field(
        default=constants.ZERO_HASH, alias="transactionHash"
    )
    transaction_position: int = Field(default=0, alias="transactionPosition")
    sequence_index: int = Field(default=0, alias="transactionTraceID")
    is_last_in_transaction: bool = Field(default=False, alias="transactionLastTrace")

    @field_serializer("block_hash", "transaction_hash")
    def serialize_hash(self, data: bytes) -> str:
        return hexutil.encode_bytes(data)

    @field_serializer("is_last_in_transaction")
    def serialize_last_flag(self, is_last: bool) -> int:
        return 1 if is_last else 0

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready dict using the wire field names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
