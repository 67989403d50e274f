"""Call-boundary opcodes and their trace types."""

from __future__ import annotations

from enum import Enum
from typing import Union

from . import constants


class CallOpcode(str, Enum):
    # Message calls
    CALL = "CALL"
    CALLCODE = "CALLCODE"
    DELEGATECALL = "DELEGATECALL"
    STATICCALL = "STATICCALL"
    # Contract creation
    CREATE = "CREATE"
    CREATE2 = "CREATE2"
    # Account removal
    SELFDESTRUCT = "SELFDESTRUCT"


OpLike = Union[CallOpcode, str]

_CALL_OPS = frozenset(
    {
        CallOpcode.CALL,
        CallOpcode.CALLCODE,
        CallOpcode.DELEGATECALL,
        CallOpcode.STATICCALL,
    }
)
_CREATE_OPS = frozenset({CallOpcode.CREATE, CallOpcode.CREATE2})


def parse_opcode(op: OpLike) -> CallOpcode | None:
    """Resolve *op* to a CallOpcode, or None if it names something else."""
    if isinstance(op, CallOpcode):
        return op
    try:
        return CallOpcode(str(op).upper())
    except ValueError:
        return None


def trace_type_for(op: OpLike) -> str:
    """Map an opcode to its trace ``type`` field."""
    opcode = parse_opcode(op)
    if opcode in _CALL_OPS:
        return constants.TRACE_TYPE_CALL
    if opcode in _CREATE_OPS:
        return constants.TRACE_TYPE_CREATE
    if opcode == CallOpcode.SELFDESTRUCT:
        return constants.TRACE_TYPE_SUICIDE
    return constants.TRACE_TYPE_UNKNOWN


def call_type_for(op: OpLike) -> str:
    """Lowercase opcode name, kept verbatim for the ``callType`` field."""
    if isinstance(op, CallOpcode):
        return op.value.lower()
    return str(op).lower()
