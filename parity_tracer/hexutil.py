"""Hex and fixed-width byte helpers for the trace wire format."""

from __future__ import annotations

from typing import Union

from . import constants

BytesLike = Union[bytes, bytearray, memoryview, str]


def to_bytes(data: BytesLike | None) -> bytes:
    """Return an owned ``bytes`` copy of *data*.

    Strings are decoded as hex, with or without a ``0x`` prefix. ``None``
    becomes ``b""``. A fresh object is always returned so later mutation of
    an engine-owned buffer cannot leak into a record.
    """
    if data is None:
        return b""
    if isinstance(data, str):
        text = data[2:] if data[:2].lower() == constants.HEX_PREFIX else data
        if len(text) % 2:
            text = "0" + text
        try:
            return bytes.fromhex(text)
        except ValueError as exc:
            raise ValueError(f"Invalid hex string: {data!r}") from exc
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(bytearray(data))
    raise TypeError(f"Expected bytes or hex string, got {type(data).__name__}")


def _fixed_width(data: BytesLike, width: int, what: str) -> bytes:
    raw = to_bytes(data)
    if len(raw) != width:
        raise ValueError(f"{what} must be {width} bytes, got {len(raw)}")
    return raw


def to_address(data: BytesLike) -> bytes:
    return _fixed_width(data, constants.ADDRESS_LENGTH, "Address")


def to_hash(data: BytesLike) -> bytes:
    return _fixed_width(data, constants.HASH_LENGTH, "Hash")


def address_from_int(n: int) -> bytes:
    """Big-endian, left-padded address for small integers (``0x…01`` etc)."""
    return n.to_bytes(constants.ADDRESS_LENGTH, "big")


def check_uint64(n: int, what: str = "value") -> int:
    if not isinstance(n, int) or isinstance(n, bool):
        raise TypeError(f"{what} must be an int, got {type(n).__name__}")
    if n < 0 or n > constants.UINT64_MAX:
        raise ValueError(f"{what} out of uint64 range: {n}")
    return n


def value_bytes(value: int | None) -> bytes | None:
    """Minimal big-endian encoding of a transfer value; zero is ``b""``."""
    if value is None:
        return None
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"Value must be an int, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"Value must be non-negative, got {value}")
    return value.to_bytes((value.bit_length() + 7) // 8, "big")


def encode_bytes(data: bytes | None) -> str:
    if not data:
        return constants.EMPTY_HEX
    return constants.HEX_PREFIX + data.hex()


def encode_uint64(n: int) -> str:
    return hex(n)
