"""Runtime values, traps and little-endian encoding of primitive values."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from .types import ValueType

_INT_KINDS = {
    "i8": (1, True),
    "u8": (1, False),
    "i16": (2, True),
    "u16": (2, False),
    "i32": (4, True),
    "u32": (4, False),
    "i64": (8, True),
    "u64": (8, False),
}

_FLOAT_KINDS = {"f32": ("<f", 4), "f64": ("<d", 8)}


class TrapKind(Enum):
    """Reason why execution was aborted."""

    UNREACHABLE = "unreachable"
    MEMORY_ACCESS_OUT_OF_BOUNDS = "memory access out of bounds"
    TABLE_ACCESS_OUT_OF_BOUNDS = "table access out of bounds"
    ELEM_UNINITIALIZED = "uninitialized table element"
    DIVISION_BY_ZERO = "division by zero"
    INVALID_CONVERSION_TO_INT = "invalid conversion to integer"
    STACK_OVERFLOW = "stack overflow"
    UNEXPECTED_SIGNATURE = "unexpected signature"
    HOST = "host trap"

    @property
    def is_host(self) -> bool:
        return self is TrapKind.HOST


class Trap(Exception):
    """Execution was aborted; ``kind`` tells why."""

    def __init__(self, kind: TrapKind, host_error: Optional[BaseException] = None):
        self.kind = kind
        self.host_error = host_error
        message = kind.value if host_error is None else f"{kind.value}: {host_error}"
        super().__init__(message)

    @property
    def is_host(self) -> bool:
        return self.kind.is_host


class LittleEndianError(ValueError):
    """The buffer is too short for the type being decoded."""


def _float_bits(value: float, bits: int) -> int:
    if bits == 64:
        return struct.unpack("<Q", struct.pack("<d", value))[0]
    try:
        return struct.unpack("<I", struct.pack("<f", value))[0]
    except OverflowError:
        return 0xFF800000 if value < 0 else 0x7F800000


def _bits_float(raw: int, bits: int) -> float:
    if bits == 64:
        return struct.unpack("<d", raw.to_bytes(8, "little"))[0]
    return struct.unpack("<f", raw.to_bytes(4, "little"))[0]


@dataclass(frozen=True)
class RuntimeValue:
    """A typed value; ``raw`` is its bit pattern, so float NaN payloads survive."""

    value_type: ValueType
    raw: int

    def __post_init__(self) -> None:
        if not 0 <= self.raw < (1 << self.value_type.bits):
            raise OverflowError(f"bit pattern {self.raw:#x} does not fit {self.value_type}")

    @property
    def value(self) -> Union[int, float]:
        """The value as a signed integer or as a float."""
        bits = self.value_type.bits
        if self.value_type.is_float:
            return _bits_float(self.raw, bits)
        if self.raw >= 1 << (bits - 1):
            return self.raw - (1 << bits)
        return self.raw

    def try_into(self, target: str):
        """Convert to ``target`` ("bool", "i8", "u8", ..., "u64", "f32", "f64").

        Returns None if this value is of a different type, or out of range.
        """
        vt = self.value_type
        if target == "bool":
            return self.raw != 0 if vt is ValueType.I32 else None
        if target in ("i8", "u8", "i16", "u16"):
            if vt is not ValueType.I32:
                return None
            size, signed = _INT_KINDS[target]
            bits = size * 8
            low, high = ((-(1 << (bits - 1)), (1 << (bits - 1)) - 1) if signed
                         else (0, (1 << bits) - 1))
            val = self.value
            return val if low <= val <= high else None
        if target in ("i32", "u32", "i64", "u64"):
            expected = ValueType.I32 if target in ("i32", "u32") else ValueType.I64
            if vt is not expected:
                return None
            return self.value if target.startswith("i") else self.raw
        if target in ("f32", "f64"):
            expected = ValueType.F32 if target == "f32" else ValueType.F64
            return self.value if vt is expected else None
        raise ValueError(f"unknown conversion target: {target!r}")


def _int_value(value: int, value_type: ValueType) -> RuntimeValue:
    if not isinstance(value, int):
        raise TypeError(f"expected an integer, not {type(value).__name__}")
    bits = value_type.bits
    if not -(1 << (bits - 1)) <= value < (1 << bits):
        raise OverflowError(f"{value} does not fit in {value_type}")
    return RuntimeValue(value_type, value & ((1 << bits) - 1))


def i32(value: int) -> RuntimeValue:
    """An i32 value from a signed or unsigned 32-bit integer."""
    return _int_value(value, ValueType.I32)


def i64(value: int) -> RuntimeValue:
    """An i64 value from a signed or unsigned 64-bit integer."""
    return _int_value(value, ValueType.I64)


def f32(value: float) -> RuntimeValue:
    """An f32 value, rounded from a Python float."""
    return RuntimeValue(ValueType.F32, _float_bits(float(value), 32))


def f64(value: float) -> RuntimeValue:
    """An f64 value from a Python float."""
    return RuntimeValue(ValueType.F64, _float_bits(float(value), 64))


def decode_f32(bits: int) -> RuntimeValue:
    """An f32 value whose bit pattern is ``bits``."""
    return RuntimeValue(ValueType.F32, bits)


def decode_f64(bits: int) -> RuntimeValue:
    """An f64 value whose bit pattern is ``bits``."""
    return RuntimeValue(ValueType.F64, bits)


def default_value(value_type: ValueType) -> RuntimeValue:
    """The zero value of the given type."""
    return RuntimeValue(value_type, 0)


def to_little_endian(value: Union[int, float], kind: str) -> bytes:
    """Encode ``value`` as the primitive ``kind`` in little-endian order."""
    if kind in _INT_KINDS:
        if not isinstance(value, int):
            raise TypeError(f"expected an integer for {kind}, not {type(value).__name__}")
        size, signed = _INT_KINDS[kind]
        try:
            return value.to_bytes(size, "little", signed=signed)
        except OverflowError:
            raise OverflowError(f"{value} does not fit in {kind}") from None
    if kind in _FLOAT_KINDS:
        fmt, _ = _FLOAT_KINDS[kind]
        return struct.pack(fmt, float(value))
    raise ValueError(f"unknown primitive kind: {kind!r}")


def from_little_endian(buffer: bytes, kind: str) -> Union[int, float]:
    """Decode the primitive ``kind`` from the start of ``buffer``."""
    if kind in _INT_KINDS:
        size, signed = _INT_KINDS[kind]
    elif kind in _FLOAT_KINDS:
        fmt, size = _FLOAT_KINDS[kind]
    else:
        raise ValueError(f"unknown primitive kind: {kind!r}")
    data = bytes(buffer[:size])
    if len(data) < size:
        raise LittleEndianError(
            f"buffer of {len(buffer)} bytes is too short for {kind}"
        )
    if kind in _INT_KINDS:
        return int.from_bytes(data, "little", signed=signed)
    return struct.unpack(fmt, data)[0]