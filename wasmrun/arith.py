"""Wrapping integer arithmetic and WebAssembly float semantics on Python numbers.

Integer operations take and return unsigned bit patterns of the given width.
Signed interpretations are only used inside, where an operation needs them.
"""

from __future__ import annotations

import math
import struct

from .values import Trap, TrapKind

_FLOAT_WIDTHS = (32, 64)


def _mask(bits: int) -> int:
    return (1 << bits) - 1


def to_signed(value: int, bits: int) -> int:
    """Read the low ``bits`` of ``value`` as a two's complement integer."""
    unsigned = value & _mask(bits)
    if unsigned >> (bits - 1):
        return unsigned - (1 << bits)
    return unsigned


def to_unsigned(value: int, bits: int) -> int:
    """The low ``bits`` of ``value`` as an unsigned integer."""
    return value & _mask(bits)


def int_add(left: int, right: int, bits: int) -> int:
    """Wrapping addition."""
    return (left + right) & _mask(bits)


def int_sub(left: int, right: int, bits: int) -> int:
    """Wrapping subtraction."""
    return (left - right) & _mask(bits)


def int_mul(left: int, right: int, bits: int) -> int:
    """Wrapping multiplication."""
    return (left * right) & _mask(bits)


def int_div(left: int, right: int, bits: int, signed: bool) -> int:
    """Division rounding towards zero.

    Raises a division-by-zero trap when ``right`` is zero, and an
    invalid-conversion trap when the signed quotient overflows.
    """
    dividend = to_unsigned(left, bits)
    divisor = to_unsigned(right, bits)
    if divisor == 0:
        raise Trap(TrapKind.DIVISION_BY_ZERO)
    if not signed:
        return dividend // divisor
    sa, sb = to_signed(dividend, bits), to_signed(divisor, bits)
    quotient = abs(sa) // abs(sb)
    if (sa < 0) != (sb < 0):
        quotient = -quotient
    if quotient > (1 << (bits - 1)) - 1:
        raise Trap(TrapKind.INVALID_CONVERSION_TO_INT)
    return to_unsigned(quotient, bits)


def int_rem(left: int, right: int, bits: int, signed: bool) -> int:
    """Remainder of division towards zero; its sign follows the dividend.

    Raises a division-by-zero trap when ``right`` is zero. The signed
    remainder never overflows: the minimum value by -1 gives zero.
    """
    dividend = to_unsigned(left, bits)
    divisor = to_unsigned(right, bits)
    if divisor == 0:
        raise Trap(TrapKind.DIVISION_BY_ZERO)
    if not signed:
        return dividend % divisor
    sa, sb = to_signed(dividend, bits), to_signed(divisor, bits)
    remainder = abs(sa) % abs(sb)
    if sa < 0:
        remainder = -remainder
    return to_unsigned(remainder, bits)


def leading_zeros(value: int, bits: int) -> int:
    """Number of zero bits above the highest set bit."""
    return bits - to_unsigned(value, bits).bit_length()


def trailing_zeros(value: int, bits: int) -> int:
    """Number of zero bits below the lowest set bit."""
    unsigned = to_unsigned(value, bits)
    if unsigned == 0:
        return bits
    return (unsigned & -unsigned).bit_length() - 1


def count_ones(value: int, bits: int) -> int:
    """Number of set bits."""
    return bin(to_unsigned(value, bits)).count("1")


def rotl(value: int, amount: int, bits: int) -> int:
    """Rotate left; the amount is taken modulo the width."""
    unsigned = to_unsigned(value, bits)
    shift = to_unsigned(amount, bits) % bits
    return ((unsigned << shift) | (unsigned >> (bits - shift))) & _mask(bits)


def rotr(value: int, amount: int, bits: int) -> int:
    """Rotate right; the amount is taken modulo the width."""
    unsigned = to_unsigned(value, bits)
    shift = to_unsigned(amount, bits) % bits
    return ((unsigned >> shift) | (unsigned << (bits - shift))) & _mask(bits)


def f32_round(value: float) -> float:
    """Round a float to the nearest single precision value; overflow gives infinity."""
    try:
        return struct.unpack("<f", struct.pack("<f", value))[0]
    except OverflowError:
        return math.copysign(math.inf, value)


def float_nearest(value: float) -> float:
    """Round to the nearest integer, ties to even; keeps the sign of zero."""
    if not math.isfinite(value):
        return value
    rounded = float(round(value))
    if rounded == 0.0:
        return math.copysign(0.0, value)
    return rounded


def float_min(left: float, right: float) -> float:
    """Minimum that propagates NaN; -0.0 is less than 0.0."""
    if math.isnan(left):
        return left
    if math.isnan(right):
        return right
    if left == right == 0.0:
        return left if math.copysign(1.0, left) < 0 else right
    return left if left < right else right


def float_max(left: float, right: float) -> float:
    """Maximum that propagates NaN; 0.0 is greater than -0.0."""
    if math.isnan(left):
        return left
    if math.isnan(right):
        return right
    if left == right == 0.0:
        return left if math.copysign(1.0, left) > 0 else right
    return left if left > right else right


def float_copysign(left: float, right: float) -> float:
    """``left`` with the sign of ``right``; a NaN ``left`` is returned unchanged."""
    if math.isnan(left):
        return left
    return math.copysign(left, right)


def truncate_to_int(value: float, bits: int, signed: bool) -> int:
    """Truncate towards zero into a signed or unsigned integer of ``bits``.

    Raises an invalid-conversion trap for NaN, infinities and values
    whose truncation does not fit.
    """
    if not math.isfinite(value):
        raise Trap(TrapKind.INVALID_CONVERSION_TO_INT)
    truncated = math.trunc(value)
    if signed:
        low, high = -(1 << (bits - 1)), (1 << (bits - 1)) - 1
    else:
        low, high = 0, (1 << bits) - 1
    if not low <= truncated <= high:
        raise Trap(TrapKind.INVALID_CONVERSION_TO_INT)
    return truncated


def _check_width(bits: int) -> None:
    if bits not in _FLOAT_WIDTHS:
        raise ValueError(f"float width must be 32 or 64, not {bits}")


def float_to_bits(value: float, bits: int) -> int:
    """IEEE 754 bit pattern of ``value`` at the given width."""
    _check_width(bits)
    if bits == 64:
        return struct.unpack("<Q", struct.pack("<d", value))[0]
    try:
        return struct.unpack("<I", struct.pack("<f", value))[0]
    except OverflowError:
        return 0xFF800000 if value < 0 else 0x7F800000


def bits_to_float(raw: int, bits: int) -> float:
    """The float whose IEEE 754 bit pattern at the given width is ``raw``."""
    _check_width(bits)
    if bits == 64:
        return struct.unpack("<d", to_unsigned(raw, 64).to_bytes(8, "little"))[0]
    return struct.unpack("<f", to_unsigned(raw, 32).to_bytes(4, "little"))[0]