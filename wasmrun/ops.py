"""Instruction set of the interpreter and execution of its numeric instructions.

Numeric instructions work on the value stack alone: they pop untyped
64-bit bit patterns, read them at the type the instruction expects, and
push the result back as a bit pattern whose unused upper bits are zero.
"""

from __future__ import annotations

import math
import operator
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict

from .arith import (
    bits_to_float,
    count_ones,
    f32_round,
    float_max,
    float_min,
    float_nearest,
    float_to_bits,
    int_add,
    int_div,
    int_mul,
    int_rem,
    int_sub,
    leading_zeros,
    rotl,
    rotr,
    to_signed,
    to_unsigned,
    trailing_zeros,
    truncate_to_int,
)
from .stack import DropKeep, ValueStack


class Op(Enum):
    """Operation codes of the interpreter's instructions."""

    UNREACHABLE = "unreachable"
    BR = "br"
    BR_IF_EQZ = "br_if_eqz"
    BR_IF_NEZ = "br_if_nez"
    BR_TABLE = "br_table"
    RETURN = "return"
    CALL = "call"
    CALL_INDIRECT = "call_indirect"
    DROP = "drop"
    SELECT = "select"
    GET_LOCAL = "get_local"
    SET_LOCAL = "set_local"
    TEE_LOCAL = "tee_local"
    GET_GLOBAL = "get_global"
    SET_GLOBAL = "set_global"

    I32_LOAD = "i32.load"
    I64_LOAD = "i64.load"
    F32_LOAD = "f32.load"
    F64_LOAD = "f64.load"
    I32_LOAD8_S = "i32.load8_s"
    I32_LOAD8_U = "i32.load8_u"
    I32_LOAD16_S = "i32.load16_s"
    I32_LOAD16_U = "i32.load16_u"
    I64_LOAD8_S = "i64.load8_s"
    I64_LOAD8_U = "i64.load8_u"
    I64_LOAD16_S = "i64.load16_s"
    I64_LOAD16_U = "i64.load16_u"
    I64_LOAD32_S = "i64.load32_s"
    I64_LOAD32_U = "i64.load32_u"
    I32_STORE = "i32.store"
    I64_STORE = "i64.store"
    F32_STORE = "f32.store"
    F64_STORE = "f64.store"
    I32_STORE8 = "i32.store8"
    I32_STORE16 = "i32.store16"
    I64_STORE8 = "i64.store8"
    I64_STORE16 = "i64.store16"
    I64_STORE32 = "i64.store32"
    CURRENT_MEMORY = "current_memory"
    GROW_MEMORY = "grow_memory"

    I32_CONST = "i32.const"
    I64_CONST = "i64.const"
    F32_CONST = "f32.const"
    F64_CONST = "f64.const"

    I32_EQZ = "i32.eqz"
    I32_EQ = "i32.eq"
    I32_NE = "i32.ne"
    I32_LT_S = "i32.lt_s"
    I32_LT_U = "i32.lt_u"
    I32_GT_S = "i32.gt_s"
    I32_GT_U = "i32.gt_u"
    I32_LE_S = "i32.le_s"
    I32_LE_U = "i32.le_u"
    I32_GE_S = "i32.ge_s"
    I32_GE_U = "i32.ge_u"

    I64_EQZ = "i64.eqz"
    I64_EQ = "i64.eq"
    I64_NE = "i64.ne"
    I64_LT_S = "i64.lt_s"
    I64_LT_U = "i64.lt_u"
    I64_GT_S = "i64.gt_s"
    I64_GT_U = "i64.gt_u"
    I64_LE_S = "i64.le_s"
    I64_LE_U = "i64.le_u"
    I64_GE_S = "i64.ge_s"
    I64_GE_U = "i64.ge_u"

    F32_EQ = "f32.eq"
    F32_NE = "f32.ne"
    F32_LT = "f32.lt"
    F32_GT = "f32.gt"
    F32_LE = "f32.le"
    F32_GE = "f32.ge"

    F64_EQ = "f64.eq"
    F64_NE = "f64.ne"
    F64_LT = "f64.lt"
    F64_GT = "f64.gt"
    F64_LE = "f64.le"
    F64_GE = "f64.ge"

    I32_CLZ = "i32.clz"
    I32_CTZ = "i32.ctz"
    I32_POPCNT = "i32.popcnt"
    I32_ADD = "i32.add"
    I32_SUB = "i32.sub"
    I32_MUL = "i32.mul"
    I32_DIV_S = "i32.div_s"
    I32_DIV_U = "i32.div_u"
    I32_REM_S = "i32.rem_s"
    I32_REM_U = "i32.rem_u"
    I32_AND = "i32.and"
    I32_OR = "i32.or"
    I32_XOR = "i32.xor"
    I32_SHL = "i32.shl"
    I32_SHR_S = "i32.shr_s"
    I32_SHR_U = "i32.shr_u"
    I32_ROTL = "i32.rotl"
    I32_ROTR = "i32.rotr"

    I64_CLZ = "i64.clz"
    I64_CTZ = "i64.ctz"
    I64_POPCNT = "i64.popcnt"
    I64_ADD = "i64.add"
    I64_SUB = "i64.sub"
    I64_MUL = "i64.mul"
    I64_DIV_S = "i64.div_s"
    I64_DIV_U = "i64.div_u"
    I64_REM_S = "i64.rem_s"
    I64_REM_U = "i64.rem_u"
    I64_AND = "i64.and"
    I64_OR = "i64.or"
    I64_XOR = "i64.xor"
    I64_SHL = "i64.shl"
    I64_SHR_S = "i64.shr_s"
    I64_SHR_U = "i64.shr_u"
    I64_ROTL = "i64.rotl"
    I64_ROTR = "i64.rotr"

    F32_ABS = "f32.abs"
    F32_NEG = "f32.neg"
    F32_CEIL = "f32.ceil"
    F32_FLOOR = "f32.floor"
    F32_TRUNC = "f32.trunc"
    F32_NEAREST = "f32.nearest"
    F32_SQRT = "f32.sqrt"
    F32_ADD = "f32.add"
    F32_SUB = "f32.sub"
    F32_MUL = "f32.mul"
    F32_DIV = "f32.div"
    F32_MIN = "f32.min"
    F32_MAX = "f32.max"
    F32_COPYSIGN = "f32.copysign"

    F64_ABS = "f64.abs"
    F64_NEG = "f64.neg"
    F64_CEIL = "f64.ceil"
    F64_FLOOR = "f64.floor"
    F64_TRUNC = "f64.trunc"
    F64_NEAREST = "f64.nearest"
    F64_SQRT = "f64.sqrt"
    F64_ADD = "f64.add"
    F64_SUB = "f64.sub"
    F64_MUL = "f64.mul"
    F64_DIV = "f64.div"
    F64_MIN = "f64.min"
    F64_MAX = "f64.max"
    F64_COPYSIGN = "f64.copysign"

    I32_WRAP_I64 = "i32.wrap/i64"
    I32_TRUNC_S_F32 = "i32.trunc_s/f32"
    I32_TRUNC_U_F32 = "i32.trunc_u/f32"
    I32_TRUNC_S_F64 = "i32.trunc_s/f64"
    I32_TRUNC_U_F64 = "i32.trunc_u/f64"
    I64_EXTEND_S_I32 = "i64.extend_s/i32"
    I64_EXTEND_U_I32 = "i64.extend_u/i32"
    I64_TRUNC_S_F32 = "i64.trunc_s/f32"
    I64_TRUNC_U_F32 = "i64.trunc_u/f32"
    I64_TRUNC_S_F64 = "i64.trunc_s/f64"
    I64_TRUNC_U_F64 = "i64.trunc_u/f64"
    F32_CONVERT_S_I32 = "f32.convert_s/i32"
    F32_CONVERT_U_I32 = "f32.convert_u/i32"
    F32_CONVERT_S_I64 = "f32.convert_s/i64"
    F32_CONVERT_U_I64 = "f32.convert_u/i64"
    F32_DEMOTE_F64 = "f32.demote/f64"
    F64_CONVERT_S_I32 = "f64.convert_s/i32"
    F64_CONVERT_U_I32 = "f64.convert_u/i32"
    F64_CONVERT_S_I64 = "f64.convert_s/i64"
    F64_CONVERT_U_I64 = "f64.convert_u/i64"
    F64_PROMOTE_F32 = "f64.promote/f32"

    I32_REINTERPRET_F32 = "i32.reinterpret/f32"
    I64_REINTERPRET_F64 = "i64.reinterpret/f64"
    F32_REINTERPRET_I32 = "f32.reinterpret/i32"
    F64_REINTERPRET_I64 = "f64.reinterpret/i64"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Target:
    """Destination of a branch and the stack adjustment made on the way."""

    dst_pc: int
    drop_keep: DropKeep


_LOADS_AND_STORES = frozenset(
    op for op in Op if op.value.split(".")[-1].startswith(("load", "store"))
)

_WITH_ARG = frozenset(
    {
        Op.BR,
        Op.BR_IF_EQZ,
        Op.BR_IF_NEZ,
        Op.BR_TABLE,
        Op.RETURN,
        Op.CALL,
        Op.CALL_INDIRECT,
        Op.GET_LOCAL,
        Op.SET_LOCAL,
        Op.TEE_LOCAL,
        Op.GET_GLOBAL,
        Op.SET_GLOBAL,
        Op.I32_CONST,
        Op.I64_CONST,
        Op.F32_CONST,
        Op.F64_CONST,
    }
) | _LOADS_AND_STORES


@dataclass(frozen=True)
class Instruction:
    """An operation with its immediate argument.

    The argument is a ``Target`` for branches, a tuple of targets for
    ``BR_TABLE`` (the last one is the default), a ``DropKeep`` for
    ``RETURN``, an index, depth or memory offset for the instructions that
    take one, and the bit pattern of the value for constants.
    """

    op: Op
    arg: Any = None

    def __post_init__(self) -> None:
        if self.op in _WITH_ARG:
            if self.arg is None:
                raise ValueError(f"{self.op} needs an argument")
        elif self.arg is not None:
            raise ValueError(f"{self.op} takes no argument")
        if self.op is Op.BR_TABLE:
            targets = tuple(self.arg)
            if not targets:
                raise ValueError("br_table needs at least a default target")
            object.__setattr__(self, "arg", targets)

    def __str__(self) -> str:
        return str(self.op) if self.arg is None else f"{self.op} {self.arg}"


_Handler = Callable[[ValueStack], None]


def _mask(bits: int) -> int:
    return (1 << bits) - 1


def _sign_bit(bits: int) -> int:
    return 1 << (bits - 1)


def _load_float(raw: int, bits: int) -> float:
    return bits_to_float(raw & _mask(bits), bits)


def _store_float(value: float, bits: int) -> int:
    if bits == 32:
        value = f32_round(value)
    return float_to_bits(value, bits)


def _int_to_float(value: int, bits: int) -> float:
    """Round an integer straight to the nearest float of the width, ties to even."""
    if bits == 64 or abs(value) < 1 << 53:
        return f32_round(float(value)) if bits == 32 else float(value)
    magnitude = abs(value)
    shift = magnitude.bit_length() - 24
    quotient, remainder = divmod(magnitude, 1 << shift)
    half = 1 << (shift - 1)
    if remainder > half or (remainder == half and quotient & 1):
        quotient += 1
    result = float(quotient << shift)
    return -result if value < 0 else result


def _integral(fn: Callable[[float], int]) -> Callable[[float], float]:
    def apply(value: float) -> float:
        if math.isinf(value):
            return value
        result = float(fn(value))
        return math.copysign(result, value) if result == 0.0 else result

    return apply


def _float_sqrt(value: float) -> float:
    if value < 0.0:
        return math.nan
    return math.sqrt(value)


def _float_div(left: float, right: float) -> float:
    if right == 0.0:
        if left == 0.0 or math.isnan(left):
            return math.nan
        negative = (math.copysign(1.0, left) < 0) != (math.copysign(1.0, right) < 0)
        return -math.inf if negative else math.inf
    return left / right


# Integer instruction factories.


def _int_binary(fn: Callable[[int, int, int], int], bits: int) -> _Handler:
    mask = _mask(bits)

    def run(stack: ValueStack) -> None:
        left, right = stack.pop_pair()
        stack.push(fn(left & mask, right & mask, bits))

    return run


def _int_divide(fn: Callable[[int, int, int, bool], int], bits: int, signed: bool) -> _Handler:
    return _int_binary(lambda left, right, width: fn(left, right, width, signed), bits)


def _int_bitwise(fn: Callable[[int, int], int], bits: int) -> _Handler:
    return _int_binary(lambda left, right, _width: fn(left, right), bits)


def _int_shift(bits: int, kind: str) -> _Handler:
    mask = _mask(bits)

    def run(stack: ValueStack) -> None:
        left, right = stack.pop_pair()
        amount = right & (bits - 1)
        if kind == "shl":
            result = (left << amount) & mask
        elif kind == "shr_s":
            result = to_unsigned(to_signed(left, bits) >> amount, bits)
        else:
            result = (left & mask) >> amount
        stack.push(result)

    return run


def _int_unary(fn: Callable[[int, int], int], bits: int) -> _Handler:
    mask = _mask(bits)

    def run(stack: ValueStack) -> None:
        stack.push(fn(stack.pop() & mask, bits))

    return run


def _int_eqz(bits: int) -> _Handler:
    mask = _mask(bits)

    def run(stack: ValueStack) -> None:
        stack.push(1 if stack.pop() & mask == 0 else 0)

    return run


def _int_compare(pred: Callable[[int, int], bool], bits: int, signed: bool) -> _Handler:
    mask = _mask(bits)

    def read(raw: int) -> int:
        return to_signed(raw, bits) if signed else raw & mask

    def run(stack: ValueStack) -> None:
        left, right = stack.pop_pair()
        stack.push(1 if pred(read(left), read(right)) else 0)

    return run


# Float instruction factories.


def _float_compare(pred: Callable[[float, float], bool], bits: int) -> _Handler:
    def run(stack: ValueStack) -> None:
        left, right = stack.pop_pair()
        stack.push(1 if pred(_load_float(left, bits), _load_float(right, bits)) else 0)

    return run


def _float_unary(fn: Callable[[float], float], bits: int) -> _Handler:
    mask = _mask(bits)

    def run(stack: ValueStack) -> None:
        raw = stack.pop() & mask
        value = bits_to_float(raw, bits)
        if math.isnan(value):
            stack.push(raw)
            return
        stack.push(_store_float(fn(value), bits))

    return run


def _float_binary(fn: Callable[[float, float], float], bits: int) -> _Handler:
    def run(stack: ValueStack) -> None:
        left, right = stack.pop_pair()
        result = fn(_load_float(left, bits), _load_float(right, bits))
        stack.push(_store_float(result, bits))

    return run


def _float_minmax(fn: Callable[[float, float], float], bits: int) -> _Handler:
    mask = _mask(bits)

    def run(stack: ValueStack) -> None:
        left, right = stack.pop_pair()
        left, right = left & mask, right & mask
        lf, rf = bits_to_float(left, bits), bits_to_float(right, bits)
        if math.isnan(lf):
            stack.push(left)
        elif math.isnan(rf):
            stack.push(right)
        else:
            stack.push(_store_float(fn(lf, rf), bits))

    return run


def _float_abs(bits: int) -> _Handler:
    keep = _mask(bits) ^ _sign_bit(bits)

    def run(stack: ValueStack) -> None:
        stack.push(stack.pop() & keep)

    return run


def _float_neg(bits: int) -> _Handler:
    mask, sign = _mask(bits), _sign_bit(bits)

    def run(stack: ValueStack) -> None:
        stack.push((stack.pop() & mask) ^ sign)

    return run


def _float_copysign(bits: int) -> _Handler:
    mask, sign = _mask(bits), _sign_bit(bits)

    def run(stack: ValueStack) -> None:
        left, right = stack.pop_pair()
        left, right = left & mask, right & mask
        if math.isnan(bits_to_float(left, bits)):
            stack.push(left)
        else:
            stack.push((left & ~sign & mask) | (right & sign))

    return run


# Conversion factories.


def _wrap_i64() -> _Handler:
    def run(stack: ValueStack) -> None:
        stack.push(stack.pop() & _mask(32))

    return run


def _trunc_to_int(src_bits: int, dst_bits: int, signed: bool) -> _Handler:
    def run(stack: ValueStack) -> None:
        value = _load_float(stack.pop(), src_bits)
        stack.push(to_unsigned(truncate_to_int(value, dst_bits, signed), dst_bits))

    return run


def _extend_i32(signed: bool) -> _Handler:
    def run(stack: ValueStack) -> None:
        raw = stack.pop() & _mask(32)
        stack.push(to_unsigned(to_signed(raw, 32), 64) if signed else raw)

    return run


def _convert_int(src_bits: int, dst_bits: int, signed: bool) -> _Handler:
    def run(stack: ValueStack) -> None:
        raw = stack.pop() & _mask(src_bits)
        value = to_signed(raw, src_bits) if signed else raw
        stack.push(float_to_bits(_int_to_float(value, dst_bits), dst_bits))

    return run


def _demote() -> _Handler:
    def run(stack: ValueStack) -> None:
        stack.push(_store_float(_load_float(stack.pop(), 64), 32))

    return run


def _promote() -> _Handler:
    def run(stack: ValueStack) -> None:
        stack.push(float_to_bits(_load_float(stack.pop(), 32), 64))

    return run


def _reinterpret(bits: int) -> _Handler:
    mask = _mask(bits)

    def run(stack: ValueStack) -> None:
        stack.push(stack.pop() & mask)

    return run


def _build_table() -> Dict[Op, _Handler]:
    table: Dict[Op, _Handler] = {}
    comparisons = {
        "EQ": operator.eq,
        "NE": operator.ne,
        "LT": operator.lt,
        "GT": operator.gt,
        "LE": operator.le,
        "GE": operator.ge,
    }

    for bits in (32, 64):
        i, f = f"I{bits}", f"F{bits}"
        table[Op[f"{i}_EQZ"]] = _int_eqz(bits)
        for name, pred in comparisons.items():
            if name in ("EQ", "NE"):
                table[Op[f"{i}_{name}"]] = _int_compare(pred, bits, False)
            else:
                table[Op[f"{i}_{name}_S"]] = _int_compare(pred, bits, True)
                table[Op[f"{i}_{name}_U"]] = _int_compare(pred, bits, False)
            table[Op[f"{f}_{name}"]] = _float_compare(pred, bits)

        table[Op[f"{i}_CLZ"]] = _int_unary(leading_zeros, bits)
        table[Op[f"{i}_CTZ"]] = _int_unary(trailing_zeros, bits)
        table[Op[f"{i}_POPCNT"]] = _int_unary(count_ones, bits)
        table[Op[f"{i}_ADD"]] = _int_binary(int_add, bits)
        table[Op[f"{i}_SUB"]] = _int_binary(int_sub, bits)
        table[Op[f"{i}_MUL"]] = _int_binary(int_mul, bits)
        table[Op[f"{i}_DIV_S"]] = _int_divide(int_div, bits, True)
        table[Op[f"{i}_DIV_U"]] = _int_divide(int_div, bits, False)
        table[Op[f"{i}_REM_S"]] = _int_divide(int_rem, bits, True)
        table[Op[f"{i}_REM_U"]] = _int_divide(int_rem, bits, False)
        table[Op[f"{i}_AND"]] = _int_bitwise(operator.and_, bits)
        table[Op[f"{i}_OR"]] = _int_bitwise(operator.or_, bits)
        table[Op[f"{i}_XOR"]] = _int_bitwise(operator.xor, bits)
        table[Op[f"{i}_SHL"]] = _int_shift(bits, "shl")
        table[Op[f"{i}_SHR_S"]] = _int_shift(bits, "shr_s")
        table[Op[f"{i}_SHR_U"]] = _int_shift(bits, "shr_u")
        table[Op[f"{i}_ROTL"]] = _int_binary(rotl, bits)
        table[Op[f"{i}_ROTR"]] = _int_binary(rotr, bits)

        table[Op[f"{f}_ABS"]] = _float_abs(bits)
        table[Op[f"{f}_NEG"]] = _float_neg(bits)
        table[Op[f"{f}_CEIL"]] = _float_unary(_integral(math.ceil), bits)
        table[Op[f"{f}_FLOOR"]] = _float_unary(_integral(math.floor), bits)
        table[Op[f"{f}_TRUNC"]] = _float_unary(_integral(math.trunc), bits)
        table[Op[f"{f}_NEAREST"]] = _float_unary(float_nearest, bits)
        table[Op[f"{f}_SQRT"]] = _float_unary(_float_sqrt, bits)
        table[Op[f"{f}_ADD"]] = _float_binary(operator.add, bits)
        table[Op[f"{f}_SUB"]] = _float_binary(operator.sub, bits)
        table[Op[f"{f}_MUL"]] = _float_binary(operator.mul, bits)
        table[Op[f"{f}_DIV"]] = _float_binary(_float_div, bits)
        table[Op[f"{f}_MIN"]] = _float_minmax(float_min, bits)
        table[Op[f"{f}_MAX"]] = _float_minmax(float_max, bits)
        table[Op[f"{f}_COPYSIGN"]] = _float_copysign(bits)

        for src in (32, 64):
            table[Op[f"{i}_TRUNC_S_F{src}"]] = _trunc_to_int(src, bits, True)
            table[Op[f"{i}_TRUNC_U_F{src}"]] = _trunc_to_int(src, bits, False)
            table[Op[f"{f}_CONVERT_S_I{src}"]] = _convert_int(src, bits, True)
            table[Op[f"{f}_CONVERT_U_I{src}"]] = _convert_int(src, bits, False)

    table[Op.I32_WRAP_I64] = _wrap_i64()
    table[Op.I64_EXTEND_S_I32] = _extend_i32(True)
    table[Op.I64_EXTEND_U_I32] = _extend_i32(False)
    table[Op.F32_DEMOTE_F64] = _demote()
    table[Op.F64_PROMOTE_F32] = _promote()
    table[Op.I32_REINTERPRET_F32] = _reinterpret(32)
    table[Op.I64_REINTERPRET_F64] = _reinterpret(64)
    table[Op.F32_REINTERPRET_I32] = _reinterpret(32)
    table[Op.F64_REINTERPRET_I64] = _reinterpret(64)
    return table


_NUMERIC: Dict[Op, _Handler] = _build_table()


def is_numeric(op: Op) -> bool:
    """Whether ``op`` works on the value stack alone and takes no argument."""
    return op in _NUMERIC


def execute_numeric(stack: ValueStack, op: Op) -> None:
    """Pop the operands of ``op`` from ``stack`` and push its result.

    Raises a ``Trap`` where the operation traps, and ``ValueError`` if
    ``op`` is not a numeric instruction.
    """
    handler = _NUMERIC.get(op)
    if handler is None:
        raise ValueError(f"{op} is not a numeric instruction")
    handler(stack)