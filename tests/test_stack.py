import pytest
from hypothesis import given, strategies as st

from wasmrun.stack import (
    DEFAULT_CALL_STACK_LIMIT,
    DEFAULT_VALUE_STACK_LIMIT,
    CallStack,
    DropKeep,
    Keep,
    StackRecycler,
    ValueStack,
    check_function_args,
    effective_address,
    from_raw,
    prepare_function_args,
    to_raw,
)
from wasmrun.types import Signature, ValueType
from wasmrun.values import Trap, TrapKind, f32, f64, i32, i64


def test_push_pop_order():
    stack = ValueStack(4)
    stack.push(1)
    stack.push(2)
    stack.push(3)
    assert len(stack) == 3
    assert stack.pop() == 3
    assert stack.pop_pair() == (1, 2)
    assert len(stack) == 0


def test_pop_triple_order():
    stack = ValueStack(4)
    for value in (10, 20, 30):
        stack.push(value)
    assert stack.pop_triple() == (10, 20, 30)


def test_push_overflow_traps():
    stack = ValueStack(2)
    stack.push(1)
    stack.push(2)
    with pytest.raises(Trap) as info:
        stack.push(3)
    assert info.value.kind is TrapKind.STACK_OVERFLOW
    assert len(stack) == 2


def test_pop_empty_raises():
    with pytest.raises(IndexError):
        ValueStack(1).pop()


def test_pick_put_and_top():
    stack = ValueStack(4)
    stack.push(5)
    stack.push(6)
    assert stack.top() == 6
    assert stack.pick(2) == 5
    stack.put(2, 9)
    assert stack.pop_pair() == (9, 6)


def test_pick_out_of_range():
    stack = ValueStack(4)
    stack.push(1)
    with pytest.raises(IndexError):
        stack.pick(2)
    with pytest.raises(IndexError):
        stack.pick(0)


def test_extend_pushes_zeros():
    stack = ValueStack(4)
    stack.push(7)
    stack.pop()
    stack.extend(2)
    assert len(stack) == 2
    assert stack.pop_pair() == (0, 0)


def test_extend_overflow_traps():
    stack = ValueStack(3)
    with pytest.raises(Trap) as info:
        stack.extend(4)
    assert info.value.kind is TrapKind.STACK_OVERFLOW


def test_drop_keep_single():
    stack = ValueStack(8)
    for value in (1, 2, 3, 4):
        stack.push(value)
    stack.drop_keep(DropKeep(drop=2, keep=Keep.SINGLE))
    assert len(stack) == 2
    assert stack.pop_pair() == (1, 4)


def test_drop_keep_none():
    stack = ValueStack(8)
    for value in (1, 2, 3):
        stack.push(value)
    stack.drop_keep(DropKeep(drop=2, keep=Keep.NONE))
    assert len(stack) == 1
    assert stack.top() == 1


def test_drop_keep_single_zero_drop_is_noop():
    stack = ValueStack(4)
    stack.push(1)
    stack.push(2)
    stack.drop_keep(DropKeep(drop=0, keep=Keep.SINGLE))
    assert stack.pop_pair() == (1, 2)


@pytest.mark.parametrize("keep,count,top", [(Keep.NONE, 0, 2), (Keep.SINGLE, 1, 3)])
def test_keep_counts_govern_drop_keep(keep, count, top):
    stack = ValueStack(4)
    for value in (1, 2, 3):
        stack.push(value)
    stack.drop_keep(DropKeep(drop=1, keep=keep))
    assert keep.count == count
    assert len(stack) == 2
    assert stack.top() == top


@given(st.integers(min_value=-(1 << 31), max_value=(1 << 31) - 1))
def test_i32_raw_round_trip(value):
    assert from_raw(to_raw(i32(value)), ValueType.I32) == i32(value)


@given(st.integers(min_value=-(1 << 63), max_value=(1 << 63) - 1))
def test_i64_raw_round_trip_through_stack(value):
    stack = ValueStack(1)
    stack.push(to_raw(i64(value)))
    assert from_raw(stack.pop(), ValueType.I64).value == value


def test_float_raw_round_trip():
    assert from_raw(to_raw(f64(1.5)), ValueType.F64).value == 1.5
    assert from_raw(to_raw(f32(-2.0)), ValueType.F32).value == -2.0


def test_from_raw_cuts_upper_bits():
    assert from_raw((1 << 40) | 5, ValueType.I32) == i32(5)


def test_effective_address():
    assert effective_address(4, 100) == 104
    assert effective_address(0, 0xFFFFFFFF) == 0xFFFFFFFF


def test_effective_address_overflow_traps():
    with pytest.raises(Trap) as info:
        effective_address(1, 0xFFFFFFFF)
    assert info.value.kind is TrapKind.MEMORY_ACCESS_OUT_OF_BOUNDS


def test_check_function_args_accepts_match():
    sig = Signature([ValueType.I32, ValueType.F64])
    check_function_args(sig, [i32(1), f64(2.0)])
    with pytest.raises(Trap) as info:
        check_function_args(sig, [f64(2.0), i32(1)])
    assert info.value.kind is TrapKind.UNEXPECTED_SIGNATURE


def test_check_function_args_wrong_count():
    sig = Signature([ValueType.I32])
    with pytest.raises(Trap) as info:
        check_function_args(sig, [])
    assert info.value.kind is TrapKind.UNEXPECTED_SIGNATURE


def test_prepare_function_args_order():
    sig = Signature([ValueType.I32, ValueType.I64])
    stack = ValueStack(4)
    stack.push(99)
    stack.push(to_raw(i32(-3)))
    stack.push(to_raw(i64(8)))
    args = prepare_function_args(sig, stack)
    assert args == [i32(-3), i64(8)]
    assert len(stack) == 1
    assert stack.top() == 99


def test_call_stack_push_pop_and_full():
    calls = CallStack(limit=3)
    assert not calls.is_full()
    calls.push("a")
    assert not calls.is_full()
    calls.push("b")
    assert calls.is_full()
    assert calls.pop() == "b"
    assert len(calls) == 1


def test_call_stack_pop_empty():
    with pytest.raises(IndexError):
        CallStack().pop()


def test_recycler_default_limits():
    recycler = StackRecycler()
    assert recycler.value_stack().capacity == DEFAULT_VALUE_STACK_LIMIT // 8
    assert recycler.call_stack().limit == DEFAULT_CALL_STACK_LIMIT


def test_recycler_limits_in_bytes():
    recycler = StackRecycler(value_stack_limit=16, call_stack_limit=5)
    stack = recycler.value_stack()
    stack.push(1)
    stack.push(2)
    with pytest.raises(Trap):
        stack.push(3)
    assert recycler.call_stack().limit == 5


def test_recycler_reuses_storage_empty():
    recycler = StackRecycler(value_stack_limit=32, call_stack_limit=10)
    values = recycler.value_stack()
    calls = recycler.call_stack()
    values.push(42)
    calls.push("frame")
    recycler.recycle(values, calls)
    reused_values = recycler.value_stack()
    reused_calls = recycler.call_stack()
    assert len(reused_values) == 0
    assert reused_values.capacity == values.capacity
    assert len(reused_calls) == 0
    assert reused_calls.limit == 10


def test_recycler_clear_then_extend_gives_zeros():
    recycler = StackRecycler(value_stack_limit=16)
    values = recycler.value_stack()
    values.push(7)
    values.push(8)
    recycler.recycle(values, recycler.call_stack())
    recycler.clear()
    reused = recycler.value_stack()
    reused.extend(2)
    assert reused.pop_pair() == (0, 0)