import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from wasmrun.interpreter import (
    PAGE_SIZE,
    Function,
    HostFunction,
    Instance,
    Interpreter,
    InterpreterState,
)
from wasmrun.ops import Instruction, Op, Target
from wasmrun.stack import DropKeep, Keep, StackRecycler
from wasmrun.table import TableInstance
from wasmrun.types import Signature, ValueType
from wasmrun.values import Trap, TrapKind, i32, i64

I32, I64 = ValueType.I32, ValueType.I64


def ins(op, arg=None):
    return Instruction(op, arg)


def ret(drop, keep=Keep.SINGLE):
    return Instruction(Op.RETURN, DropKeep(drop, keep))


def target(pc, drop=0, keep=Keep.NONE):
    return Target(pc, DropKeep(drop, keep))


class Externals:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    def invoke_index(self, index, args):
        self.calls.append((index, list(args)))
        if self.error is not None:
            raise self.error
        return self.result


def single(signature, code, locals=0, **instance_kwargs):
    func = Function(signature, code, locals)
    Instance(functions=[func], **instance_kwargs)
    return func


ADD = [ins(Op.GET_LOCAL, 2), ins(Op.GET_LOCAL, 2), ins(Op.I32_ADD), ret(2)]


def test_add_params():
    func = single(Signature([I32, I32], I32), ADD)
    interp = Interpreter(func, [i32(2), i32(3)])
    assert interp.start_execution(None) == i32(5)
    assert interp.state is InterpreterState.STARTED
    assert len(interp.value_stack) == 0


def test_no_result_returns_none():
    func = single(Signature([I32]), [ret(1, Keep.NONE)])
    assert Interpreter(func, [i32(1)]).start_execution(None) is None


def test_locals_start_at_zero():
    func = single(Signature([], I32), [ins(Op.GET_LOCAL, 1), ret(1)], locals=1)
    assert Interpreter(func).start_execution(None) == i32(0)


def test_unreachable_traps():
    func = single(Signature(), [ins(Op.UNREACHABLE)])
    with pytest.raises(Trap) as err:
        Interpreter(func).start_execution(None)
    assert err.value.kind is TrapKind.UNREACHABLE


def test_division_by_zero_traps():
    code = [ins(Op.GET_LOCAL, 2), ins(Op.GET_LOCAL, 2), ins(Op.I32_DIV_S), ret(2)]
    func = single(Signature([I32, I32], I32), code)
    with pytest.raises(Trap) as err:
        Interpreter(func, [i32(1), i32(0)]).start_execution(None)
    assert err.value.kind is TrapKind.DIVISION_BY_ZERO


def test_cannot_start_twice():
    func = single(Signature([I32]), [ret(1, Keep.NONE)])
    interp = Interpreter(func, [i32(1)])
    interp.start_execution(None)
    with pytest.raises(RuntimeError):
        interp.start_execution(None)


def test_resume_without_host_trap_fails():
    func = single(Signature(), [ret(0, Keep.NONE)])
    with pytest.raises(RuntimeError):
        Interpreter(func).resume_execution(None, None)


def test_wrong_arguments_rejected():
    func = single(Signature([I32, I32], I32), ADD)
    with pytest.raises(Trap) as err:
        Interpreter(func, [i32(1), i64(2)])
    assert err.value.kind is TrapKind.UNEXPECTED_SIGNATURE


def test_arguments_overflow_small_value_stack():
    func = single(Signature([I32, I32], I32), ADD)
    recycler = StackRecycler(value_stack_limit=8)
    with pytest.raises(Trap) as err:
        Interpreter(func, [i32(1), i32(2)], recycler)
    assert err.value.kind is TrapKind.STACK_OVERFLOW


def test_unbounded_recursion_overflows_call_stack():
    func = Function(Signature(), [ins(Op.CALL, 0), ret(0, Keep.NONE)])
    Instance(functions=[func])
    recycler = StackRecycler(call_stack_limit=10)
    with pytest.raises(Trap) as err:
        Interpreter(func, (), recycler).start_execution(None)
    assert err.value.kind is TrapKind.STACK_OVERFLOW


def host_caller(host_sig=Signature([I32], I32)):
    caller = Function(
        Signature([I32], I32), [ins(Op.GET_LOCAL, 1), ins(Op.CALL, 1), ret(1)]
    )
    Instance(functions=[caller, HostFunction(host_sig, index=3)])
    return caller


def test_host_call_receives_arguments_and_returns():
    externals = Externals(result=i32(9))
    result = Interpreter(host_caller(), [i32(4)]).start_execution(externals)
    assert result == i32(9)
    assert externals.calls == [(3, [i32(4)])]


def test_host_result_of_wrong_type_traps():
    externals = Externals(result=i64(9))
    with pytest.raises(Trap) as err:
        Interpreter(host_caller(), [i32(4)]).start_execution(externals)
    assert err.value.kind is TrapKind.UNEXPECTED_SIGNATURE


def test_host_trap_is_resumable():
    interp = Interpreter(host_caller(), [i32(4)])
    with pytest.raises(Trap) as err:
        interp.start_execution(Externals(error=Trap(TrapKind.HOST)))
    assert err.value.is_host
    assert interp.state is InterpreterState.RESUMABLE
    assert interp.resume_type is I32
    assert interp.resume_execution(i32(7), Externals()) == i32(7)
    assert interp.state is InterpreterState.STARTED


def test_resume_with_wrong_type_traps():
    interp = Interpreter(host_caller(), [i32(4)])
    with pytest.raises(Trap):
        interp.start_execution(Externals(error=Trap(TrapKind.HOST)))
    with pytest.raises(Trap) as err:
        interp.resume_execution(i64(7), Externals())
    assert err.value.kind is TrapKind.UNEXPECTED_SIGNATURE
    assert interp.state is InterpreterState.RESUMABLE


def test_host_exception_becomes_host_trap():
    problem = ValueError("bad input")
    interp = Interpreter(host_caller(), [i32(4)])
    with pytest.raises(Trap) as err:
        interp.start_execution(Externals(error=problem))
    assert err.value.kind is TrapKind.HOST
    assert err.value.host_error is problem
    assert interp.state is InterpreterState.RESUMABLE


def test_non_host_trap_is_not_resumable():
    interp = Interpreter(host_caller(), [i32(4)])
    with pytest.raises(Trap):
        interp.start_execution(Externals(error=Trap(TrapKind.UNREACHABLE)))
    assert interp.state is InterpreterState.STARTED


MEMORY_ROUND_TRIP = [
    ins(Op.GET_LOCAL, 2),
    ins(Op.GET_LOCAL, 2),
    ins(Op.I64_STORE, 0),
    ins(Op.GET_LOCAL, 2),
    ins(Op.I64_LOAD, 0),
    ret(2),
]


@settings(max_examples=30)
@given(
    address=st.integers(0, PAGE_SIZE - 8),
    value=st.integers(-(1 << 63), (1 << 63) - 1),
)
def test_memory_store_load_round_trip(address, value):
    memory = bytearray(PAGE_SIZE)
    func = single(Signature([I32, I64], I64), MEMORY_ROUND_TRIP, memory=memory)
    result = Interpreter(func, [i32(address), i64(value)]).start_execution(None)
    assert result == i64(value)
    assert int.from_bytes(memory[address:address + 8], "little", signed=True) == value


@pytest.mark.parametrize("address", [PAGE_SIZE - 7, 0xFFFFFFFF])
def test_memory_out_of_bounds_traps(address):
    func = single(
        Signature([I32, I64], I64), MEMORY_ROUND_TRIP, memory=bytearray(PAGE_SIZE)
    )
    with pytest.raises(Trap) as err:
        Interpreter(func, [i32(address), i64(1)]).start_execution(None)
    assert err.value.kind is TrapKind.MEMORY_ACCESS_OUT_OF_BOUNDS


def byte_load(op):
    return [
        ins(Op.I32_CONST, 0),
        ins(Op.GET_LOCAL, 2),
        ins(Op.I32_STORE8, 0),
        ins(Op.I32_CONST, 0),
        ins(op, 0),
        ret(1),
    ]


def test_load8_signed_and_unsigned():
    signed = single(Signature([I32], I32), byte_load(Op.I32_LOAD8_S), memory=bytearray(PAGE_SIZE))
    unsigned = single(Signature([I32], I32), byte_load(Op.I32_LOAD8_U), memory=bytearray(PAGE_SIZE))
    assert Interpreter(signed, [i32(0xFF)]).start_execution(None) == i32(-1)
    assert Interpreter(unsigned, [i32(0xFF)]).start_execution(None) == i32(0xFF)


def test_grow_memory():
    memory = bytearray(PAGE_SIZE)
    code = [ins(Op.GET_LOCAL, 1), ins(Op.GROW_MEMORY), ret(1)]
    func = single(Signature([I32], I32), code, memory=memory, memory_maximum=3)
    assert Interpreter(func, [i32(1)]).start_execution(None) == i32(1)
    assert len(memory) == 2 * PAGE_SIZE
    assert Interpreter(func, [i32(5)]).start_execution(None) == i32(0xFFFFFFFF)
    assert len(memory) == 2 * PAGE_SIZE


def test_current_memory_reports_pages():
    func = single(
        Signature([], I32), [ins(Op.CURRENT_MEMORY), ret(0)], memory=bytearray(2 * PAGE_SIZE)
    )
    assert Interpreter(func).start_execution(None) == i32(2)


def test_globals_get_and_set():
    code = [
        ins(Op.GET_GLOBAL, 0),
        ins(Op.I32_CONST, 1),
        ins(Op.I32_ADD),
        ins(Op.SET_GLOBAL, 0),
        ins(Op.GET_GLOBAL, 0),
        ret(0),
    ]
    func = Function(Signature([], I32), code)
    instance = Instance(functions=[func], globals=[i32(41)])
    assert Interpreter(func).start_execution(None) == i32(42)
    assert instance.globals[0] == i32(42)


COUNT_LOOP = [
    ins(Op.GET_LOCAL, 1),
    ins(Op.I32_EQZ),
    ins(Op.BR_IF_NEZ, target(12)),
    ins(Op.GET_LOCAL, 1),
    ins(Op.I32_CONST, 1),
    ins(Op.I32_SUB),
    ins(Op.SET_LOCAL, 1),
    ins(Op.GET_GLOBAL, 0),
    ins(Op.I32_CONST, 1),
    ins(Op.I32_ADD),
    ins(Op.SET_GLOBAL, 0),
    ins(Op.BR, target(0)),
    ins(Op.GET_GLOBAL, 0),
    ret(1),
]


@settings(max_examples=20)
@given(n=st.integers(0, 40))
def test_loop_runs_n_times(n):
    func = Function(Signature([I32], I32), COUNT_LOOP)
    instance = Instance(functions=[func], globals=[i32(0)])
    assert Interpreter(func, [i32(n)]).start_execution(None) == i32(n)
    assert instance.globals[0] == i32(n)


BR_TABLE = [
    ins(Op.GET_LOCAL, 1),
    ins(Op.BR_TABLE, (target(2), target(4), target(6))),
    ins(Op.I32_CONST, 10),
    ret(1),
    ins(Op.I32_CONST, 20),
    ret(1),
    ins(Op.I32_CONST, 30),
    ret(1),
]


@pytest.mark.parametrize(
    "index, expected", [(0, 10), (1, 20), (2, 30), (99, 30), (0xFFFFFFFF, 30)]
)
def test_br_table_selects_target_or_default(index, expected):
    func = single(Signature([I32], I32), BR_TABLE)
    assert Interpreter(func, [i32(index)]).start_execution(None) == i32(expected)


@pytest.mark.parametrize("condition, expected", [(1, 10), (0, 20), (-1, 10)])
def test_select(condition, expected):
    code = [
        ins(Op.I32_CONST, 10),
        ins(Op.I32_CONST, 20),
        ins(Op.GET_LOCAL, 3),
        ins(Op.SELECT),
        ret(1),
    ]
    func = single(Signature([I32], I32), code)
    assert Interpreter(func, [i32(condition)]).start_execution(None) == i32(expected)


def indirect(signature_index=0):
    caller = Function(
        Signature([I32], I32),
        [ins(Op.GET_LOCAL, 1), ins(Op.CALL_INDIRECT, signature_index), ret(1)],
    )
    callee = Function(Signature([], I32), [ins(Op.I32_CONST, 77), ret(0)])
    table = TableInstance(2)
    table.set(0, callee)
    Instance(
        functions=[caller, callee],
        table=table,
        types=[Signature([], I32), Signature([I64])],
    )
    return caller


def test_call_indirect_calls_table_entry():
    assert Interpreter(indirect(), [i32(0)]).start_execution(None) == i32(77)


@pytest.mark.parametrize(
    "index, kind",
    [(1, TrapKind.ELEM_UNINITIALIZED), (5, TrapKind.TABLE_ACCESS_OUT_OF_BOUNDS)],
)
def test_call_indirect_traps(index, kind):
    with pytest.raises(Trap) as err:
        Interpreter(indirect(), [i32(index)]).start_execution(None)
    assert err.value.kind is kind


def test_call_indirect_signature_mismatch():
    with pytest.raises(Trap) as err:
        Interpreter(indirect(signature_index=1), [i32(0)]).start_execution(None)
    assert err.value.kind is TrapKind.UNEXPECTED_SIGNATURE


def test_host_function_cannot_be_interpreted():
    with pytest.raises(TypeError):
        Interpreter(HostFunction(Signature(), 0))


def test_unbound_function_rejected():
    with pytest.raises(RuntimeError):
        Interpreter(Function(Signature(), [ret(0, Keep.NONE)]))


def test_stacks_can_be_recycled():
    func = single(Signature([I32, I32], I32), ADD)
    recycler = StackRecycler(value_stack_limit=64)
    first = Interpreter(func, [i32(2), i32(3)], recycler)
    first.start_execution(None)
    recycler.recycle(first.value_stack, first.call_stack)
    second = Interpreter(func, [i32(2), i32(3)], recycler)
    assert second.value_stack.capacity == 8
    assert second.start_execution(None) == i32(5)