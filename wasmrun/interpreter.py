"""Interpreter that runs compiled functions over a value stack and a call stack."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .ops import Instruction, Op, execute_numeric, is_numeric
from .stack import (
    CallStack,
    StackRecycler,
    ValueStack,
    check_function_args,
    effective_address,
    from_raw,
    prepare_function_args,
    to_raw,
)
from .table import TableError, TableInstance
from .types import Signature, ValueType
from .values import RuntimeValue, Trap, TrapKind

PAGE_SIZE = 65536
"""Bytes in one page of linear memory."""

MAX_PAGES = 65536
"""Largest number of pages a linear memory can have."""

_U32 = 0xFFFFFFFF

# op -> (bytes read, sign-extend, width of the result in bits)
_LOADS: Dict[Op, Tuple[int, bool, int]] = {
    Op.I32_LOAD: (4, False, 32),
    Op.I64_LOAD: (8, False, 64),
    Op.F32_LOAD: (4, False, 32),
    Op.F64_LOAD: (8, False, 64),
    Op.I32_LOAD8_S: (1, True, 32),
    Op.I32_LOAD8_U: (1, False, 32),
    Op.I32_LOAD16_S: (2, True, 32),
    Op.I32_LOAD16_U: (2, False, 32),
    Op.I64_LOAD8_S: (1, True, 64),
    Op.I64_LOAD8_U: (1, False, 64),
    Op.I64_LOAD16_S: (2, True, 64),
    Op.I64_LOAD16_U: (2, False, 64),
    Op.I64_LOAD32_S: (4, True, 64),
    Op.I64_LOAD32_U: (4, False, 64),
}

# op -> bytes written (the low bytes of the value)
_STORES: Dict[Op, int] = {
    Op.I32_STORE: 4,
    Op.I64_STORE: 8,
    Op.F32_STORE: 4,
    Op.F64_STORE: 8,
    Op.I32_STORE8: 1,
    Op.I32_STORE16: 2,
    Op.I64_STORE8: 1,
    Op.I64_STORE16: 2,
    Op.I64_STORE32: 4,
}


class InterpreterState(Enum):
    """Where an interpreter is in its run, with respect to pausing and resuming."""

    INITIALIZED = "initialized"
    STARTED = "started"
    RESUMABLE = "resumable"


@dataclass(eq=False)
class Function:
    """A function defined by compiled code.

    ``locals`` is the number of local variables besides the parameters.
    The function gets its ``instance`` when an ``Instance`` holding it is made.
    """

    signature: Signature
    code: Sequence[Instruction]
    locals: int = 0
    instance: Optional["Instance"] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        self.code = tuple(self.code)
        if self.locals < 0:
            raise ValueError(f"number of locals must not be negative: {self.locals}")


@dataclass(frozen=True)
class HostFunction:
    """A function provided by the host, called through ``externals.invoke_index``."""

    signature: Signature
    index: int


AnyFunction = Union[Function, HostFunction]


@dataclass(eq=False)
class Instance:
    """The entities that running code reaches by index.

    ``memory`` is the linear memory, a whole number of pages long, which may
    grow up to ``memory_maximum`` pages. ``types`` are the signatures that
    indirect calls are checked against.
    """

    functions: List[AnyFunction] = field(default_factory=list)
    globals: List[RuntimeValue] = field(default_factory=list)
    memory: Optional[bytearray] = None
    memory_maximum: Optional[int] = None
    table: Optional[TableInstance] = None
    types: List[Signature] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.memory is not None and len(self.memory) % PAGE_SIZE:
            raise ValueError("memory size must be a whole number of pages")
        for func in self.functions:
            if isinstance(func, Function):
                func.instance = self

    def _memory(self) -> bytearray:
        if self.memory is None:
            raise RuntimeError("instance has no linear memory")
        return self.memory

    def _grow_memory(self, pages: int) -> int:
        memory = self._memory()
        current = len(memory) // PAGE_SIZE
        limit = MAX_PAGES if self.memory_maximum is None else min(self.memory_maximum, MAX_PAGES)
        if current + pages > limit:
            return _U32
        memory.extend(bytes(pages * PAGE_SIZE))
        return current


@dataclass(eq=False)
class _Frame:
    function: Function
    position: int = 0
    initialized: bool = False

    def __post_init__(self) -> None:
        if self.function.instance is None:
            raise RuntimeError("function is not bound to an instance")

    @property
    def instance(self) -> Instance:
        return self.function.instance  # type: ignore[return-value]


class Interpreter:
    """Runs one call of a function, possibly pausing on a host trap and resuming."""

    def __init__(
        self,
        func: Function,
        args: Sequence[RuntimeValue] = (),
        recycler: Optional[StackRecycler] = None,
    ) -> None:
        if not isinstance(func, Function):
            raise TypeError("only functions defined by code can be interpreted")
        args = tuple(args)
        check_function_args(func.signature, args)
        if recycler is None:
            recycler = StackRecycler()
        self.value_stack: ValueStack = recycler.value_stack()
        for arg in args:
            self.value_stack.push(to_raw(arg))
        self.call_stack: CallStack = recycler.call_stack()
        self.call_stack.push(_Frame(func))
        self.return_type: Optional[ValueType] = func.signature.return_type
        self.state = InterpreterState.INITIALIZED
        self.resume_type: Optional[ValueType] = None

    def start_execution(self, externals: Any) -> Optional[RuntimeValue]:
        """Run the function and return its result, if it has one."""
        if self.state is not InterpreterState.INITIALIZED:
            raise RuntimeError("the interpreter has already been started")
        self.state = InterpreterState.STARTED
        self._run(externals)
        return self._finish()

    def resume_execution(
        self, return_value: Optional[RuntimeValue], externals: Any
    ) -> Optional[RuntimeValue]:
        """Continue after a host trap, with the value the host call should have returned."""
        if self.state is not InterpreterState.RESUMABLE:
            raise RuntimeError("the interpreter is not resumable")
        actual = None if return_value is None else return_value.value_type
        if actual is not self.resume_type:
            raise Trap(TrapKind.UNEXPECTED_SIGNATURE)
        self.state = InterpreterState.STARTED
        self.resume_type = None
        if return_value is not None:
            self.value_stack.push(to_raw(return_value))
        self._run(externals)
        return self._finish()

    def _finish(self) -> Optional[RuntimeValue]:
        result = None
        if self.return_type is not None:
            result = from_raw(self.value_stack.pop(), self.return_type)
        if len(self.value_stack):
            raise RuntimeError("value stack is not empty after execution")
        return result

    def _run(self, externals: Any) -> None:
        while True:
            frame = self.call_stack.pop()
            if not frame.initialized:
                self.value_stack.extend(frame.function.locals)
                frame.initialized = True

            nested = self._run_function(frame)
            if nested is None:
                if not len(self.call_stack):
                    return
                continue

            if self.call_stack.is_full():
                raise Trap(TrapKind.STACK_OVERFLOW)

            if isinstance(nested, Function):
                self.call_stack.push(frame)
                self.call_stack.push(_Frame(nested))
                continue

            args = prepare_function_args(nested.signature, self.value_stack)
            self.call_stack.push(frame)
            expected = nested.signature.return_type
            try:
                result = self._invoke_host(nested, args, externals)
            except Trap as trap:
                if trap.is_host:
                    self.state = InterpreterState.RESUMABLE
                    self.resume_type = expected
                raise
            actual = None if result is None else result.value_type
            if actual is not expected:
                raise Trap(TrapKind.UNEXPECTED_SIGNATURE)
            if result is not None:
                self.value_stack.push(to_raw(result))

    @staticmethod
    def _invoke_host(
        func: HostFunction, args: List[RuntimeValue], externals: Any
    ) -> Optional[RuntimeValue]:
        try:
            return externals.invoke_index(func.index, args)
        except Trap:
            raise
        except Exception as error:
            raise Trap(TrapKind.HOST, error) from error

    def _run_function(self, frame: _Frame) -> Optional[AnyFunction]:
        """Run ``frame`` until it returns (None) or calls another function."""
        stack = self.value_stack
        code = frame.function.code
        instance = frame.instance
        pc = frame.position

        while True:
            if pc >= len(code):
                raise RuntimeError("ran out of instructions")
            instruction = code[pc]
            pc += 1
            op = instruction.op
            arg = instruction.arg

            if is_numeric(op):
                execute_numeric(stack, op)
            elif op in _LOADS:
                self._load(instance, op, arg)
            elif op in _STORES:
                self._store(instance, op, arg)
            elif op is Op.BR:
                pc = arg.dst_pc
                stack.drop_keep(arg.drop_keep)
            elif op is Op.BR_IF_EQZ or op is Op.BR_IF_NEZ:
                condition = stack.pop() != 0
                if condition == (op is Op.BR_IF_NEZ):
                    pc = arg.dst_pc
                    stack.drop_keep(arg.drop_keep)
            elif op is Op.BR_TABLE:
                index = stack.pop() & _U32
                target = arg[min(index, len(arg) - 1)]
                pc = target.dst_pc
                stack.drop_keep(target.drop_keep)
            elif op is Op.RETURN:
                stack.drop_keep(arg)
                return None
            elif op is Op.CALL:
                frame.position = pc
                return instance.functions[arg]
            elif op is Op.CALL_INDIRECT:
                func = self._indirect_target(instance, arg)
                frame.position = pc
                return func
            elif op is Op.UNREACHABLE:
                raise Trap(TrapKind.UNREACHABLE)
            elif op is Op.DROP:
                stack.pop()
            elif op is Op.SELECT:
                left, mid, right = stack.pop_triple()
                stack.push(left if right != 0 else mid)
            elif op is Op.GET_LOCAL:
                stack.push(stack.pick(arg))
            elif op is Op.SET_LOCAL:
                value = stack.pop()
                stack.put(arg, value)
            elif op is Op.TEE_LOCAL:
                stack.put(arg, stack.top())
            elif op is Op.GET_GLOBAL:
                stack.push(to_raw(instance.globals[arg]))
            elif op is Op.SET_GLOBAL:
                value = stack.pop()
                current = instance.globals[arg]
                instance.globals[arg] = from_raw(value, current.value_type)
            elif op is Op.CURRENT_MEMORY:
                stack.push(len(instance._memory()) // PAGE_SIZE)
            elif op is Op.GROW_MEMORY:
                pages = stack.pop() & _U32
                stack.push(instance._grow_memory(pages))
            elif op in (Op.I32_CONST, Op.I64_CONST, Op.F32_CONST, Op.F64_CONST):
                stack.push(arg)
            else:
                raise RuntimeError(f"unsupported instruction: {op}")

    def _load(self, instance: Instance, op: Op, offset: int) -> None:
        size, signed, result_bits = _LOADS[op]
        address = effective_address(offset, self.value_stack.pop() & _U32)
        memory = instance._memory()
        if address + size > len(memory):
            raise Trap(TrapKind.MEMORY_ACCESS_OUT_OF_BOUNDS)
        value = int.from_bytes(memory[address:address + size], "little", signed=signed)
        self.value_stack.push(value & ((1 << result_bits) - 1))

    def _store(self, instance: Instance, op: Op, offset: int) -> None:
        size = _STORES[op]
        value = self.value_stack.pop()
        address = effective_address(offset, self.value_stack.pop() & _U32)
        memory = instance._memory()
        if address + size > len(memory):
            raise Trap(TrapKind.MEMORY_ACCESS_OUT_OF_BOUNDS)
        memory[address:address + size] = (value & ((1 << (8 * size)) - 1)).to_bytes(
            size, "little"
        )

    def _indirect_target(self, instance: Instance, signature_index: int) -> AnyFunction:
        index = self.value_stack.pop() & _U32
        if instance.table is None:
            raise RuntimeError("instance has no table")
        try:
            func = instance.table.get(index)
        except TableError:
            raise Trap(TrapKind.TABLE_ACCESS_OUT_OF_BOUNDS) from None
        if func is None:
            raise Trap(TrapKind.ELEM_UNINITIALIZED)
        if instance.types[signature_index] != func.signature:
            raise Trap(TrapKind.UNEXPECTED_SIGNATURE)
        return func