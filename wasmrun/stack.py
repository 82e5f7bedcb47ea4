"""Value and call stacks used by the interpreter, and helpers around them.

Values on the value stack are stored untyped, as 64-bit bit patterns:
a value narrower than 64 bits keeps its upper bits zero. The type is
restored at the boundary, where it is always known statically.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Sequence, Tuple

from .types import Signature, ValueType
from .values import RuntimeValue, Trap, TrapKind

DEFAULT_VALUE_STACK_LIMIT = 1024 * 1024
"""Maximum number of bytes on the value stack."""

DEFAULT_CALL_STACK_LIMIT = 64 * 1024
"""Maximum number of levels on the call stack."""

VALUE_SIZE = 8
"""Bytes taken by one untyped value on the value stack."""

_U32_MAX = 0xFFFFFFFF
_U64_MASK = (1 << 64) - 1


class Keep(Enum):
    """How many values a branch or return carries over the dropped ones."""

    NONE = 0
    SINGLE = 1

    @property
    def count(self) -> int:
        return self.value


@dataclass(frozen=True)
class DropKeep:
    """Discard ``drop`` values below the ``keep`` values on top of the stack."""

    drop: int
    keep: Keep = Keep.NONE


def to_raw(value: RuntimeValue) -> int:
    """The untyped 64-bit form of a runtime value."""
    return value.raw


def from_raw(raw: int, value_type: ValueType) -> RuntimeValue:
    """Give an untyped value its type back; upper bits beyond the type are cut."""
    return RuntimeValue(value_type, raw & ((1 << value_type.bits) - 1))


def effective_address(offset: int, address: int) -> int:
    """``offset + address`` as a 32-bit address; overflow traps."""
    result = offset + address
    if result > _U32_MAX:
        raise Trap(TrapKind.MEMORY_ACCESS_OUT_OF_BOUNDS)
    return result


def check_function_args(signature: Signature, args: Sequence[RuntimeValue]) -> None:
    """Raise an unexpected-signature trap unless ``args`` match the parameters."""
    if len(signature.params) != len(args):
        raise Trap(TrapKind.UNEXPECTED_SIGNATURE)
    if any(arg.value_type is not expected for expected, arg in zip(signature.params, args)):
        raise Trap(TrapKind.UNEXPECTED_SIGNATURE)


class ValueStack:
    """A fixed-capacity stack of untyped 64-bit values.

    Depths count from the top: depth 1 is the topmost value.
    """

    def __init__(self, capacity: int = DEFAULT_VALUE_STACK_LIMIT // VALUE_SIZE) -> None:
        if capacity < 0:
            raise ValueError(f"capacity must not be negative: {capacity}")
        self._buf: List[int] = [0] * capacity
        self._sp = 0

    @classmethod
    def _from_buffer(cls, buffer: List[int]) -> "ValueStack":
        stack = cls.__new__(cls)
        stack._buf = buffer
        stack._sp = 0
        return stack

    def __len__(self) -> int:
        return self._sp

    def __repr__(self) -> str:
        return f"ValueStack(len={self._sp}, capacity={len(self._buf)})"

    @property
    def capacity(self) -> int:
        """Maximum number of values the stack can hold."""
        return len(self._buf)

    def push(self, value: int) -> None:
        """Push a value; a full stack raises a stack-overflow trap."""
        if self._sp >= len(self._buf):
            raise Trap(TrapKind.STACK_OVERFLOW)
        self._buf[self._sp] = value & _U64_MASK
        self._sp += 1

    def pop(self) -> int:
        """Remove and return the top value."""
        if self._sp == 0:
            raise IndexError("pop from an empty value stack")
        self._sp -= 1
        return self._buf[self._sp]

    def pop_pair(self) -> Tuple[int, int]:
        """Pop two values, returned as (left, right); right was on top."""
        right = self.pop()
        left = self.pop()
        return left, right

    def pop_triple(self) -> Tuple[int, int, int]:
        """Pop three values, returned as (left, mid, right); right was on top."""
        right = self.pop()
        mid = self.pop()
        left = self.pop()
        return left, mid, right

    def _index(self, depth: int) -> int:
        if not 1 <= depth <= self._sp:
            raise IndexError(f"depth {depth} is outside a stack of {self._sp} values")
        return self._sp - depth

    def top(self) -> int:
        """The top value, left in place."""
        return self.pick(1)

    def pick(self, depth: int) -> int:
        """The value ``depth`` places from the top."""
        return self._buf[self._index(depth)]

    def put(self, depth: int, value: int) -> None:
        """Overwrite the value ``depth`` places from the top."""
        self._buf[self._index(depth)] = value & _U64_MASK

    def extend(self, count: int) -> None:
        """Push ``count`` zero values; exceeding the capacity traps."""
        if count < 0:
            raise ValueError(f"cannot extend by a negative count: {count}")
        end = self._sp + count
        if end > len(self._buf):
            raise Trap(TrapKind.STACK_OVERFLOW)
        self._buf[self._sp:end] = [0] * count
        self._sp = end

    def drop_keep(self, drop_keep: DropKeep) -> None:
        """Discard ``drop`` values lying below the kept top value, if any."""
        if drop_keep.keep is Keep.SINGLE:
            self.put(drop_keep.drop + 1, self.top())
        if drop_keep.drop > self._sp:
            raise IndexError(
                f"cannot drop {drop_keep.drop} values from a stack of {self._sp}"
            )
        self._sp -= drop_keep.drop


def prepare_function_args(signature: Signature, stack: ValueStack) -> List[RuntimeValue]:
    """Pop the arguments for ``signature`` off ``stack``, first parameter first."""
    args = [from_raw(stack.pop(), param) for param in reversed(signature.params)]
    args.reverse()
    return args


class CallStack:
    """Stack of call frames, bounded by a number of levels."""

    def __init__(self, limit: int = DEFAULT_CALL_STACK_LIMIT) -> None:
        self.limit = limit
        self._frames: List[Any] = []

    @classmethod
    def _from_buffer(cls, frames: List[Any], limit: int) -> "CallStack":
        stack = cls(limit)
        stack._frames = frames
        return stack

    def __len__(self) -> int:
        return len(self._frames)

    def __repr__(self) -> str:
        return f"CallStack(len={len(self._frames)}, limit={self.limit})"

    def push(self, frame: Any) -> None:
        self._frames.append(frame)

    def pop(self) -> Any:
        """Remove and return the top frame."""
        if not self._frames:
            raise IndexError("pop from an empty call stack")
        return self._frames.pop()

    def is_full(self) -> bool:
        """Whether one more nested call would reach the limit."""
        return len(self._frames) + 1 >= self.limit


class StackRecycler:
    """Hands out stacks, reusing the storage of stacks given back to it.

    ``value_stack_limit`` is in bytes, ``call_stack_limit`` in levels.
    """

    def __init__(
        self,
        value_stack_limit: int = DEFAULT_VALUE_STACK_LIMIT,
        call_stack_limit: int = DEFAULT_CALL_STACK_LIMIT,
    ) -> None:
        self.value_stack_limit = value_stack_limit
        self.call_stack_limit = call_stack_limit
        self._value_buf: Optional[List[int]] = None
        self._call_buf: Optional[List[Any]] = None

    def value_stack(self) -> ValueStack:
        """An empty value stack, reusing recycled storage when there is some."""
        if self._value_buf is not None:
            buffer, self._value_buf = self._value_buf, None
            return ValueStack._from_buffer(buffer)
        return ValueStack(self.value_stack_limit // VALUE_SIZE)

    def call_stack(self) -> CallStack:
        """An empty call stack, reusing recycled storage when there is some."""
        if self._call_buf is not None:
            frames, self._call_buf = self._call_buf, None
            return CallStack._from_buffer(frames, self.call_stack_limit)
        return CallStack(self.call_stack_limit)

    def recycle(self, value_stack: ValueStack, call_stack: CallStack) -> None:
        """Take back the storage of stacks that are no longer used."""
        call_stack._frames.clear()
        self._value_buf = value_stack._buf
        self._call_buf = call_stack._frames

    def clear(self) -> None:
        """Zero recycled value storage so no values leak to later runs."""
        if self._value_buf is not None:
            self._value_buf[:] = [0] * len(self._value_buf)