"""Value types, function signatures and descriptors of imported entities."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional, Tuple


class ValueType(Enum):
    """Type of a runtime value."""

    I32 = "i32"
    I64 = "i64"
    F32 = "f32"
    F64 = "f64"

    @property
    def bits(self) -> int:
        """Width of the type in bits."""
        return 32 if self in (ValueType.I32, ValueType.F32) else 64

    @property
    def is_float(self) -> bool:
        """Whether the type is a floating point type."""
        return self in (ValueType.F32, ValueType.F64)

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Signature:
    """Parameter types and optional return type of a function.

    Two signatures are equal when their parameters and return types are equal.
    """

    params: Tuple[ValueType, ...] = field(default=())
    return_type: Optional[ValueType] = None

    def __init__(
        self,
        params: Iterable[ValueType] = (),
        return_type: Optional[ValueType] = None,
    ) -> None:
        params = tuple(params)
        for param in params:
            if not isinstance(param, ValueType):
                raise TypeError(f"parameter type must be a ValueType, not {param!r}")
        if return_type is not None and not isinstance(return_type, ValueType):
            raise TypeError(f"return type must be a ValueType, not {return_type!r}")
        object.__setattr__(self, "params", params)
        object.__setattr__(self, "return_type", return_type)

    def __str__(self) -> str:
        params = ", ".join(str(p) for p in self.params)
        result = str(self.return_type) if self.return_type else "()"
        return f"({params}) -> {result}"


@dataclass(frozen=True)
class GlobalDescriptor:
    """Description of an imported global variable."""

    value_type: ValueType
    mutable: bool = False

    @property
    def is_mutable(self) -> bool:
        return self.mutable


@dataclass(frozen=True)
class TableDescriptor:
    """Description of an imported table."""

    initial: int
    maximum: Optional[int] = None


@dataclass(frozen=True)
class MemoryDescriptor:
    """Description of an imported linear memory; sizes are in pages."""

    initial: int
    maximum: Optional[int] = None