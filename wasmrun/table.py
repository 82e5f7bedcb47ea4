"""Tables of function references that code can call through by index."""

from __future__ import annotations

from typing import Any, List, Optional

_U32_MAX = 0xFFFFFFFF


class TableError(Exception):
    """A table was created, grown or accessed out of its limits."""


class TableInstance:
    """A resizable array of optional function references.

    The table starts with ``initial_size`` empty elements and may grow up
    to ``maximum_size`` elements, or without a bound when that is None.
    """

    def __init__(self, initial_size: int, maximum_size: Optional[int] = None) -> None:
        if initial_size < 0 or initial_size > _U32_MAX:
            raise TableError(f"initial size {initial_size} is out of range")
        if maximum_size is not None:
            if maximum_size < 0 or maximum_size > _U32_MAX:
                raise TableError(f"maximum size {maximum_size} is out of range")
            if initial_size > maximum_size:
                raise TableError(
                    f"maximum limit {maximum_size} is less than minimum {initial_size}"
                )
        self.initial_size = initial_size
        self.maximum_size = maximum_size
        self._elements: List[Optional[Any]] = [None] * initial_size

    def __repr__(self) -> str:
        return (
            f"TableInstance(initial={self.initial_size}, maximum={self.maximum_size}, "
            f"len={len(self._elements)})"
        )

    def __len__(self) -> int:
        return len(self._elements)

    def current_size(self) -> int:
        """Number of elements the table holds now."""
        return len(self._elements)

    def grow(self, by: int) -> None:
        """Add ``by`` empty elements, within the maximum size."""
        if by < 0:
            raise ValueError(f"cannot grow a table by a negative amount: {by}")
        maximum = _U32_MAX if self.maximum_size is None else self.maximum_size
        current = self.current_size()
        new_size = current + by
        if new_size > _U32_MAX or new_size > maximum:
            raise TableError(
                f"Trying to grow table by {by} items when there are already {current} items"
            )
        self._elements.extend([None] * by)

    def get(self, offset: int) -> Optional[Any]:
        """The element at ``offset``; None if it was never set."""
        if not 0 <= offset < len(self._elements):
            raise TableError(
                f"trying to read table item with index {offset} "
                f"when there are only {len(self._elements)} items"
            )
        return self._elements[offset]

    def set(self, offset: int, value: Optional[Any]) -> None:
        """Store ``value`` (or None to clear) at ``offset``."""
        if not 0 <= offset < len(self._elements):
            raise TableError(
                f"trying to update table item with index {offset} "
                f"when there are only {len(self._elements)} items"
            )
        self._elements[offset] = value