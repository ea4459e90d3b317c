"""Growable sequence backing token and argument lists."""
from __future__ import annotations

from typing import Generic, Iterable, Iterator, List, Optional, TypeVar

from errors import AllocationFailure

T = TypeVar("T")

DEFAULT_CAPACITY = 16


class GrowableSequence(Generic[T]):
    """Ordered container with an explicit capacity that doubles when full.

    The sequence never owns its elements: ``release`` drops the backing
    store without touching what was stored in it.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._initial_capacity = capacity
        self._data: Optional[List[Optional[T]]] = [None] * capacity
        self._len = 0

    @classmethod
    def from_iterable(cls, items: Iterable[T], capacity: int = DEFAULT_CAPACITY) -> "GrowableSequence[T]":
        seq: GrowableSequence[T] = cls(capacity)
        for item in items:
            seq.append(item)
        return seq

    @property
    def capacity(self) -> int:
        return len(self._data) if self._data is not None else 0

    @property
    def released(self) -> bool:
        return self._data is None

    def __len__(self) -> int:
        return self._len

    def _check_index(self, index: int) -> int:
        if index < 0:
            index += self._len
        if not 0 <= index < self._len:
            raise IndexError("sequence index out of range")
        return index

    def __getitem__(self, index: int) -> T:
        index = self._check_index(index)
        assert self._data is not None
        return self._data[index]  # type: ignore[return-value]

    def __setitem__(self, index: int, value: T) -> None:
        index = self._check_index(index)
        assert self._data is not None
        self._data[index] = value

    def __iter__(self) -> Iterator[T]:
        for i in range(self._len):
            yield self._data[i]  # type: ignore[index,misc]

    def __repr__(self) -> str:
        return f"GrowableSequence({self.to_list()!r}, capacity={self.capacity})"

    def append(self, item: T) -> None:
        if self._data is None:
            raise AllocationFailure("append to a released sequence")
        if self._len == len(self._data):
            self._grow()
        self._data[self._len] = item
        self._len += 1

    def _grow(self) -> None:
        assert self._data is not None
        try:
            grown: List[Optional[T]] = self._data + [None] * len(self._data)
        except MemoryError as e:
            # The old store is untouched; the caller sees the same contents.
            raise AllocationFailure(f"cannot grow sequence beyond {len(self._data)} elements") from e
        self._data = grown

    def remove(self, index: int, count: int = 1) -> None:
        """Splice ``count`` elements out at ``index``, shifting the tail left."""
        if count <= 0:
            return
        index = self._check_index(index)
        end = min(index + count, self._len)
        assert self._data is not None
        tail = self._data[end:self._len]
        self._data[index:index + len(tail)] = tail
        new_len = index + len(tail)
        for i in range(new_len, self._len):
            self._data[i] = None
        self._len = new_len

    def to_list(self) -> List[T]:
        if self._data is None:
            return []
        return list(self._data[:self._len])  # type: ignore[arg-type]

    def release(self) -> None:
        """Drop the backing store. Safe to call on an empty or released sequence."""
        self._data = None
        self._len = 0
