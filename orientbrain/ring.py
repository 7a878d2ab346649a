from __future__ import annotations

from typing import Generic, Iterator, List, Optional, TypeVar

T = TypeVar("T")


class RingBuffer(Generic[T]):
    """Fixed-capacity history, newest sample at index 1.

    Pushing into a full buffer overwrites the oldest slot. Indexed reads are
    1-based from the newest entry and return None outside [1, count].
    Not thread-safe; owned by a single update loop.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._capacity = int(capacity)
        self._slots: List[Optional[T]] = [None] * self._capacity
        self._head = 0  # next write slot
        self._count = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def push(self, value: T) -> None:
        self._slots[self._head] = value
        self._head = (self._head + 1) % self._capacity
        if self._count < self._capacity:
            self._count += 1

    def get(self, index: int) -> Optional[T]:
        if index < 1 or index > self._count:
            return None
        return self._slots[(self._head - index) % self._capacity]

    def get_latest(self) -> Optional[T]:
        return self.get(1)

    def count(self) -> int:
        return self._count

    def clear(self) -> None:
        self._slots = [None] * self._capacity
        self._head = 0
        self._count = 0

    def to_list(self) -> List[T]:
        """Newest-first snapshot."""
        return [self._slots[(self._head - i) % self._capacity] for i in range(1, self._count + 1)]  # type: ignore[misc]

    def __len__(self) -> int:
        return self._count

    def __iter__(self) -> Iterator[T]:
        return iter(self.to_list())

    def __repr__(self) -> str:
        return f"RingBuffer(capacity={self._capacity}, count={self._count})"
