from abc import ABC, abstractmethod
from typing import Generic, Iterator, List, Optional, TypeVar

from .exceptions import ConfigurationError

T = TypeVar("T")
U = TypeVar("U")


class WindowAccumulator(ABC, Generic[T, U]):
    """
    Running reduction over the samples held by a SlidingWindowBuffer.

    Rotating, instead of accumulating, removes the oldest value when a new one
    is added, so the total only ever covers the most recent values.
    """

    @abstractmethod
    def accumulate(self, new_value: T) -> None: ...

    @abstractmethod
    def rotate(self, new_value: T, old_value: T) -> None: ...

    @abstractmethod
    def clear(self) -> None: ...

    @abstractmethod
    def total(self) -> U: ...


class SumAccumulator(WindowAccumulator[int, int]):
    def __init__(self) -> None:
        self._sum = 0

    def accumulate(self, new_value: int) -> None:
        self._sum += new_value

    def rotate(self, new_value: int, old_value: int) -> None:
        self._sum += new_value - old_value

    def clear(self) -> None:
        self._sum = 0

    def total(self) -> int:
        return self._sum


class AverageAccumulator(WindowAccumulator[int, float]):
    def __init__(self) -> None:
        self._sum = 0
        self._count = 0

    def accumulate(self, new_value: int) -> None:
        self._sum += new_value
        self._count += 1

    # The count is unchanged by a rotation, one value leaves and one arrives.
    def rotate(self, new_value: int, old_value: int) -> None:
        self._sum += new_value - old_value

    def clear(self) -> None:
        self._sum = 0
        self._count = 0

    def total(self) -> float:
        if self._count == 0:
            return 0.0
        return self._sum / self._count


class SlidingWindowBuffer(Generic[T, U]):
    """
    Buffer that stores the most recent N items added. If an item is added when
    the buffer is full, the oldest item is dropped from both the buffer and
    the accumulator.

    Items live in a fixed size list addressed through a head index, so adding
    never allocates.
    """

    def __init__(self, capacity: int, accumulator: WindowAccumulator[T, U], default: T = 0) -> None:
        if capacity < 1:
            raise ConfigurationError(f"SlidingWindowBuffer capacity must be at least 1, got {capacity=}")

        self._capacity = capacity
        self._accumulator = accumulator
        self._default = default
        self._items: List[Optional[T]] = [None] * capacity
        self._head = 0  # index of the oldest item
        self._count = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return self._count

    def __iter__(self) -> Iterator[T]:
        for i in range(self._count):
            yield self._items[(self._head + i) % self._capacity]

    def to_list(self) -> List[T]:
        return list(self)

    def clear(self) -> None:
        """
        Remove all items from the buffer. The accumulator is also cleared.
        """
        self._items = [None] * self._capacity
        self._head = 0
        self._count = 0
        self._accumulator.clear()

    def add(self, item: T) -> None:
        if self._count >= self._capacity:
            old_item = self._items[self._head]
            self._items[self._head] = item
            self._head = (self._head + 1) % self._capacity
            self._accumulator.rotate(item, old_item)
        else:
            self._items[(self._head + self._count) % self._capacity] = item
            self._count += 1
            self._accumulator.accumulate(item)

    def add_n(self, count: int) -> None:
        """
        Add count default valued items.

        Once count reaches the capacity every existing item would be pushed
        out anyway, so the buffer is cleared and refilled with exactly
        capacity items no matter how large count is.
        """
        if count <= 0:
            return

        if count >= self._capacity:
            self.clear()

        for _ in range(min(count, self._capacity)):
            self.add(self._default)

    def accumulated_value(self) -> U:
        return self._accumulator.total()


__all__ = ["WindowAccumulator", "SumAccumulator", "AverageAccumulator", "SlidingWindowBuffer"]
