"""
Ordered release buffer.

Results may resolve in any order; they are released strictly in reservation
order. A slot resolved with None releases nothing but unblocks the slots
behind it.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")

_UNRESOLVED = object()


class OrderedReleaseBuffer(Generic[T]):
    def __init__(self, release: Callable[[int, T], None]) -> None:
        self._release = release
        self._slots: OrderedDict[int, object] = OrderedDict()
        self._last_reserved: Optional[int] = None

    def reserve(self, key: int) -> None:
        """Reserve the next position. Keys must strictly increase."""
        if self._last_reserved is not None and key <= self._last_reserved:
            raise ValueError(f"reservation {key} is not after {self._last_reserved}")
        self._last_reserved = key
        self._slots[key] = _UNRESOLVED

    def resolve(self, key: int, payload: Optional[T]) -> list[int]:
        """
        Resolve a reserved position and release everything now unblocked.

        Returns:
            Keys released by this call (including those resolved with None).
        """
        if key not in self._slots:
            raise KeyError(f"{key} is not reserved or already released")
        if self._slots[key] is not _UNRESOLVED:
            raise ValueError(f"{key} already resolved")
        self._slots[key] = payload

        released: list[int] = []
        while self._slots:
            head, value = next(iter(self._slots.items()))
            if value is _UNRESOLVED:
                break
            del self._slots[head]
            released.append(head)
            if value is not None:
                self._release(head, value)  # type: ignore[arg-type]
        return released

    def pending(self) -> list[int]:
        """Reserved keys not yet released, in order."""
        return list(self._slots)

    def __len__(self) -> int:
        return len(self._slots)
