"""Ordered, deduplicated collection of discovered addresses."""

from __future__ import annotations

from typing import Iterable, Iterator, List

from .base import Snapshot
from .parser import last_octet


class ResultSet:
    """Addresses kept sorted by last octet, each present at most once.

    Addresses on one scan share their first three octets, so the last octet
    is the only ordering key. Entries with an equal key keep the reverse of
    their arrival order: a new entry goes in front of the first existing
    entry with the same last octet.
    """

    def __init__(self) -> None:
        self._addresses: List[str] = []
        self._members: set[str] = set()

    @classmethod
    def from_iterable(cls, addresses: Iterable[str]) -> "ResultSet":
        result_set = cls()
        # Restored in reverse so ties come back in their persisted order.
        for address in reversed(list(addresses)):
            result_set.insert_sorted(address)
        return result_set

    def insert_sorted(self, address: str) -> bool:
        """Insert ``address`` at its lower-bound position; ``False`` if present."""

        if address in self._members:
            return False

        key = last_octet(address)
        lo, hi = 0, len(self._addresses)
        while lo < hi:
            mid = (lo + hi) // 2
            if last_octet(self._addresses[mid]) < key:
                lo = mid + 1
            else:
                hi = mid

        self._addresses.insert(lo, address)
        self._members.add(address)
        return True

    def clear(self) -> None:
        self._addresses.clear()
        self._members.clear()

    def snapshot(self) -> Snapshot:
        return tuple(self._addresses)

    def __len__(self) -> int:
        return len(self._addresses)

    def __iter__(self) -> Iterator[str]:
        return iter(self.snapshot())

    def __contains__(self, address: object) -> bool:
        return address in self._members

    def __repr__(self) -> str:
        return f"ResultSet({list(self._addresses)!r})"


__all__ = ["ResultSet"]
