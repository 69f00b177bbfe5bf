"""Time-bounded, persisted cache of discovered free addresses."""

from __future__ import annotations

import json
import logging

from .base import CacheStatus, PersistenceError, Snapshot
from .parser import classify
from .results import ResultSet
from .store import CACHE_TIME_KEY, CACHED_IPS_KEY, Store

logger = logging.getLogger(__name__)

CACHE_TTL_MS = 24 * 60 * 60 * 1000


class ScanCache:
    """A :class:`ResultSet` plus the epoch-millisecond time it was last updated.

    ``last_updated == 0`` means no scan has produced or completed results.
    Every mutation is written to the store straight away; a store failure is
    logged and the in-memory state carries on.
    """

    def __init__(self, store: Store, *, ttl_ms: int = CACHE_TTL_MS) -> None:
        self._store = store
        self._ttl_ms = ttl_ms
        self.results = ResultSet()
        self.last_updated = 0

    @property
    def ttl_ms(self) -> int:
        return self._ttl_ms

    def is_expired(self, now: int) -> bool:
        return (now - self.last_updated) > self._ttl_ms

    def status(self) -> CacheStatus:
        if len(self.results):
            return CacheStatus.HAS_RESULTS
        if self.last_updated == 0:
            return CacheStatus.NEVER_SCANNED
        return CacheStatus.EMPTY

    def snapshot(self) -> Snapshot:
        return self.results.snapshot()

    def record_address(self, address: str, now: int) -> bool:
        added = self.results.insert_sorted(address)
        self.last_updated = now
        self.persist()
        return added

    def reset_for_new_scan(self) -> None:
        self.results.clear()
        self.last_updated = 0
        self.persist()

    def mark_complete(self, now: int) -> None:
        """Stamp a finished scan that found nothing.

        A scan with results keeps the time of its last recorded address.
        """
        if len(self.results):
            return
        self.last_updated = now
        self.persist()

    def load(self) -> None:
        try:
            self.results, self.last_updated = self._read()
        except (PersistenceError, TypeError, ValueError) as exc:
            logger.warning("Discarding unreadable scan cache: %s", exc)
            self.results = ResultSet()
            self.last_updated = 0

    def persist(self) -> None:
        try:
            self._store.set(CACHED_IPS_KEY, json.dumps(list(self.results.snapshot())))
            self._store.set(CACHE_TIME_KEY, int(self.last_updated))
        except PersistenceError as exc:
            logger.error("Failed to save scan cache: %s", exc)

    def _read(self) -> tuple[ResultSet, int]:
        raw_addresses = self._store.get(CACHED_IPS_KEY, "[]")
        raw_time = self._store.get(CACHE_TIME_KEY, 0)

        addresses = json.loads(raw_addresses) if raw_addresses else []
        if not isinstance(addresses, list):
            raise ValueError(f"expected a list of addresses, got {type(addresses).__name__}")
        for entry in addresses:
            if not isinstance(entry, str) or classify(entry) != entry:
                raise ValueError(f"invalid cached address {entry!r}")

        if isinstance(raw_time, bool) or not isinstance(raw_time, int):
            raise TypeError(f"invalid cache time {raw_time!r}")
        if raw_time < 0:
            raise ValueError(f"invalid cache time {raw_time!r}")

        return ResultSet.from_iterable(addresses), raw_time


__all__ = ["CACHE_TTL_MS", "ScanCache"]
