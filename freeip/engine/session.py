"""Scan orchestration: the session state machine and the engine facade."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set

from .base import (
    CacheStatus,
    LaunchError,
    Observer,
    ProbeRuntimeError,
    ScanState,
    Snapshot,
)
from .cache import CACHE_TTL_MS, ScanCache
from .parser import classify
from .probe import PathLike, ProbeProcess, is_executable
from .store import Store

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


def epoch_ms() -> int:
    return int(time.time() * 1000)


class ScanSession:
    """Drive one probe at a time and feed its addresses into the cache.

    All methods must be called from the event loop that runs the scan. Each
    discovered address is recorded, persisted and announced to observers
    before the next output line is read.
    """

    def __init__(self, cache: ScanCache, *, clock: Clock = epoch_ms) -> None:
        self._cache = cache
        self._clock = clock
        self._state = ScanState.IDLE
        self._probe: Optional[ProbeProcess] = None
        self._task: Optional[asyncio.Task[None]] = None
        self._observers: List[Observer] = []
        # Waits on probes killed by cancel() so none is left unreaped.
        self._reapers: Set[asyncio.Task[Optional[int]]] = set()
        # Bumped by every start and cancel; stale loops compare against it.
        self._generation = 0

    @property
    def state(self) -> ScanState:
        return self._state

    @property
    def scanning(self) -> bool:
        return self._state is ScanState.SCANNING

    @property
    def cache(self) -> ScanCache:
        return self._cache

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register ``observer``; the returned callable removes it again."""

        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    async def start(self, probe_path: PathLike) -> bool:
        """Begin a scan with the probe at ``probe_path``.

        Returns ``False`` without touching any state when a scan is already
        running or the probe is not an executable file.
        """

        if self.scanning:
            logger.debug("Scan already running, ignoring start request")
            return False
        if not is_executable(probe_path):
            logger.warning("Probe %s is missing or not executable", probe_path)
            return False

        self._generation += 1
        generation = self._generation
        self._state = ScanState.SCANNING
        self._cache.reset_for_new_scan()
        self._notify(loading=True)

        try:
            probe = await ProbeProcess.start(probe_path)
        except LaunchError as exc:
            logger.error("%s", exc)
            if generation == self._generation:
                self._finish()
            return False

        if generation != self._generation:
            # Cancelled (and possibly restarted) while the probe was spawning.
            probe.terminate()
            await probe.reap()
            return False

        self._probe = probe
        self._task = asyncio.create_task(self._consume(probe, generation))
        return True

    def cancel(self) -> bool:
        """Kill the running probe and return to idle without waiting for it."""

        if not self.scanning:
            return False

        self._generation += 1
        probe, self._probe = self._probe, None
        task, self._task = self._task, None
        self._state = ScanState.IDLE

        if probe is not None:
            probe.terminate()
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            if probe is not None:
                reaper = asyncio.create_task(probe.reap())
                self._reapers.add(reaper)
                reaper.add_done_callback(self._reapers.discard)

        logger.info("Scan cancelled with %d address(es) found", len(self._cache.results))
        self._notify(loading=False)
        return True

    async def wait(self) -> None:
        """Wait until the current scan and any cancelled probe have finished."""

        pending = set(self._reapers)
        if self._task is not None:
            pending.add(self._task)
        if pending:
            await asyncio.wait(pending)

    async def _consume(self, probe: ProbeProcess, generation: int) -> None:
        completed = False
        returncode: Optional[int] = None
        try:
            try:
                async for line in probe.lines():
                    if generation != self._generation:
                        break
                    address = classify(line)
                    if address is None:
                        continue
                    self._cache.record_address(address, self._clock())
                    logger.debug("Found free address %s", address)
                    self._notify(loading=True)
                else:
                    completed = True
            except ProbeRuntimeError as exc:
                logger.error("%s", exc)
                probe.terminate()
            returncode = await probe.reap()
        finally:
            if generation == self._generation:
                probe.terminate()
                if completed and returncode == 0:
                    self._cache.mark_complete(self._clock())
                self._finish()

    def _finish(self) -> None:
        self._probe = None
        self._task = None
        self._state = ScanState.IDLE
        logger.info("Scan finished with %d address(es) found", len(self._cache.results))
        self._notify(loading=False)

    def _notify(self, loading: bool) -> None:
        snapshot = self._cache.snapshot()
        for observer in list(self._observers):
            try:
                observer(snapshot, loading)
            except Exception:
                logger.exception("Scan observer %r failed", observer)


@dataclass(slots=True)
class EngineSnapshot:
    """Everything a presentation layer needs to render the current results."""

    addresses: Snapshot
    loading: bool
    status: CacheStatus
    last_updated: int
    expired: bool

    def to_dict(self) -> Dict[str, object]:
        return {
            "addresses": list(self.addresses),
            "loading": self.loading,
            "status": self.status.value,
            "last_updated": self.last_updated,
            "expired": self.expired,
        }


class Engine:
    """An engine instance owned by the embedding application.

    Creating the engine restores the cache from ``store``; :meth:`shutdown`
    cancels any scan still running. Scans only start on :meth:`request_scan`.
    """

    def __init__(
        self,
        store: Store,
        probe_path: Optional[PathLike] = None,
        *,
        clock: Clock = epoch_ms,
        ttl_ms: int = CACHE_TTL_MS,
    ) -> None:
        self._probe_path = probe_path
        self._clock = clock
        self._cache = ScanCache(store, ttl_ms=ttl_ms)
        self._cache.load()
        self._session = ScanSession(self._cache, clock=clock)
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def session(self) -> ScanSession:
        return self._session

    @property
    def probe_path(self) -> Optional[PathLike]:
        return self._probe_path

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        return self._session.subscribe(observer)

    async def request_scan(self) -> bool:
        if self._probe_path is None:
            logger.warning("No probe configured, ignoring scan request")
            return False
        self._loop = asyncio.get_running_loop()
        return await self._session.start(self._probe_path)

    def cancel_scan(self) -> bool:
        return self._session.cancel()

    def cancel_scan_threadsafe(self) -> None:
        """Schedule :meth:`cancel_scan` from a thread other than the loop's."""

        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self.cancel_scan)

    def get_snapshot(self) -> EngineSnapshot:
        return EngineSnapshot(
            addresses=self._cache.snapshot(),
            loading=self._session.scanning,
            status=self._cache.status(),
            last_updated=self._cache.last_updated,
            expired=self._cache.is_expired(self._clock()),
        )

    async def wait(self) -> None:
        await self._session.wait()

    async def shutdown(self) -> None:
        self._session.cancel()
        await self._session.wait()
        self._loop = None


__all__ = ["Engine", "EngineSnapshot", "ScanSession", "epoch_ms"]
