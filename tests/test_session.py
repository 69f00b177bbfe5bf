import asyncio
import os
import threading

import pytest

from freeip.engine import (
    CacheStatus,
    Engine,
    JsonFileStore,
    MemoryStore,
    ScanCache,
    ScanSession,
    ScanState,
)

SLOW_PROBE = 'echo 10.0.0.1\necho 10.0.0.20\nsleep 30\necho 10.0.0.30'


def _session(clock, store=None):
    cache = ScanCache(store if store is not None else MemoryStore())
    return ScanSession(cache, clock=clock)


async def _wait_for_address(event: asyncio.Event) -> None:
    await asyncio.wait_for(event.wait(), timeout=10)


def test_scan_filters_noise_and_ends_idle(make_probe, clock):
    probe = make_probe("printf '10.0.0.9\\ngarbage\\n10.0.0.3\\n\\n'")
    session = _session(clock)
    notifications = []
    session.subscribe(lambda results, loading: notifications.append((results, loading)))

    async def runner():
        assert await session.start(probe) is True
        assert session.state is ScanState.SCANNING
        await session.wait()

    asyncio.run(runner())

    assert session.state is ScanState.IDLE
    assert session.cache.snapshot() == ("10.0.0.3", "10.0.0.9")
    assert notifications == [
        ((), True),
        (("10.0.0.9",), True),
        (("10.0.0.3", "10.0.0.9"), True),
        (("10.0.0.3", "10.0.0.9"), False),
    ]


def test_scan_persists_every_address(make_probe, clock, tmp_path):
    path = tmp_path / "cache.json"
    probe = make_probe("echo 10.0.0.12\necho 10.0.0.2")
    session = _session(clock, JsonFileStore(path))
    persisted = []

    def observer(results, loading):
        if loading and results:
            reloaded = ScanCache(JsonFileStore(path))
            reloaded.load()
            persisted.append(reloaded.snapshot())

    session.subscribe(observer)

    async def runner():
        await session.start(probe)
        await session.wait()

    asyncio.run(runner())

    assert persisted == [("10.0.0.12",), ("10.0.0.2", "10.0.0.12")]


def test_completed_scan_without_results_is_empty_not_never_scanned(make_probe, clock):
    probe = make_probe("echo 'no free address in range'")
    session = _session(clock)

    async def runner():
        await session.start(probe)
        await session.wait()

    asyncio.run(runner())

    assert session.cache.status() is CacheStatus.EMPTY
    assert session.cache.last_updated == clock.now


def test_failing_probe_keeps_partial_results(make_probe, clock, caplog):
    probe = make_probe("echo 10.0.0.7\necho 'permission denied' >&2\nexit 3")
    session = _session(clock)

    async def runner():
        await session.start(probe)
        await session.wait()

    asyncio.run(runner())

    assert session.state is ScanState.IDLE
    assert session.cache.snapshot() == ("10.0.0.7",)
    assert "exited with status 3" in caplog.text


def test_failing_probe_without_results_stays_never_scanned(make_probe, clock):
    probe = make_probe("exit 1")
    session = _session(clock)

    async def runner():
        await session.start(probe)
        await session.wait()

    asyncio.run(runner())

    assert session.cache.status() is CacheStatus.NEVER_SCANNED


def test_cancel_mid_scan(make_probe, clock):
    probe = make_probe(SLOW_PROBE)
    store = MemoryStore()
    session = _session(clock, store)
    notifications = []

    async def runner():
        two_found = asyncio.Event()

        def observer(results, loading):
            notifications.append((results, loading))
            if len(results) == 2:
                two_found.set()

        session.subscribe(observer)
        await session.start(probe)
        await _wait_for_address(two_found)

        assert session.cancel() is True
        assert session.state is ScanState.IDLE
        assert session.cancel() is False
        await session.wait()

    asyncio.run(runner())

    assert session.state is ScanState.IDLE
    assert session.cache.snapshot() == ("10.0.0.1", "10.0.0.20")
    assert notifications[-1] == (("10.0.0.1", "10.0.0.20"), False)

    reloaded = ScanCache(store)
    reloaded.load()
    assert reloaded.snapshot() == ("10.0.0.1", "10.0.0.20")


def test_start_while_scanning_is_ignored(make_probe, clock):
    probe = make_probe(SLOW_PROBE)
    other = make_probe("echo 10.0.0.99", name="other.sh")
    session = _session(clock)

    async def runner():
        found = asyncio.Event()
        session.subscribe(lambda results, loading: found.set() if results else None)
        await session.start(probe)
        await _wait_for_address(found)
        before = session.cache.snapshot()

        assert await session.start(other) is False
        assert session.state is ScanState.SCANNING
        assert session.cache.snapshot() == before
        session.cancel()
        await session.wait()

    asyncio.run(runner())

    assert "10.0.0.99" not in session.cache.snapshot()


@pytest.mark.parametrize("make_executable", [False, True])
def test_start_refuses_unusable_probe(tmp_path, clock, make_executable):
    store = MemoryStore()
    session = _session(clock, store)
    session.cache.record_address("10.0.0.5", 100)
    notifications = []
    session.subscribe(lambda results, loading: notifications.append(loading))

    path = tmp_path / "missing.sh"
    if make_executable:
        # A directory is never an executable file.
        path.mkdir()

    assert asyncio.run(session.start(path)) is False
    assert session.state is ScanState.IDLE
    assert session.cache.snapshot() == ("10.0.0.5",)
    assert notifications == []


def test_non_executable_file_is_refused(make_probe, clock):
    probe = make_probe("echo 10.0.0.1")
    probe.chmod(0o644)
    session = _session(clock)

    assert asyncio.run(session.start(probe)) is False
    assert session.state is ScanState.IDLE


def test_failing_observer_does_not_stop_scan(make_probe, clock, caplog):
    probe = make_probe("echo 10.0.0.2\necho 10.0.0.1")
    session = _session(clock)
    seen = []

    def broken(results, loading):
        raise RuntimeError("render failed")

    session.subscribe(broken)
    session.subscribe(lambda results, loading: seen.append(results))

    async def runner():
        await session.start(probe)
        await session.wait()

    asyncio.run(runner())

    assert seen[-1] == ("10.0.0.1", "10.0.0.2")
    assert "render failed" in caplog.text


def test_unsubscribe_stops_notifications(make_probe, clock):
    probe = make_probe("echo 10.0.0.2")
    session = _session(clock)
    calls = []
    unsubscribe = session.subscribe(lambda results, loading: calls.append(loading))
    unsubscribe()
    unsubscribe()

    async def runner():
        await session.start(probe)
        await session.wait()

    asyncio.run(runner())

    assert calls == []


def test_engine_round_trip_and_snapshot(make_probe, clock, tmp_path):
    path = tmp_path / "cache.json"
    probe = make_probe("echo 172.16.0.30\necho 172.16.0.4\necho 172.16.0.30")

    async def runner():
        engine = Engine(JsonFileStore(path), probe, clock=clock)
        assert await engine.request_scan() is True
        assert engine.get_snapshot().loading is True
        await engine.wait()
        await engine.shutdown()
        return engine.get_snapshot()

    snapshot = asyncio.run(runner())
    assert snapshot.addresses == ("172.16.0.4", "172.16.0.30")
    assert snapshot.loading is False
    assert snapshot.status is CacheStatus.HAS_RESULTS
    assert snapshot.expired is False

    clock.now += 86_400_001
    restored = Engine(JsonFileStore(path), probe, clock=clock).get_snapshot()
    assert restored.addresses == snapshot.addresses
    assert restored.last_updated == snapshot.last_updated
    assert restored.expired is True


def test_engine_without_probe_refuses_scan(clock):
    engine = Engine(MemoryStore(), clock=clock)

    assert asyncio.run(engine.request_scan()) is False
    assert engine.get_snapshot().status is CacheStatus.NEVER_SCANNED


def test_shutdown_cancels_running_scan(make_probe, clock):
    probe = make_probe(SLOW_PROBE)

    async def runner():
        engine = Engine(MemoryStore(), probe, clock=clock)
        found = asyncio.Event()
        engine.subscribe(lambda results, loading: found.set() if results else None)
        await engine.request_scan()
        await _wait_for_address(found)
        await engine.shutdown()
        return engine

    engine = asyncio.run(runner())
    assert engine.session.state is ScanState.IDLE
    assert engine.get_snapshot().loading is False


def test_cancel_from_another_thread(make_probe, clock):
    probe = make_probe(SLOW_PROBE)
    store = MemoryStore()

    async def runner():
        engine = Engine(store, probe, clock=clock)
        two_found = asyncio.Event()
        engine.subscribe(lambda results, loading: two_found.set() if len(results) == 2 else None)
        await engine.request_scan()
        await _wait_for_address(two_found)

        canceller = threading.Thread(target=engine.cancel_scan_threadsafe)
        canceller.start()
        canceller.join()

        for _ in range(500):
            if not engine.session.scanning:
                break
            await asyncio.sleep(0.01)
        await engine.wait()
        return engine

    engine = asyncio.run(runner())

    assert engine.session.state is ScanState.IDLE
    assert engine.get_snapshot().addresses == ("10.0.0.1", "10.0.0.20")
    assert engine.get_snapshot().loading is False

    reloaded = ScanCache(store)
    reloaded.load()
    assert reloaded.snapshot() == ("10.0.0.1", "10.0.0.20")


def test_cancelled_process_is_reaped(make_probe, clock, tmp_path):
    pid_file = tmp_path / "pid"
    probe = make_probe(f"echo $$ > {pid_file}\necho 10.0.0.1\nsleep 30")
    session = _session(clock)

    async def runner():
        found = asyncio.Event()
        session.subscribe(lambda results, loading: found.set() if results else None)
        await session.start(probe)
        await _wait_for_address(found)
        session.cancel()
        await asyncio.wait_for(session.wait(), timeout=10)

    asyncio.run(runner())

    pid = int(pid_file.read_text())
    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)


class TickingClock:
    def __init__(self, now: int = 1_700_000_000_000, step: int = 1_000) -> None:
        self.now = now
        self.step = step
        self.calls = []

    def __call__(self) -> int:
        self.calls.append(self.now)
        value = self.now
        self.now += self.step
        return value


def test_scan_keeps_time_of_last_address(make_probe):
    probe = make_probe("echo 10.0.0.1\necho 10.0.0.2")
    clock = TickingClock()
    session = _session(clock)

    async def runner():
        await session.start(probe)
        await session.wait()

    asyncio.run(runner())

    # One reading per recorded address, one when the scan completes.
    assert len(clock.calls) == 3
    assert session.cache.last_updated == clock.calls[1]
