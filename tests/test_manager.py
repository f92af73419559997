"""Tests for ConduitManager session lifecycle."""

import asyncio
import threading

import pytest

from conduit_sdk.errors import ConduitError, EngineStartError
from conduit_sdk.relay.events import (
    ACTION_MUST_UPGRADE,
    ACTION_RESTART_FAILED,
    ACTION_START_FAILED,
    EVENT_ACTIVITY_STATS,
    EVENT_PROXY_ERROR,
    EVENT_PROXY_STATE,
    NETWORK_NO_INTERNET,
    STATUS_RUNNING,
    STATUS_STOPPED,
)
from conduit_sdk.relay.manager import (
    STATUS_STARTED,
    STATUS_STARTING,
    STATUS_STOPPED as MANAGER_STOPPED,
    ConduitManager,
)
from conduit_sdk.relay.params import InProxyParameters

from fakes import FakeClock, FakeEngine

PARAMS = InProxyParameters(10, 1_000_000, 1_000_000)


def make_manager(engine=None, clock=None):
    events = []
    manager = ConduitManager(
        engine or FakeEngine(),
        on_event=events.append,
        client_version="7",
        clock=clock or FakeClock(),
    )
    return manager, events


async def settle():
    """Let callbacks scheduled from other threads run."""
    for _ in range(5):
        await asyncio.sleep(0.01)


def test_toggle_starts_and_stops():
    """Test toggle runs a full session and reports state changes."""
    async def scenario():
        engine = FakeEngine()
        manager, events = make_manager(engine)

        await manager.toggle(PARAMS)
        assert manager.status == STATUS_STARTED
        assert manager.running
        assert manager.activity_stats is not None
        assert engine.configs[0]["InproxyMaxClients"] == 10
        assert engine.configs[0]["ClientVersion"] == "7"

        # starting -> RUNNING, started -> RUNNING, then the first snapshot
        assert [e.type for e in events] == [EVENT_PROXY_STATE, EVENT_PROXY_STATE, EVENT_ACTIVITY_STATS]
        assert events[0].data.status == STATUS_RUNNING
        assert events[2].data.total_bytes_up == 0

        events.clear()
        await manager.toggle(PARAMS)
        assert manager.status == MANAGER_STOPPED
        assert manager.activity_stats is None
        assert manager.snapshot() is None
        assert [e.data.status for e in events] == [STATUS_STOPPED, STATUS_STOPPED]

    asyncio.run(scenario())


def test_activity_from_engine_thread():
    """Test ticks delivered on a foreign thread reach the session stats."""
    async def scenario():
        clock = FakeClock()
        engine = FakeEngine()
        manager, events = make_manager(engine, clock)
        await manager.start(PARAMS)
        events.clear()

        def engine_thread():
            clock.advance(1)
            engine.emit_activity(2, 3, 100, 400)

        t = threading.Thread(target=engine_thread)
        t.start()
        t.join()
        await settle()

        snap = manager.snapshot()
        assert snap.total_bytes_up == 100
        assert snap.total_bytes_down == 400
        assert snap.current_connecting_clients == 2
        assert snap.current_connected_clients == 3
        assert snap.series(1000).bytes_down[-1] == 400

        assert len(events) == 1
        assert events[0].type == EVENT_ACTIVITY_STATS
        assert events[0].data == snap

    asyncio.run(scenario())


def test_fresh_stats_per_session():
    """Test a new session starts from zero totals."""
    async def scenario():
        clock = FakeClock()
        manager, _ = make_manager(clock=clock)

        await manager.start(PARAMS)
        clock.advance(1)
        manager.update_activity_stats(0, 1, 500, 500)
        first = manager.activity_stats
        assert first.total_bytes_up == 500

        await manager.stop()
        await manager.start(PARAMS)
        assert manager.activity_stats is not first
        assert manager.activity_stats.total_bytes_up == 0
        assert manager.activity_stats.elapsed_time_ms == 0

    asyncio.run(scenario())


def test_ticks_without_session_dropped():
    """Test ticks are ignored when no session is active."""
    manager, events = make_manager()
    manager.update_activity_stats(1, 1, 10, 10)
    assert events == []
    assert manager.get_stats()["ticks_dropped"] == 1
    assert manager.get_stats()["ticks_received"] == 0


def test_start_failure():
    """Test a refused start raises and leaves the relay stopped."""
    async def scenario():
        manager, events = make_manager(FakeEngine(start_result=False))
        with pytest.raises(EngineStartError):
            await manager.start(PARAMS)
        assert manager.status == MANAGER_STOPPED
        assert manager.activity_stats is None
        assert events[-1].data.status == STATUS_STOPPED

    asyncio.run(scenario())


def test_start_engine_exception():
    """Test an engine exception becomes EngineStartError."""
    async def scenario():
        manager, _ = make_manager(FakeEngine(start_result=RuntimeError("no network")))
        with pytest.raises(EngineStartError, match="no network"):
            await manager.start(PARAMS)
        assert manager.status == MANAGER_STOPPED

    asyncio.run(scenario())


def test_toggle_start_failure_emits_error():
    """Test toggle reports a failed start as a proxyError event."""
    async def scenario():
        manager, events = make_manager(FakeEngine(start_result=False))
        await manager.toggle(PARAMS)
        errors = [e for e in events if e.type == EVENT_PROXY_ERROR]
        assert len(errors) == 1
        assert errors[0].data.action == ACTION_START_FAILED

    asyncio.run(scenario())


def test_duplicate_params_denied():
    """Test restarting with identical parameters is ignored."""
    async def scenario():
        engine = FakeEngine()
        manager, _ = make_manager(engine)
        assert await manager.start(PARAMS)
        stats = manager.activity_stats

        assert not await manager.start(InProxyParameters(10, 1_000_000, 1_000_000))
        assert len(engine.configs) == 1
        assert manager.activity_stats is stats

    asyncio.run(scenario())


def test_params_changed_restarts():
    """Test new parameters restart a running relay with a fresh session."""
    async def scenario():
        engine = FakeEngine()
        manager, _ = make_manager(engine)

        # No-op while stopped
        await manager.params_changed(PARAMS)
        assert engine.configs == []

        await manager.start(PARAMS)
        old_stats = manager.activity_stats
        new_params = InProxyParameters(20, 500_000, 500_000)
        await manager.params_changed(new_params)

        assert manager.status == STATUS_STARTED
        assert manager.params == new_params
        assert engine.configs[-1]["InproxyMaxClients"] == 20
        assert manager.activity_stats is not old_stats

    asyncio.run(scenario())


def test_params_changed_failure_emits_restart_error():
    """Test a failed restart is reported as proxyRestartFailed."""
    async def scenario():
        engine = FakeEngine()
        manager, events = make_manager(engine)
        await manager.start(PARAMS)

        engine.start_result = False
        await manager.params_changed(InProxyParameters(5, 1, 1))

        assert manager.status == MANAGER_STOPPED
        errors = [e.data.action for e in events if e.type == EVENT_PROXY_ERROR]
        assert errors == [ACTION_RESTART_FAILED]

    asyncio.run(scenario())


def test_params_changed_while_starting():
    """Test parameter changes are refused mid-start."""
    async def scenario():
        manager, _ = make_manager()
        manager.status = STATUS_STARTING
        with pytest.raises(ConduitError):
            await manager.params_changed(PARAMS)
        # Concurrent start is ignored, not an error
        assert not await manager.start(PARAMS)

    asyncio.run(scenario())


def test_must_upgrade_stops_relay():
    """Test must-upgrade reports an error then stops the session."""
    async def scenario():
        engine = FakeEngine()
        manager, events = make_manager(engine)
        await manager.start(PARAMS)
        events.clear()

        t = threading.Thread(target=engine.listener.on_inproxy_must_upgrade)
        t.start()
        t.join()
        await settle()

        assert events[0].type == EVENT_PROXY_ERROR
        assert events[0].data.action == ACTION_MUST_UPGRADE
        assert manager.status == MANAGER_STOPPED
        assert manager.activity_stats is None

    asyncio.run(scenario())


def test_reachability_change():
    """Test reachability reports become proxyState events."""
    async def scenario():
        engine = FakeEngine()
        manager, events = make_manager(engine)
        await manager.start(PARAMS)
        events.clear()

        engine.listener.on_internet_reachability_changed(False)
        await settle()

        assert len(events) == 1
        assert events[0].data.status == STATUS_RUNNING
        assert events[0].data.network_state == NETWORK_NO_INTERNET

    asyncio.run(scenario())


def test_tick_interval_stats():
    """Test tick timing is tracked per session."""
    async def scenario():
        clock = FakeClock()
        manager, _ = make_manager(clock=clock)
        await manager.start(PARAMS)

        for delay in [1.0, 1.0, 1.2, 0.8]:
            clock.advance(delay)
            manager.update_activity_stats(0, 0, 1, 1)

        stats = manager.get_stats()
        assert stats["status"] == STATUS_STARTED
        assert stats["ticks_received"] == 4
        # Three intervals between four ticks
        assert stats["tick_interval"].startswith("n=3 ")
        assert stats["tick_interval_avg_ms"] == pytest.approx(1000, abs=1)

        manager.reset_stats()
        assert manager.get_stats()["ticks_received"] == 0
        assert manager.get_stats()["tick_interval"] == "n=0"

    asyncio.run(scenario())


def test_engine_stop_failure_during_start():
    """Test a failing engine stop aborts the start and leaves the relay restartable."""
    async def scenario():
        engine = FakeEngine()
        engine.stop_error = RuntimeError("engine wedged")
        manager, events = make_manager(engine)

        with pytest.raises(EngineStartError, match="engine wedged"):
            await manager.start(PARAMS)
        assert manager.status == MANAGER_STOPPED
        assert manager.params is None
        assert manager.activity_stats is None
        assert engine.configs == []
        assert events[-1].data.status == STATUS_STOPPED

        engine.stop_error = None
        assert await manager.start(PARAMS)
        assert manager.status == STATUS_STARTED

    asyncio.run(scenario())


def test_engine_stop_failure_during_stop():
    """Test a failing engine stop still ends the session."""
    async def scenario():
        engine = FakeEngine()
        manager, _ = make_manager(engine)
        await manager.start(PARAMS)

        engine.stop_error = RuntimeError("engine wedged")
        with pytest.raises(RuntimeError):
            await manager.stop()
        assert manager.status == MANAGER_STOPPED
        assert manager.activity_stats is None

        engine.stop_error = None
        await manager.toggle(PARAMS)
        assert manager.status == STATUS_STARTED

    asyncio.run(scenario())


def test_must_upgrade_stop_failure_reported(capsys):
    """Test a failed stop after must-upgrade is printed, not lost."""
    async def scenario():
        engine = FakeEngine()
        manager, events = make_manager(engine)
        await manager.start(PARAMS)
        engine.stop_error = RuntimeError("engine wedged")

        t = threading.Thread(target=engine.listener.on_inproxy_must_upgrade)
        t.start()
        t.join()
        await settle()

        assert [e.data.action for e in events if e.type == EVENT_PROXY_ERROR] == [ACTION_MUST_UPGRADE]
        assert manager.status == MANAGER_STOPPED

    asyncio.run(scenario())
    assert "Stop after must-upgrade failed: engine wedged" in capsys.readouterr().out
