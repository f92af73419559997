"""Tests for the RelayStream synchronous wrapper."""

import threading
import time

import pytest

from conduit_sdk.errors import ConduitError
from conduit_sdk.relay.events import EVENT_ACTIVITY_STATS, EVENT_PROXY_ERROR, EVENT_PROXY_STATE, STATUS_STOPPED
from conduit_sdk.relay.manager import STATUS_STARTED, STATUS_STARTING, STATUS_STOPPED as MANAGER_STOPPED
from conduit_sdk.relay.params import InProxyParameters
from conduit_sdk.relay.sync import RelayStream

from fakes import FakeEngine

PARAMS = InProxyParameters(4, 250_000, 250_000)


def wait_until(predicate, timeout: float = 5.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met before timeout")
        time.sleep(0.01)


def test_commands_require_start():
    """Test commands fail before the background loop runs."""
    stream = RelayStream(FakeEngine())
    with pytest.raises(ConduitError):
        stream.toggle(PARAMS)
    assert stream.status == MANAGER_STOPPED
    assert stream.latest_snapshot() is None
    assert stream.total_bytes() == (0, 0)
    assert stream.get_stats()["ticks_received"] == 0


def test_session_with_engine_ticks():
    """Test toggling a session and reading totals from another thread."""
    engine = FakeEngine()
    events = []

    with RelayStream(engine, on_event=lambda s, e: events.append(e)) as stream:
        stream.toggle(PARAMS)
        assert stream.wait_until_running(timeout=5)
        assert stream.status == STATUS_STARTED
        assert stream.proxy_state.running

        def engine_thread():
            for _ in range(3):
                engine.emit_activity(1, 2, 1000, 3000)

        t = threading.Thread(target=engine_thread)
        t.start()
        t.join()

        wait_until(lambda: stream.total_bytes() == (3000, 9000))
        snap = stream.latest_snapshot()
        assert snap.current_connected_clients == 2
        assert len(snap.series(1000).bytes_up) == 288
        assert stream.get_stats()["ticks_received"] == 3

        stream.toggle(PARAMS)
        assert stream.status == MANAGER_STOPPED
        assert stream.proxy_state.status == STATUS_STOPPED
        assert stream.latest_snapshot() is None

    assert sum(1 for e in events if e.type == EVENT_ACTIVITY_STATS) == 4


def test_failing_engine_reports_error():
    """Test a refused start surfaces as a proxyError event."""
    events = []
    with RelayStream(FakeEngine(start_result=False), on_event=lambda s, e: events.append(e)) as stream:
        stream.toggle(PARAMS)
        assert not stream.wait_until_running(timeout=0.2)
        assert stream.status == MANAGER_STOPPED
    assert [e.type for e in events if e.type == EVENT_PROXY_ERROR] == [EVENT_PROXY_ERROR]


def test_user_callback_errors_do_not_break_stream():
    """Test exceptions from on_event are contained."""
    def boom(stream, event):
        raise ValueError("callback bug")

    with RelayStream(FakeEngine(), on_event=boom) as stream:
        stream.toggle(PARAMS)
        assert stream.wait_until_running(timeout=5)


def test_stop_ends_running_session():
    """Test leaving the context stops the engine."""
    engine = FakeEngine()
    with RelayStream(engine) as stream:
        stream.toggle(PARAMS)
        assert stream.wait_until_running(timeout=5)
        stops_before = engine.stop_calls
    assert engine.stop_calls == stops_before + 1


def test_serves_feed():
    """Test serve_feed exposes a feed URL while running."""
    with RelayStream(FakeEngine(), serve_feed=True, feed_host="127.0.0.1", feed_port=0) as stream:
        assert stream.feed_url.startswith("ws://127.0.0.1:")
        assert not stream.feed_url.endswith(":0/ws")
        stream.toggle(PARAMS)
        assert stream.wait_until_running(timeout=5)
        assert stream.get_stats()["feed"]["events_published"] >= 3


def test_restart_drops_previous_snapshot():
    """Test a parameter restart clears the old session's snapshot until the new one reports."""
    engine = FakeEngine()
    seen_on_restart = []

    def on_event(stream, event):
        if event.type == EVENT_PROXY_STATE and stream.status == STATUS_STARTING:
            seen_on_restart.append((stream.latest_snapshot(), stream.total_bytes()))

    with RelayStream(engine, on_event=on_event) as stream:
        stream.toggle(PARAMS)
        assert stream.wait_until_running(timeout=5)
        engine.emit_activity(0, 1, 500, 500)
        wait_until(lambda: stream.total_bytes() == (500, 500))
        seen_on_restart.clear()

        stream.params_changed(InProxyParameters(8, 250_000, 250_000))
        assert seen_on_restart == [(None, (0, 0))]
        assert stream.wait_until_running(timeout=5)
        assert stream.status == STATUS_STARTED
        assert stream.total_bytes() == (0, 0)
        assert stream.latest_snapshot() is not None
