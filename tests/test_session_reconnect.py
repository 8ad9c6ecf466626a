from __future__ import annotations

import pytest

from espmon.link.errors import NotConnectedError, TransportError
from espmon.link.reconnect import ReconnectPolicy
from espmon.link.session import EXHAUSTED_MESSAGE, ConnectionState, TransportSession


def _session(factory, timers, max_attempts=5, delay=5.0, events=None):
    sink = events.append if events is not None else (lambda _event: None)
    return TransportSession(
        factory,
        sink,
        policy=ReconnectPolicy(max_attempts=max_attempts, delay_sec=delay),
        timer_factory=timers,
    )


def test_policy_budget() -> None:
    policy = ReconnectPolicy(max_attempts=2, delay_sec=3.0)
    assert policy.next_delay() == 3.0
    assert policy.next_delay() == 3.0
    assert policy.next_delay() is None
    assert policy.exhausted
    policy.reset()
    assert policy.attempts == 0


def test_connect_sends_status_and_disconnect_releases(transport_cls, timers) -> None:
    transport = transport_cls()
    session = _session(lambda: transport, timers)
    assert session.connect() is True
    assert session.state is ConnectionState.CONNECTED
    assert transport.written == ["STATUS\n"]
    assert session.connect() is False  # already connected
    session.disconnect()
    assert session.state is ConnectionState.DISCONNECTED
    assert transport.closed
    assert timers.timers == []


def test_send_requires_connection(transport_cls, timers) -> None:
    session = _session(lambda: transport_cls(), timers)
    with pytest.raises(NotConnectedError):
        session.send("STATUS")
    assert session.error == "Not connected"


def test_exactly_max_attempts_then_terminal(transport_cls, timers) -> None:
    opened = []

    def factory():
        transport = transport_cls(fail_open=True)
        opened.append(transport)
        return transport

    session = _session(factory, timers, max_attempts=5, delay=5.0)
    assert session.connect() is False
    assert session.error.startswith("Connection failed")
    for _ in range(5):
        assert timers.last.started
        timers.last.fire()
    assert len(timers.timers) == 5
    assert all(timer.delay == 5.0 for timer in timers.timers)
    assert len(opened) == 6  # initial attempt + five reconnects
    assert session.terminal
    assert session.error.endswith(EXHAUSTED_MESSAGE)
    assert not session.reconnect_pending
    assert session.state is ConnectionState.DISCONNECTED
    assert all(transport.closed for transport in opened)


def test_successful_reconnect_resets_budget(transport_cls, timers, eventually) -> None:
    first = transport_cls()
    attempts = iter([first, transport_cls(fail_open=True), transport_cls(fail_open=True), transport_cls()])
    session = _session(lambda: next(attempts), timers)
    assert session.connect()
    first.push(None)  # device closes the stream
    assert eventually(lambda: session.reconnect_pending)
    assert session.state is ConnectionState.DISCONNECTED
    assert session.error == "Connection closed by device"
    timers.last.fire()
    timers.last.fire()
    assert session.policy.attempts == 3
    timers.last.fire()
    assert session.state is ConnectionState.CONNECTED
    assert session.policy.attempts == 0
    assert session.error is None
    session.disconnect()


def test_read_error_triggers_reconnect(transport_cls, timers, eventually) -> None:
    transport = transport_cls()
    session = _session(lambda: transport, timers)
    session.connect()
    transport.push(TransportError("cable pulled"))
    assert eventually(lambda: session.reconnect_pending)
    assert "cable pulled" in session.error
    assert transport.closed


def test_disconnect_cancels_pending_timer(transport_cls, timers) -> None:
    session = _session(lambda: transport_cls(fail_open=True), timers)
    session.connect()
    timer = timers.last
    session.disconnect()
    assert timer.cancelled
    timer.fire()  # a late timer must not reconnect
    assert len(timers.timers) == 1
    assert session.state is ConnectionState.DISCONNECTED


def test_manual_connect_cancels_timer_and_resets_terminal(transport_cls, timers) -> None:
    transports = iter([transport_cls(fail_open=True), transport_cls()])
    session = _session(lambda: next(transports), timers, max_attempts=0)
    session.connect()
    assert session.terminal
    assert timers.timers == []
    assert session.connect()
    assert not session.terminal
    session.disconnect()


def test_serial_style_policy_gives_up_immediately(transport_cls, timers, eventually) -> None:
    transport = transport_cls()
    session = _session(lambda: transport, timers, max_attempts=0)
    session.connect()
    transport.push(None)
    assert eventually(lambda: session.terminal)
    assert timers.timers == []


class _HookOnRelease:
    """Lock wrapper that runs a one-shot hook right after the next release."""

    def __init__(self, lock) -> None:
        self._lock = lock
        self.hook = None

    def __enter__(self):
        self._lock.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self._lock.release()
        hook, self.hook = self.hook, None
        if hook is not None:
            hook()


def test_disconnect_racing_reconnect_timer_wins(transport_cls, timers) -> None:
    transports = iter([transport_cls(fail_open=True), transport_cls()])
    session = _session(lambda: next(transports), timers)
    session.connect()
    timer = timers.last
    lock = _HookOnRelease(session._lock)
    session._lock = lock
    lock.hook = session.disconnect  # lands between the timer callback and the reopen
    timer.fire()
    assert session.state is ConnectionState.DISCONNECTED
    assert not session.reconnect_pending
    assert not session.connected
