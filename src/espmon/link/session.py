from __future__ import annotations

import enum
import logging
import threading
from typing import Callable, Optional

from .errors import CommandError, NotConnectedError, TransportError
from .frames import FrameDecoder
from .payload import ParsedLine, PayloadParser
from .reconnect import ReconnectPolicy
from .transport import Transport, TransportFactory

logger = logging.getLogger(__name__)

EXHAUSTED_MESSAGE = "Reconnect attempts exhausted; manual reconnect required"


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def _daemon_timer(delay: float, callback: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    return timer


class TransportSession:
    """
    Owns one device connection and the thread that reads from it.

    Decoded lines are parsed and handed to `on_event` from the reader thread.
    Unexpected closure of the link (open failure, end of stream, read error)
    schedules a reconnect through the policy until its budget is spent; an
    explicit `disconnect()` disables reconnects until the next `connect()`.
    """

    def __init__(
        self,
        factory: TransportFactory,
        on_event: Callable[[ParsedLine], None],
        policy: Optional[ReconnectPolicy] = None,
        timer_factory: Callable[[float, Callable[[], None]], threading.Timer] = _daemon_timer,
        join_timeout: float = 2.0,
    ):
        self._factory = factory
        self._on_event = on_event
        self.policy = policy or ReconnectPolicy(max_attempts=0)
        self._timer_factory = timer_factory
        self.join_timeout = join_timeout
        self.parser = PayloadParser()
        self.error: Optional[str] = None
        self.terminal = False
        self._state = ConnectionState.DISCONNECTED
        self._lock = threading.RLock()
        self._deliver_lock = threading.Lock()
        self._transport: Optional[Transport] = None
        self._reader: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None
        self._timer: Optional[threading.Timer] = None
        self._auto_reconnect = True
        self._connects = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def reconnect_pending(self) -> bool:
        return self._timer is not None

    def stats(self) -> dict[str, int]:
        stats = self.parser.stats()
        stats["connects"] = self._connects
        stats["reconnect_attempts"] = self.policy.attempts
        return stats

    def connect(self) -> bool:
        """Connect on user request; re-arms reconnects and resets the retry budget."""
        with self._lock:
            if self._state is not ConnectionState.DISCONNECTED:
                return False
            self._cancel_timer()
            self._auto_reconnect = True
            self.policy.reset()
            self.terminal = False
        return self._open(require_auto=False)

    def disconnect(self) -> None:
        with self._lock:
            self._auto_reconnect = False
            self._cancel_timer()
            transport, reader, stop = self._transport, self._reader, self._stop_event
            self._transport = self._reader = self._stop_event = None
            if stop is not None:
                with self._deliver_lock:
                    stop.set()
        if transport is not None:
            transport.close()
        if reader is not None and reader is not threading.current_thread():
            reader.join(self.join_timeout)
        with self._lock:
            self._set_state(ConnectionState.DISCONNECTED)
        if transport is not None:
            logger.info("Disconnected from %s", transport.name)

    def send(self, command: str) -> None:
        with self._lock:
            transport = self._transport if self.connected else None
        if transport is None:
            self.error = "Not connected"
            raise NotConnectedError(f"Cannot send '{command}': not connected")
        try:
            transport.write(command + "\n")
        except TransportError as exc:
            self.error = f"Failed to send: {exc}"
            raise CommandError(f"Failed to send '{command}': {exc}") from exc
        logger.debug("Sent command: %s", command)

    def _open(self, require_auto: bool) -> bool:
        with self._lock:
            if self._state is not ConnectionState.DISCONNECTED:
                return False
            if require_auto and not self._auto_reconnect:
                return False
            transport = self._factory()
            self._transport = transport
            self._set_state(ConnectionState.CONNECTING)
        try:
            transport.open()
        except TransportError as exc:
            transport.close()
            logger.warning("Connection failed: %s", exc)
            with self._lock:
                if self._transport is not transport:
                    return False
                self._transport = None
                self.error = f"Connection failed: {exc}"
                self._set_state(ConnectionState.DISCONNECTED)
            self._schedule_reconnect()
            return False

        with self._lock:
            if self._transport is not transport:
                # disconnect() raced with open()
                transport.close()
                return False
            stop = threading.Event()
            reader = threading.Thread(
                target=self._read_loop,
                args=(transport, FrameDecoder(passthrough=not transport.framed), stop),
                name=f"espmon-reader[{transport.name}]",
                daemon=True,
            )
            self._stop_event = stop
            self._reader = reader
            self.error = None
            self.terminal = False
            self.policy.reset()
            self._connects += 1
            self._set_state(ConnectionState.CONNECTED)
            reader.start()
        logger.info("Connected to %s", transport.name)
        try:
            self.send("STATUS")
        except (NotConnectedError, CommandError) as exc:
            logger.warning("Initial status query failed: %s", exc)
        return True

    def _read_loop(self, transport: Transport, decoder: FrameDecoder, stop: threading.Event) -> None:
        failure: Optional[Exception] = None
        try:
            while not stop.is_set():
                chunk = transport.read()
                if chunk is None:
                    break
                for line in decoder.feed(chunk):
                    if not self._deliver(line, stop):
                        return
        except TransportError as exc:
            failure = exc
        except Exception as exc:  # pragma: no cover
            if stop.is_set():
                return
            failure = exc
            logger.exception("Unexpected error in reader for %s", transport.name)
        if stop.is_set():
            return
        self._handle_closed(transport, failure)

    def _deliver(self, line: str, stop: threading.Event) -> bool:
        event = self.parser.parse(line)
        with self._deliver_lock:
            if stop.is_set():
                return False
            if event is not None:
                self._on_event(event)
        return True

    def _handle_closed(self, transport: Transport, failure: Optional[Exception]) -> None:
        with self._lock:
            if self._transport is not transport:
                return
            self._transport = self._reader = self._stop_event = None
            transport.close()
            self.error = f"Connection lost: {failure}" if failure else "Connection closed by device"
            self._set_state(ConnectionState.DISCONNECTED)
        logger.warning("%s (%s)", self.error, transport.name)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        with self._lock:
            if not self._auto_reconnect or self._timer is not None:
                return
            delay = self.policy.next_delay()
            if delay is None:
                self.terminal = True
                self.error = f"{self.error}; {EXHAUSTED_MESSAGE}" if self.error else EXHAUSTED_MESSAGE
                logger.error("%s after %d attempts", EXHAUSTED_MESSAGE, self.policy.attempts)
                return
            logger.info(
                "Reconnecting in %.1fs (attempt %d/%d)",
                delay,
                self.policy.attempts,
                self.policy.max_attempts,
            )
            timer = self._timer_factory(delay, self._on_reconnect_timer)
            self._timer = timer
            timer.start()

    def _on_reconnect_timer(self) -> None:
        with self._lock:
            self._timer = None
        self._open(require_auto=True)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            logger.debug("Connection state %s -> %s", self._state.value, state.value)
            self._state = state
