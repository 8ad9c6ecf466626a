from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from .commands import CommandDispatcher
from .config import TRANSPORTS, LinkConfig
from .history import HistoryStore, now_ms
from .payload import ParsedLine, RelayState, TelemetryRecord
from .reconnect import ReconnectPolicy
from .session import ConnectionState, TransportSession
from .state import TelemetrySnapshot, TelemetryState
from .transport import TransportFactory, transport_factory

logger = logging.getLogger(__name__)


class TelemetryMonitor:
    """
    Ingestion core for one device: a single transport session feeding the
    telemetry state and chart history, plus relay commands back to the device.

    Consumers read `snapshot()`, `history` and `connection_state`; they act
    only through `connect`, `disconnect`, `clear` and `commands`.
    """

    def __init__(
        self,
        config: LinkConfig,
        factory: Optional[TransportFactory] = None,
        timer_factory: Optional[Callable] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.config = config
        self.state = TelemetryState(critical_temp_c=config.critical_temp_c)
        self.history = HistoryStore(
            max_points=config.history.max_points,
            window_ms=config.history.window_ms,
            record_limit=config.history.record_limit,
            clock=clock,
        )
        self._timer_factory = timer_factory
        self._relay_update = threading.Condition()
        self._relay_updates = 0
        self.kind = config.transport_kind
        self.session = self._build_session(self.kind, factory)
        self.commands = CommandDispatcher(self.session, self.state)

    @property
    def connection_state(self) -> ConnectionState:
        return self.session.state

    def snapshot(self) -> TelemetrySnapshot:
        return self.state.snapshot()

    def connect(self) -> bool:
        return self.session.connect()

    def disconnect(self) -> None:
        self.session.disconnect()

    def clear(self) -> None:
        self.history.clear()

    def switch_transport(self, kind: str, factory: Optional[TransportFactory] = None) -> TransportSession:
        """Tear down the current session completely, then build one for `kind`."""
        kind = kind.lower()
        if kind not in TRANSPORTS:
            raise ValueError(f"Unsupported transport '{kind}'")
        self.session.disconnect()
        self.config.transport = kind
        self.kind = kind
        self.session = self._build_session(self.kind, factory)
        self.commands = CommandDispatcher(self.session, self.state)
        logger.info("Switched transport to %s", self.kind)
        return self.session

    @property
    def relay_update_count(self) -> int:
        return self._relay_updates

    def wait_for_relays(self, timeout: float, since: Optional[int] = None) -> Optional[RelayState]:
        """
        Block until the device reports its relay state, or return None on timeout.

        Pass `since=relay_update_count` captured before sending a command so a
        reply arriving before the wait starts is not missed.
        """
        with self._relay_update:
            seen = self._relay_updates if since is None else since
            if not self._relay_update.wait_for(lambda: self._relay_updates != seen, timeout):
                return None
        return self.state.relays

    def stats(self) -> dict[str, int]:
        stats = self.session.stats()
        stats["channels"] = len(self.history.channels())
        return stats

    def run(self, interval: float = 1.0, on_tick: Optional[Callable[["TelemetryMonitor"], None]] = None) -> None:
        """Connect and poll until interrupted or reconnects are exhausted."""
        interval_sec = max(float(self.config.stats_log_interval), 5.0)
        next_log = time.monotonic() + interval_sec
        self.connect()
        try:
            while not self.session.terminal:
                time.sleep(interval)
                if on_tick is not None:
                    on_tick(self)
                if time.monotonic() >= next_log:
                    self._log_stats()
                    next_log = time.monotonic() + interval_sec
        except KeyboardInterrupt:
            logger.info("Stopping monitor (Ctrl+C)")
        finally:
            self.disconnect()
            self._log_stats()

    def _build_session(self, kind: str, factory: Optional[TransportFactory]) -> TransportSession:
        max_attempts, delay = self.config.reconnect_limits(kind)
        kwargs = {}
        if self._timer_factory is not None:
            kwargs["timer_factory"] = self._timer_factory
        return TransportSession(
            factory or transport_factory(kind, self.config),
            self._on_event,
            policy=ReconnectPolicy(max_attempts=max_attempts, delay_sec=delay),
            **kwargs,
        )

    def _on_event(self, event: ParsedLine) -> None:
        if isinstance(event, RelayState):
            self.state.apply_relays(event)
            self._notify_relays()
            return
        self._apply_record(event)

    def _apply_record(self, record: TelemetryRecord) -> None:
        timestamp = self.history.clock()
        self.history.append_record(record.raw)
        self.state.apply_record(record)
        for channel, value in record.scalars.items():
            self.history.append(channel, timestamp, value, now=timestamp)
        if record.relays is not None:
            self._notify_relays()

    def _notify_relays(self) -> None:
        with self._relay_update:
            self._relay_updates += 1
            self._relay_update.notify_all()

    def _log_stats(self) -> None:
        stats = self.stats()
        logger.info(
            "state=%s records=%d relay_updates=%d parse_errors=%d discarded=%d connects=%d",
            self.session.state.value,
            stats.get("records", 0),
            stats.get("relay_updates", 0),
            stats.get("parse_errors", 0),
            stats.get("discarded", 0),
            stats.get("connects", 0),
        )
