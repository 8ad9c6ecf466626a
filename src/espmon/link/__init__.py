"""
Device link for the ESP32 telemetry/relay board.

The subpackage holds the ingestion core: transports (serial and websocket),
line framing, payload decoding for both firmware dialects, chart history,
reconnect policy and relay commands. Presentation layers only read snapshots
from `TelemetryMonitor` and issue commands through it.
"""

from .commands import CommandDispatcher
from .config import HistorySettings, LinkConfig, SerialSettings, SocketSettings, load_config
from .errors import CommandError, LinkError, NotConnectedError, TransportError
from .frames import FrameDecoder
from .history import HistoryBuffer, HistorySample, HistoryStore
from .monitor import TelemetryMonitor
from .payload import PayloadParser, RelayState, TelemetryRecord
from .reconnect import ReconnectPolicy
from .session import ConnectionState, TransportSession
from .state import TelemetrySnapshot, TelemetryState

__all__ = [
    "CommandDispatcher",
    "HistorySettings",
    "LinkConfig",
    "SerialSettings",
    "SocketSettings",
    "load_config",
    "CommandError",
    "LinkError",
    "NotConnectedError",
    "TransportError",
    "FrameDecoder",
    "HistoryBuffer",
    "HistorySample",
    "HistoryStore",
    "TelemetryMonitor",
    "PayloadParser",
    "RelayState",
    "TelemetryRecord",
    "ReconnectPolicy",
    "ConnectionState",
    "TransportSession",
    "TelemetrySnapshot",
    "TelemetryState",
]
