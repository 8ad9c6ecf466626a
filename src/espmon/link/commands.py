from __future__ import annotations

import logging

from .payload import RelayState
from .session import TransportSession
from .state import TelemetryState

logger = logging.getLogger(__name__)

STATUS = "STATUS"
ALL_ON = "ALL_ON"
ALL_OFF = "ALL_OFF"


def relay_command(relay: int, on: bool) -> str:
    return f"RELAY{relay}_{'ON' if on else 'OFF'}"


class CommandDispatcher:
    """
    Translate relay intents into wire commands.

    Local relay state is updated optimistically once the command is written;
    the device's next `STATE:` line overwrites it in full. A toggle racing an
    unrelated status line may briefly flip back; that is accepted.
    """

    def __init__(self, session: TransportSession, state: TelemetryState):
        self.session = session
        self.state = state

    def toggle_relay(self, relay: int) -> str:
        target = not self.state.relays.get(relay)
        command = relay_command(relay, target)
        self.session.send(command)
        self.state.set_relay(relay, target)
        logger.info("Relay %d -> %s", relay, "ON" if target else "OFF")
        return command

    def turn_all_on(self) -> str:
        self.session.send(ALL_ON)
        self.state.apply_relays(RelayState.uniform(True))
        return ALL_ON

    def turn_all_off(self) -> str:
        self.session.send(ALL_OFF)
        self.state.apply_relays(RelayState.uniform(False))
        return ALL_OFF

    def query_status(self) -> str:
        self.session.send(STATUS)
        return STATUS
