from __future__ import annotations

from typer.testing import CliRunner

from espmon.cli import app


class RelayBoard:
    """Minimal device double answering commands with STATE lines."""

    def __init__(self, transport_cls):
        self.relays = [False, True, False, False]
        self.transport = transport_cls(responder=self.respond)

    def respond(self, command: str):
        if command == "ALL_ON":
            self.relays = [True] * 4
        elif command.startswith("RELAY"):
            self.relays[int(command[5]) - 1] = command.endswith("_ON")
        return "STATE:" + ",".join("1" if on else "0" for on in self.relays) + "\n"


def test_relay_toggle_uses_device_state(monkeypatch, transport_cls) -> None:
    board = RelayBoard(transport_cls)
    monkeypatch.setattr("espmon.link.monitor.transport_factory", lambda kind, cfg: lambda: board.transport)
    result = CliRunner().invoke(app, ["relay", "toggle", "2", "--wait", "2"])
    assert result.exit_code == 0, result.output
    assert "Sent RELAY2_OFF" in result.output
    assert "Relays: 0000" in result.output
    assert board.transport.closed


def test_relay_all_on(monkeypatch, transport_cls) -> None:
    board = RelayBoard(transport_cls)
    monkeypatch.setattr("espmon.link.monitor.transport_factory", lambda kind, cfg: lambda: board.transport)
    result = CliRunner().invoke(app, ["--transport", "socket", "relay", "on"])
    assert result.exit_code == 0, result.output
    assert "Relays: 1111" in result.output


def test_relay_command_reports_connection_failure(monkeypatch, transport_cls) -> None:
    failing = transport_cls(fail_open=True)
    monkeypatch.setattr("espmon.link.monitor.transport_factory", lambda kind, cfg: lambda: failing)
    result = CliRunner().invoke(app, ["relay", "status"])
    assert result.exit_code == 1
    assert "Connection failed" in result.output


def test_invalid_relay_number(monkeypatch) -> None:
    result = CliRunner().invoke(app, ["relay", "toggle", "5"])
    assert result.exit_code != 0
