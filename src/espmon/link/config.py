from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Sequence

TRANSPORTS = ("serial", "socket")


@dataclass
class SerialSettings:
    port: str = "/dev/ttyUSB0"
    baudrate: int = 115200
    timeout: float = 0.5
    max_reconnect_attempts: int = 0  # serial links need explicit re-selection
    reconnect_delay_sec: float = 3.0


@dataclass
class SocketSettings:
    url: str = "ws://localhost:8080"
    open_timeout: float = 10.0
    recv_timeout: float = 0.5
    max_reconnect_attempts: int = 5
    reconnect_delay_sec: float = 5.0


@dataclass
class HistorySettings:
    max_points: int = 120
    window_ms: int = 120_000
    record_limit: int = 100


@dataclass
class LinkConfig:
    transport: str = "serial"  # serial | socket
    serial: SerialSettings = field(default_factory=SerialSettings)
    socket: SocketSettings = field(default_factory=SocketSettings)
    history: HistorySettings = field(default_factory=HistorySettings)
    critical_temp_c: float = 120.0
    stats_log_interval: float = 60.0

    @property
    def transport_kind(self) -> str:
        kind = self.transport.lower()
        if kind not in TRANSPORTS:
            raise ValueError(f"Unsupported transport '{self.transport}'")
        return kind

    def reconnect_limits(self, kind: str) -> tuple[int, float]:
        if kind == "socket":
            return self.socket.max_reconnect_attempts, self.socket.reconnect_delay_sec
        return self.serial.max_reconnect_attempts, self.serial.reconnect_delay_sec


def _load_json(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {**base}
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merged[key] = _merge(base[key], value)  # type: ignore[index]
        else:
            merged[key] = value
    return merged


def load_config(path: Path | str | None = None, overrides: Sequence[str] | None = None) -> LinkConfig:
    """
    Load the link configuration from JSON and apply CLI-style overrides.

    Without a path the built-in defaults are used. Overrides are dotted
    `key=value` pairs, e.g.:
        ["transport=socket", "socket.url=ws://10.0.0.5:8080"]
    """
    data: Dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(config_path)
        data = _load_json(config_path)
    override_data: Dict[str, Any] = {}
    for override in overrides or []:
        key, raw_value = _parse_override(override)
        _assign_nested(override_data, key, raw_value)
    merged = _merge(data, override_data)

    serial_data = merged.get("serial") or {}
    socket_data = merged.get("socket") or {}
    history_data = merged.get("history") or {}
    config = LinkConfig(
        transport=str(merged.get("transport", "serial")),
        serial=SerialSettings(
            port=str(serial_data.get("port", "/dev/ttyUSB0")),
            baudrate=int(serial_data.get("baudrate", 115200)),
            timeout=float(serial_data.get("timeout", 0.5)),
            max_reconnect_attempts=int(serial_data.get("max_reconnect_attempts", 0)),
            reconnect_delay_sec=float(serial_data.get("reconnect_delay_sec", 3.0)),
        ),
        socket=SocketSettings(
            url=str(socket_data.get("url", "ws://localhost:8080")),
            open_timeout=float(socket_data.get("open_timeout", 10.0)),
            recv_timeout=float(socket_data.get("recv_timeout", 0.5)),
            max_reconnect_attempts=int(socket_data.get("max_reconnect_attempts", 5)),
            reconnect_delay_sec=float(socket_data.get("reconnect_delay_sec", 5.0)),
        ),
        history=HistorySettings(
            max_points=int(history_data.get("max_points", 120)),
            window_ms=int(history_data.get("window_ms", 120_000)),
            record_limit=int(history_data.get("record_limit", 100)),
        ),
        critical_temp_c=float(merged.get("critical_temp_c", 120.0)),
        stats_log_interval=float(merged.get("stats_log_interval", 60.0)),
    )
    if config.transport.lower() not in TRANSPORTS:
        raise ValueError(f"Unsupported transport '{config.transport}'")
    return config


def _parse_override(item: str) -> tuple[str, Any]:
    if "=" not in item:
        raise ValueError(f"Override '{item}' must use key=value syntax")
    key, raw_value = item.split("=", 1)
    key = key.strip()
    if not key:
        raise ValueError("Override key may not be empty")
    value = _coerce_value(raw_value.strip())
    return key, value


def _coerce_value(raw: str) -> Any:
    if raw.lower() in {"true", "false"}:
        return raw.lower() == "true"
    try:
        if "." in raw or "e" in raw.lower():
            return float(raw)
        return int(raw)
    except ValueError:
        pass
    if raw.startswith("[") and raw.endswith("]"):
        return json.loads(raw)
    if raw.startswith("{") and raw.endswith("}"):
        return json.loads(raw)
    return raw


def _assign_nested(target: Dict[str, Any], dotted_key: str, value: Any) -> None:
    cursor = target
    parts = dotted_key.split(".")
    for part in parts[:-1]:
        cursor = cursor.setdefault(part, {})
    cursor[parts[-1]] = value
