from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, Optional, Tuple, Union

RELAY_COUNT = 4
STATE_MARKER = "STATE:"

Vector3 = Tuple[float, float, float]

# Raw payload key -> canonical field. Both firmware dialects resolve here.
SCALAR_FIELDS: Dict[str, str] = {
    "voltage": "voltage",
    "VB1": "voltage_lvs",
    "VB2": "voltage_inverter",
    "VB3": "voltage_contactor",
    "objectTemp": "temperature",
    "object_temp": "temperature",
    "dsTemperature": "motor_temp",
    "ambientTemp": "ambient_temp",
    "mlxTemperature": "battery_temp",
    "lidarDistance": "gap_height",
    "gap_height": "gap_height",
    "lidarQuality": "lidar_quality",
}

VECTOR_FIELDS: Dict[str, str] = {
    "accel": "acceleration",
    "acceleration": "acceleration",
    "orientation": "orientation",
    "calibration": "calibration",
}

RELAY_FIELD = "relayStates"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RelayState:
    relay1: bool = False
    relay2: bool = False
    relay3: bool = False
    relay4: bool = False

    @classmethod
    def uniform(cls, value: bool) -> "RelayState":
        return cls(*([bool(value)] * RELAY_COUNT))

    @classmethod
    def from_tokens(cls, tokens: Iterable[str]) -> "RelayState":
        values = [token.strip() == "1" for token in tokens]
        if len(values) != RELAY_COUNT:
            raise ValueError(f"Expected {RELAY_COUNT} relay tokens, got {len(values)}")
        return cls(*values)

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "RelayState":
        keys = [f"relay{idx}" for idx in range(1, RELAY_COUNT + 1)]
        missing = [key for key in keys if key not in data]
        if missing:
            raise ValueError(f"relay state is missing {missing}")
        return cls(*(bool(data[key]) for key in keys))

    def get(self, relay: int) -> bool:
        return getattr(self, _relay_key(relay))

    def with_relay(self, relay: int, value: bool) -> "RelayState":
        return replace(self, **{_relay_key(relay): bool(value)})

    def as_dict(self) -> Dict[str, bool]:
        return {f"relay{idx}": self.get(idx) for idx in range(1, RELAY_COUNT + 1)}


def _relay_key(relay: int) -> str:
    if relay not in range(1, RELAY_COUNT + 1):
        raise ValueError(f"Relay number must be 1..{RELAY_COUNT}, got {relay!r}")
    return f"relay{relay}"


@dataclass
class TelemetryRecord:
    """One decoded telemetry payload. Only the fields the device sent are present."""

    scalars: Dict[str, float] = field(default_factory=dict)
    vectors: Dict[str, Vector3] = field(default_factory=dict)
    relays: Optional[RelayState] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    def get(self, name: str) -> Optional[float]:
        return self.scalars.get(name)

    @property
    def empty(self) -> bool:
        return not self.scalars and not self.vectors and self.relays is None


ParsedLine = Union[TelemetryRecord, RelayState]


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        number = float(value)
    except OverflowError:
        return None
    return number if math.isfinite(number) else None


def _as_vector(value: Any) -> Optional[Vector3]:
    if not isinstance(value, list) or len(value) < 3:
        return None
    numbers = [_as_number(item) for item in value[:3]]
    if any(number is None for number in numbers):
        return None
    return (numbers[0], numbers[1], numbers[2])  # type: ignore[return-value]


def decode_record(data: Dict[str, Any]) -> TelemetryRecord:
    """Normalise a decoded JSON object into canonical telemetry fields."""
    record = TelemetryRecord(raw=dict(data))
    for key, value in data.items():
        if key in SCALAR_FIELDS:
            number = _as_number(value)
            if number is not None:
                record.scalars[SCALAR_FIELDS[key]] = number
        elif key in VECTOR_FIELDS:
            vector = _as_vector(value)
            if vector is not None:
                record.vectors[VECTOR_FIELDS[key]] = vector
        elif key == RELAY_FIELD and isinstance(value, dict):
            try:
                record.relays = RelayState.from_mapping(value)
            except ValueError as exc:
                logger.debug("Ignoring malformed %s (%s): %r", RELAY_FIELD, exc, value)
    return record


class PayloadParser:
    """
    Classify decoded lines as telemetry objects or relay status lines.

    Lines starting with `{` are decoded as JSON; otherwise a `STATE:` marker
    yields a relay snapshot. Everything else is dropped. Bad lines only bump
    counters, they never raise.
    """

    def __init__(self) -> None:
        self._stats: Dict[str, int] = {
            "records": 0,
            "relay_updates": 0,
            "parse_errors": 0,
            "discarded": 0,
        }
        self._log = logging.getLogger(__name__)

    def parse(self, line: str) -> Optional[ParsedLine]:
        stripped = line.strip()
        if stripped.startswith("{"):
            return self._parse_json(stripped)
        if STATE_MARKER in stripped:
            return self._parse_state(stripped)
        self._stats["discarded"] += 1
        self._log.debug("Ignoring unrecognised line: %r", stripped)
        return None

    def _parse_json(self, line: str) -> Optional[TelemetryRecord]:
        try:
            data = json.loads(line)
        except ValueError as exc:
            self._stats["parse_errors"] += 1
            self._log.debug("JSON parse error (%s): %r", exc, line)
            return None
        if not isinstance(data, dict):
            self._stats["parse_errors"] += 1
            self._log.debug("Telemetry payload is not an object: %r", line)
            return None
        try:
            record = decode_record(data)
        except (TypeError, ValueError, OverflowError) as exc:
            self._stats["parse_errors"] += 1
            self._log.debug("Telemetry decode error (%s): %r", exc, line)
            return None
        self._stats["records"] += 1
        return record

    def _parse_state(self, line: str) -> Optional[RelayState]:
        tokens = line.split(STATE_MARKER, 1)[1].strip().split(",")
        try:
            state = RelayState.from_tokens(tokens)
        except ValueError:
            self._stats["discarded"] += 1
            self._log.debug("Malformed relay status line: %r", line)
            return None
        self._stats["relay_updates"] += 1
        return state

    def stats(self) -> Dict[str, int]:
        return dict(self._stats)
