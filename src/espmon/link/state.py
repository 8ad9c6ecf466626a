from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

import numpy as np

from .payload import RelayState, TelemetryRecord

GRAVITY = 9.8
CRITICAL_TEMP_C = 120.0

# Temperatures considered for the critical flag; ambient is excluded.
CRITICAL_TEMP_FIELDS = ("motor_temp", "temperature", "battery_temp")


@dataclass(frozen=True)
class Acceleration:
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    magnitude: float = 0.0


@dataclass(frozen=True)
class Orientation:
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


@dataclass(frozen=True)
class Calibration:
    gyro: float = 0.0
    sys: float = 0.0
    magneto: float = 0.0


@dataclass(frozen=True)
class TelemetrySnapshot:
    """Latest known value of every channel; read-only view for consumers."""

    voltage: float = 0.0
    voltage_lvs: float = 0.0
    voltage_inverter: float = 0.0
    voltage_contactor: float = 0.0
    temperature: float = 0.0
    motor_temp: float = 0.0
    ambient_temp: float = 0.0
    battery_temp: float = 0.0
    gap_height: float = 0.0
    lidar_quality: float = 0.0
    acceleration: Acceleration = field(default_factory=Acceleration)
    speed: float = 0.0
    orientation: Orientation = field(default_factory=Orientation)
    calibration: Calibration = field(default_factory=Calibration)
    relays: RelayState = field(default_factory=RelayState)
    critical_temperature: bool = False
    updated_at: Optional[float] = None


def acceleration_magnitude(x: float, y: float, z: float) -> float:
    return float(np.linalg.norm([x, y, z]))


def speed_estimate(magnitude: float) -> float:
    """Crude speed proxy: deviation of the acceleration magnitude from gravity."""
    return max(0.0, abs(magnitude - GRAVITY))


class TelemetryState:
    """
    Aggregated latest-value view of the device.

    Records only overwrite the fields they carry. Relay state is written
    optimistically by commands and overwritten in full by any authoritative
    update from the device.
    """

    def __init__(self, critical_temp_c: float = CRITICAL_TEMP_C):
        self.critical_temp_c = critical_temp_c
        self._lock = threading.Lock()
        self._snapshot = TelemetrySnapshot()

    def snapshot(self) -> TelemetrySnapshot:
        with self._lock:
            return self._snapshot

    @property
    def relays(self) -> RelayState:
        return self.snapshot().relays

    def apply_record(self, record: TelemetryRecord) -> TelemetrySnapshot:
        changes: Dict[str, Any] = dict(record.scalars)
        accel = record.vectors.get("acceleration")
        if accel is not None:
            magnitude = acceleration_magnitude(*accel)
            changes["acceleration"] = Acceleration(*accel, magnitude=magnitude)
            changes["speed"] = speed_estimate(magnitude)
        orientation = record.vectors.get("orientation")
        if orientation is not None:
            changes["orientation"] = Orientation(*orientation)
        calibration = record.vectors.get("calibration")
        if calibration is not None:
            changes["calibration"] = Calibration(*calibration)
        if record.relays is not None:
            changes["relays"] = record.relays
        with self._lock:
            updated = replace(self._snapshot, **changes, updated_at=time.time())
            if any(name in record.scalars for name in CRITICAL_TEMP_FIELDS):
                hottest = max(getattr(updated, name) for name in CRITICAL_TEMP_FIELDS)
                updated = replace(updated, critical_temperature=hottest > self.critical_temp_c)
            self._snapshot = updated
            return updated

    def apply_relays(self, relays: RelayState) -> None:
        with self._lock:
            self._snapshot = replace(self._snapshot, relays=relays)

    def set_relay(self, relay: int, value: bool) -> RelayState:
        with self._lock:
            relays = self._snapshot.relays.with_relay(relay, value)
            self._snapshot = replace(self._snapshot, relays=relays)
            return relays
