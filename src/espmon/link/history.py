from __future__ import annotations

import logging
import threading
import time
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, NamedTuple, Optional, Tuple

import numpy as np
import pandas as pd

MAX_POINTS = 120
WINDOW_MS = 120_000
RECORD_LIMIT = 100


def now_ms() -> int:
    return int(time.time() * 1000)


class HistorySample(NamedTuple):
    timestamp: int
    value: float


class HistoryBuffer:
    """
    Append-only sample buffer bounded by both count and age.

    After every append the buffer holds at most `max_points` samples and every
    retained sample is younger than `window_ms` relative to the append time.
    """

    def __init__(self, max_points: int = MAX_POINTS, window_ms: int = WINDOW_MS):
        if max_points <= 0:
            raise ValueError("max_points must be positive")
        self.max_points = max_points
        self.window_ms = window_ms
        self._samples: Deque[HistorySample] = deque(maxlen=max_points)

    def append(self, timestamp: int, value: float, now: int) -> HistorySample:
        if self._samples and timestamp < self._samples[-1].timestamp:
            # wall clock stepped backwards; keep the buffer monotonic
            timestamp = self._samples[-1].timestamp
        sample = HistorySample(int(timestamp), float(value))
        self._samples.append(sample)
        self.evict(now)
        return sample

    def evict(self, now: int) -> int:
        dropped = 0
        while self._samples and now - self._samples[0].timestamp >= self.window_ms:
            self._samples.popleft()
            dropped += 1
        return dropped

    def samples(self) -> List[HistorySample]:
        return list(self._samples)

    def __len__(self) -> int:
        return len(self._samples)


class HistoryStore:
    """Per-channel chart history plus a capped log of raw telemetry records."""

    def __init__(
        self,
        max_points: int = MAX_POINTS,
        window_ms: int = WINDOW_MS,
        record_limit: int = RECORD_LIMIT,
        clock: Callable[[], int] = now_ms,
    ):
        self.max_points = max_points
        self.window_ms = window_ms
        self.clock = clock
        self._lock = threading.Lock()
        self._channels: Dict[str, HistoryBuffer] = {}
        self._records: Deque[Tuple[str, Dict[str, Any]]] = deque(maxlen=record_limit)
        self._log = logging.getLogger(__name__)

    def append(self, channel: str, timestamp: int, value: float, now: Optional[int] = None) -> None:
        with self._lock:
            buffer = self._channels.get(channel)
            if buffer is None:
                buffer = HistoryBuffer(self.max_points, self.window_ms)
                self._channels[channel] = buffer
            buffer.append(timestamp, value, self.clock() if now is None else now)

    def append_record(self, record: Dict[str, Any]) -> None:
        stamp = datetime.now(timezone.utc).isoformat()
        with self._lock:
            self._records.append((stamp, dict(record)))

    def clear(self) -> None:
        with self._lock:
            self._channels.clear()
            self._records.clear()
        self._log.info("History cleared")

    def channels(self) -> List[str]:
        with self._lock:
            return sorted(self._channels)

    def series(self, channel: str) -> List[HistorySample]:
        with self._lock:
            buffer = self._channels.get(channel)
            return buffer.samples() if buffer is not None else []

    def records(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [{**record, "timestamp": stamp} for stamp, record in self._records]

    def as_arrays(self, channel: str) -> tuple[np.ndarray, np.ndarray]:
        samples = self.series(channel)
        timestamps = np.array([sample.timestamp for sample in samples], dtype=np.int64)
        values = np.array([sample.value for sample in samples], dtype=float)
        return timestamps, values

    def to_frame(self, channel: str) -> pd.DataFrame:
        samples = self.series(channel)
        df = pd.DataFrame(samples, columns=["timestamp", "value"])
        df["time"] = pd.to_datetime(df["timestamp"], unit="ms", utc=True)
        return df

    def records_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.records())
