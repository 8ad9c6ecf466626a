from __future__ import annotations

import numpy as np

from espmon.link.history import MAX_POINTS, WINDOW_MS, HistoryBuffer, HistoryStore


def test_buffer_is_count_capped() -> None:
    buffer = HistoryBuffer()
    for ts in range(500):
        buffer.append(ts, float(ts), now=ts)
        assert len(buffer) <= MAX_POINTS
    samples = buffer.samples()
    assert len(samples) == MAX_POINTS
    assert samples[0].timestamp == 500 - MAX_POINTS
    assert samples[-1].value == 499.0


def test_buffer_is_time_windowed() -> None:
    buffer = HistoryBuffer()
    for ts in range(0, 600_000, 2_000):
        buffer.append(ts, 1.0, now=ts)
        assert all(ts - sample.timestamp < WINDOW_MS for sample in buffer.samples())
    # 2 s spacing inside a 120 s window leaves 60 samples, below the count cap
    assert len(buffer) == WINDOW_MS // 2_000


def test_old_samples_are_evicted_on_next_append() -> None:
    buffer = HistoryBuffer(max_points=10, window_ms=1_000)
    buffer.append(0, 1.0, now=0)
    buffer.append(500, 2.0, now=500)
    buffer.append(1_000, 3.0, now=1_000)
    assert [sample.timestamp for sample in buffer.samples()] == [500, 1_000]


def test_timestamps_never_go_backwards() -> None:
    buffer = HistoryBuffer()
    buffer.append(1_000, 1.0, now=1_000)
    buffer.append(900, 2.0, now=1_000)
    assert [sample.timestamp for sample in buffer.samples()] == [1_000, 1_000]


def test_store_channels_and_clock() -> None:
    clock = iter(range(0, 10_000, 1_000))
    store = HistoryStore(clock=lambda: next(clock))
    store.append("voltage", 0, 48.0)
    store.append("temperature", 1_000, 40.0)
    assert store.channels() == ["temperature", "voltage"]
    assert store.series("voltage")[0].value == 48.0
    assert store.series("missing") == []
    timestamps, values = store.as_arrays("temperature")
    assert timestamps.dtype == np.int64
    assert np.isclose(values[0], 40.0)
    frame = store.to_frame("voltage")
    assert list(frame.columns) == ["timestamp", "value", "time"]
    assert len(frame) == 1


def test_record_log_is_capped_and_timestamped() -> None:
    store = HistoryStore(record_limit=100)
    for idx in range(150):
        store.append_record({"seq": idx})
    records = store.records()
    assert len(records) == 100
    assert records[0]["seq"] == 50
    assert records[-1]["seq"] == 149
    assert "T" in records[-1]["timestamp"]
    assert len(store.records_frame()) == 100


def test_clear_empties_everything() -> None:
    store = HistoryStore(clock=lambda: 0)
    store.append("voltage", 0, 1.0)
    store.append_record({"voltage": 1.0})
    store.clear()
    assert store.channels() == []
    assert store.records() == []
