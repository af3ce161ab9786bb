"""Cycle rate / latency monitor."""

from __future__ import annotations

import pytest

from desk_labels.monitoring.cycle_monitor import CycleMonitor


def test_rate_and_latency():
    monitor = CycleMonitor(smoothing=0.5, log_every=0)
    monitor.record(2.0, timestamp=0.0)
    assert monitor.rate_hz == 0.0

    monitor.record(4.0, timestamp=0.1)
    assert monitor.rate_hz == pytest.approx(10.0)

    monitor.record(6.0, timestamp=0.15)
    assert monitor.rate_hz == pytest.approx(15.0)
    assert monitor.avg_latency_ms == pytest.approx(4.0)
    assert monitor.cycle_count == 3


def test_drops_and_reset():
    monitor = CycleMonitor(log_every=1)
    monitor.record_drop()
    monitor.record_drop(2)
    monitor.record(1.0, timestamp=1.0)

    stats = monitor.get_stats()
    assert stats["dropped_tensors"] == 3
    assert stats["last_latency_ms"] == 1.0

    monitor.reset()
    assert monitor.get_stats() == {
        "rate_hz": 0.0,
        "cycle_count": 0,
        "last_latency_ms": 0.0,
        "avg_latency_ms": 0.0,
        "dropped_tensors": 0,
    }


def test_smoothing_is_clamped():
    assert CycleMonitor(smoothing=3.0).smoothing == 1.0
    assert CycleMonitor(smoothing=-1.0).smoothing == 0.0
