"""Tests for sysgraph.views, driven by fake collectors."""

from __future__ import annotations

import copy
from collections.abc import Iterator
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from sysgraph.collectors import (
    CpuSample,
    DiskRates,
    GpuSample,
    MemorySample,
    NetCounters,
    ProcessRow,
    ProcessSample,
)
from sysgraph.config import DEFAULT_CONFIG
from sysgraph.graph import OVERLAP_LABEL_WIDTH, PERCENT_LABEL_WIDTH
from sysgraph.metrics import AlertGate, CpuTicks
from sysgraph.views import (
    PROCESS_HEADER,
    CpuView,
    DiskView,
    GpuView,
    MemoryView,
    NetworkView,
    ProcessView,
    kbps_bucket,
)


@pytest.fixture
def config() -> dict[str, Any]:
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    cfg["graph"] = {"height": 10, "width": 10}
    return cfg


@pytest.fixture(autouse=True)
def dispatch() -> Iterator[MagicMock]:
    # No bell threads during tests
    with patch.object(AlertGate, "dispatch") as mock:
        yield mock


def test_kbps_bucket() -> None:
    assert kbps_bucket(0) == 0
    assert kbps_bucket(511) == 0
    assert kbps_bucket(512) == 1
    assert kbps_bucket(2_000_000) == 1953


# ── CPU ────────────────────────────────────────────────────────────────────


class TestCpuView:
    def _collector(self, first: CpuTicks, second: CpuTicks) -> MagicMock:
        collector = MagicMock()
        collector.read_ticks.return_value = first
        collector.collect.return_value = CpuSample(ticks=second, frequency_mhz=2400.0, processes=300)
        return collector

    def test_half_busy(self, config: dict[str, Any]) -> None:
        collector = self._collector(CpuTicks(1000, 900), CpuTicks(1200, 1000))
        view = CpuView(config, collector=collector)
        view.start(0.0)
        frame = view.step(1.0)
        assert frame.header == ["CPU Usage:  50%"]
        assert view.series.latest == 50
        assert frame.alerted is False
        assert frame.graph is not None
        assert frame.graph.width == 10
        assert frame.graph.label_width == PERCENT_LABEL_WIDTH
        assert "Avg Frequency         : 2400 MHz" in frame.details
        assert "Threads               : N/A" in frame.details

    def test_busy_triggers_alert(self, config: dict[str, Any], dispatch: MagicMock) -> None:
        collector = self._collector(CpuTicks(1000, 900), CpuTicks(1100, 905))
        view = CpuView(config, collector=collector)
        view.start(0.0)
        frame = view.step(1.0)
        assert frame.header == ["CPU Usage:  95%"]
        assert frame.alerted is True
        dispatch.assert_called_once()

    def test_no_baseline_is_not_plotted(self, config: dict[str, Any]) -> None:
        collector = self._collector(CpuTicks(0, 0), CpuTicks(1200, 1000))
        view = CpuView(config, collector=collector)
        frame = view.step(1.0)
        assert frame.header == ["CPU Usage: N/A"]
        assert view.series.values() == [0] * 10

    def test_unreadable_ticks_shown_as_na(self, config: dict[str, Any]) -> None:
        collector = MagicMock()
        collector.read_ticks.return_value = CpuTicks(1000, 900)
        collector.collect.side_effect = [
            CpuSample(ticks=CpuTicks(1200, 1000)),
            CpuSample(ticks=None),
        ]
        view = CpuView(config, collector=collector)
        view.start(0.0)
        view.step(1.0)
        frame = view.step(2.0)
        assert frame.header == ["CPU Usage: N/A"]
        assert frame.alerted is False
        assert view.series.values()[-2:] == [50, 0]

    def test_width_override(self, config: dict[str, Any]) -> None:
        view = CpuView(config, width=4, collector=MagicMock())
        assert view.series.width == 4


# ── Memory ─────────────────────────────────────────────────────────────────


class TestMemoryView:
    def test_usage(self, config: dict[str, Any]) -> None:
        collector = MagicMock()
        collector.collect.return_value = MemorySample(total=4096, available=1024, buffers=100)
        view = MemoryView(config, collector=collector)
        frame = view.step(0.0)
        assert frame.header == ["Memory Usage:  75%"]
        assert view.series.latest == 75
        assert any(line.startswith(" Committed:   N/A") for line in frame.details)
        assert any(line.startswith(" Buffers:     100.0 B") for line in frame.details)

    def test_unavailable(self, config: dict[str, Any]) -> None:
        collector = MagicMock()
        collector.collect.return_value = None
        view = MemoryView(config, collector=collector)
        frame = view.step(0.0)
        assert frame.header == ["Memory Usage: N/A"]
        assert view.series.latest == 0
        assert view.intro() == ["Total Memory          : N/A"]

    def test_alert_over_threshold(self, config: dict[str, Any]) -> None:
        collector = MagicMock()
        collector.collect.return_value = MemorySample(total=100, available=5)
        frame = MemoryView(config, collector=collector).step(0.0)
        assert frame.alerted is True


# ── GPU ────────────────────────────────────────────────────────────────────


class TestGpuView:
    def test_utilization_and_vram(self, config: dict[str, Any]) -> None:
        collector = MagicMock()
        collector.collect.return_value = GpuSample(utilization=90.4, memory_used=512, memory_total=1024)
        view = GpuView(config, index=0, collector=collector)
        frame = view.step(0.0)
        assert frame.header == ["GPU Utilization:  90%"]
        assert frame.alerted is True
        assert frame.details[0] == "VRAM Usage        : 512 MiB / 1024 MiB (50.0%)"
        assert "Fan Speed         : N/A %" in frame.details

    def test_unavailable_plots_zero(self, config: dict[str, Any]) -> None:
        collector = MagicMock()
        collector.collect.return_value = GpuSample()
        view = GpuView(config, collector=collector)
        frame = view.step(0.0)
        assert frame.header == ["GPU Utilization: N/A"]
        assert frame.alerted is False
        assert view.series.latest == 0


# ── Network ────────────────────────────────────────────────────────────────


class TestNetworkView:
    def test_rate_scenario(self, config: dict[str, Any]) -> None:
        collector = MagicMock()
        collector.collect.side_effect = [NetCounters(1_000_000, 0), NetCounters(3_000_000, 1024)]
        view = NetworkView(config, "eth0", collector=collector)
        view.start(100.0)
        frame = view.step(101.0)
        assert frame.header == [f"Recv: {'1.9 MB/s':<15s} Send: {'1.0 KB/s':<15s}"]
        assert view.rx_series.latest == 1953
        assert view.tx_series.latest == 1
        assert frame.graph is not None
        assert frame.graph.label_width == OVERLAP_LABEL_WIDTH
        assert frame.graph.max_axis == 2000

    def test_first_tick_is_unknown(self, config: dict[str, Any]) -> None:
        collector = MagicMock()
        collector.collect.return_value = NetCounters(5_000, 5_000)
        view = NetworkView(config, "eth0", collector=collector)
        frame = view.step(1.0)
        assert frame.header[0].startswith("Recv: ...")
        assert view.rx_series.values() == [0] * 10

    def test_counter_reset_is_zero(self, config: dict[str, Any]) -> None:
        collector = MagicMock()
        collector.collect.side_effect = [NetCounters(9_000, 9_000), NetCounters(10, 10)]
        view = NetworkView(config, "eth0", collector=collector)
        view.start(0.0)
        frame = view.step(1.0)
        assert frame.header == [f"Recv: {'0.0 B/s':<15s} Send: {'0.0 B/s':<15s}"]

    def test_interface_gone(self, config: dict[str, Any]) -> None:
        collector = MagicMock()
        collector.collect.return_value = None
        view = NetworkView(config, "eth0", collector=collector)
        frame = view.step(1.0)
        assert frame.header == [f"Recv: {'N/A':<15s} Send: {'N/A':<15s}"]


# ── Disk ───────────────────────────────────────────────────────────────────


class TestDiskView:
    def test_rates(self, config: dict[str, Any]) -> None:
        collector = MagicMock(blocks=True)
        collector.collect.return_value = DiskRates(read_kbps=48.6, write_kbps=None)
        view = DiskView(config, "sda", collector=collector)
        assert view.blocking is True
        view.start(0.0)
        collector.start.assert_called_once()
        frame = view.step(1.0)
        assert frame.header == [f"Read: {'48.6 KB/s':<15s} Write: {'N/A':<15s}"]
        assert view.read_series.latest == 49
        assert view.write_series.latest == 0

    def test_non_blocking_collector(self, config: dict[str, Any]) -> None:
        view = DiskView(config, "sda", collector=MagicMock(blocks=False))
        assert view.blocking is False


# ── Processes ──────────────────────────────────────────────────────────────


def _row(pid: int, read: int | None, write: int | None) -> ProcessRow:
    return ProcessRow(
        pid=pid,
        user="alice",
        cpu_percent=1.0,
        memory_percent=0.5,
        vms=8192,
        rss=4096,
        status="S",
        started="10:00",
        cpu_time="00:00:01",
        command=f"proc{pid}",
        read_bytes=read,
        write_bytes=write,
    )


def _process_view(config: dict[str, Any], samples: list[list[ProcessRow]]) -> ProcessView:
    collector = MagicMock()
    collector.read_ticks.return_value = CpuTicks(1000, 900)
    collector.collect.side_effect = [
        ProcessSample(ticks=CpuTicks(1200, 1000), memory=MemorySample(total=1024, available=512), rows=rows)
        for rows in samples
    ]
    return ProcessView(config, collector=collector)


class TestProcessView:
    def test_rates_across_ticks(self, config: dict[str, Any]) -> None:
        view = _process_view(config, [[_row(1, 1000, 0)], [_row(1, 3048, 1024)]])
        view.start(10.0)
        first = view.step(11.0)
        assert "-" in first.details[0].split()
        second = view.step(12.0)
        assert "2.0 KB/s" in second.details[0]
        assert "1.0 KB/s" in second.details[0]
        assert "Update Interval: 1.0 s" in second.header[0]

    def test_header(self, config: dict[str, Any]) -> None:
        view = _process_view(config, [[]])
        view.start(0.0)
        frame = view.step(1.0)
        assert frame.header[1] == "Overall CPU:  50%   Overall Memory: 50.0% (512.0 B / 1.0 KB)"
        assert frame.header[3] == PROCESS_HEADER
        assert frame.details == []

    def test_unreadable_cpu_ticks(self, config: dict[str, Any]) -> None:
        collector = MagicMock()
        collector.read_ticks.return_value = CpuTicks(1000, 900)
        collector.collect.return_value = ProcessSample(ticks=None, memory=None, rows=[])
        view = ProcessView(config, collector=collector)
        view.start(0.0)
        frame = view.step(1.0)
        assert frame.header[1] == "Overall CPU: N/A   Overall Memory: N/A"

    def test_unreadable_counters(self, config: dict[str, Any]) -> None:
        view = _process_view(config, [[_row(7, None, None)]])
        view.start(0.0)
        frame = view.step(1.0)
        assert frame.details[0].count("0 B/s") == 2
        assert len(view.rates) == 0

    def test_exited_processes_pruned(self, config: dict[str, Any]) -> None:
        view = _process_view(config, [[_row(1, 0, 0), _row(2, 0, 0)], [_row(1, 10, 10)]])
        view.start(0.0)
        view.step(1.0)
        assert (2, "read") in view.rates
        view.step(2.0)
        assert (2, "read") not in view.rates
        assert (2, "write") not in view.rates
        assert (1, "read") in view.rates

    def test_pruning_disabled(self, config: dict[str, Any]) -> None:
        config["processes"]["prune_stale"] = False
        view = _process_view(config, [[_row(1, 0, 0), _row(2, 0, 0)], [_row(1, 10, 10)]])
        view.start(0.0)
        view.step(1.0)
        view.step(2.0)
        assert len(view.rates) == 4
