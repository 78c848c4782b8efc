"""Monitor views: one loop body per metric domain.

A view owns all rolling state for its domain (time series, rate trackers,
previous CPU ticks) and turns one tick of collector output into a
:class:`Frame`. Views know nothing about curses; ``sysgraph.dashboard``
drives ``start()``/``step()`` and draws the frames.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Hashable
from dataclasses import dataclass, field
from typing import Any

from sysgraph import collectors
from sysgraph.collectors import NOT_AVAILABLE
from sysgraph.graph import Graph, render_overlap, render_percent
from sysgraph.metrics import (
    AlertGate,
    CpuUsageTracker,
    RateTracker,
    TimeSeries,
    format_bytes,
    percent_of,
    terminal_bell,
)


@dataclass
class Frame:
    """Everything one tick of a view puts on screen."""

    header: list[str] = field(default_factory=lambda: list[str]())
    graph: Graph | None = None
    details: list[str] = field(default_factory=lambda: list[str]())
    alerted: bool = False


def _na(value: Any, fmt: str = "{}") -> str:
    return NOT_AVAILABLE if value is None else fmt.format(value)


def _bytes_or_na(value: int | None) -> str:
    return NOT_AVAILABLE if value is None else format_bytes(value)


def kbps_bucket(bytes_per_second: float) -> int:
    """Round a byte rate to the nearest whole KB/s for graph storage."""
    return int((bytes_per_second + 512) // 1024)


class MonitorView:
    """Shared configuration and state for every view."""

    title = ""
    palette: tuple[str, ...] = ("cyan",)

    def __init__(
        self,
        config: dict[str, Any],
        width: int | None = None,
        bell: Callable[[], None] = terminal_bell,
    ) -> None:
        graph_cfg = config["graph"]
        alert_cfg = config["alerts"]
        self.height = int(graph_cfg["height"])
        self.width = int(width if width is not None else graph_cfg["width"])
        self.delay = float(config["delay"])
        self.alert_gate = AlertGate(
            threshold=int(alert_cfg["threshold"]),
            pulses=int(alert_cfg["pulses"]),
            pulse_gap=float(alert_cfg["pulse_gap"]),
            cooldown=float(alert_cfg["cooldown"]),
            bell=bell,
        )

    @property
    def blocking(self) -> bool:
        """True when ``step()`` itself waits about one interval."""
        return False

    def intro(self) -> list[str]:
        """Static lines shown once above the live area."""
        return []

    def start(self, now: float) -> None:
        """Seed previous-value state before the first tick."""

    def step(self, now: float) -> Frame:
        raise NotImplementedError


# ── Single-series percentage views ──────────────────────────────────────────


class CpuView(MonitorView):
    title = "CPU Monitoring (Real-time)"
    palette = ("cyan",)

    def __init__(
        self,
        config: dict[str, Any],
        width: int | None = None,
        bell: Callable[[], None] = terminal_bell,
        collector: collectors.CpuCollector | None = None,
    ) -> None:
        super().__init__(config, width, bell)
        self.collector = collector or collectors.CpuCollector()
        self.usage = CpuUsageTracker()
        self.series = TimeSeries(self.width)

    def intro(self) -> list[str]:
        logical, physical = collectors.core_counts()
        return [
            f"Logical Cores (Threads): {_na(logical)}",
            f"Physical Cores         : {_na(physical)}",
        ]

    def start(self, now: float) -> None:
        self.usage.observe(self.collector.read_ticks())

    def step(self, now: float) -> Frame:
        sample = self.collector.collect()
        usage = self.usage.observe(sample.ticks)
        if sample.ticks is None:
            # unreadable counters plot as zero, shown as N/A
            self.series.push(None)
        elif usage is not None:
            self.series.push(usage)

        header = f"CPU Usage: {usage:3d}%" if usage is not None else "CPU Usage: N/A"
        return Frame(
            header=[header],
            graph=render_percent(self.series, self.height, now=time.time()),
            details=[
                f"Avg Frequency         : {_na(sample.frequency_mhz, '{:.0f}')} MHz",
                f"Processes             : {_na(sample.processes)}",
                f"Threads               : {_na(sample.threads)}",
                f"Open File Handles     : {_na(sample.file_handles)}",
            ],
            alerted=usage is not None and self.alert_gate.check(usage),
        )


class MemoryView(MonitorView):
    title = "Memory Usage Monitoring (Real-time)"
    palette = ("green",)

    def __init__(
        self,
        config: dict[str, Any],
        width: int | None = None,
        bell: Callable[[], None] = terminal_bell,
        collector: collectors.MemoryCollector | None = None,
    ) -> None:
        super().__init__(config, width, bell)
        self.collector = collector or collectors.MemoryCollector()
        self.series = TimeSeries(self.width)

    def intro(self) -> list[str]:
        sample = self.collector.collect()
        total = _bytes_or_na(sample.total if sample else None)
        return [f"Total Memory          : {total}"]

    def step(self, now: float) -> Frame:
        mem = self.collector.collect()
        graph_now = time.time()
        if mem is None:
            self.series.push(None)
            return Frame(
                header=["Memory Usage: N/A"],
                graph=render_percent(self.series, self.height, now=graph_now),
                details=[" Memory counters unavailable"],
            )

        usage = percent_of(mem.used, mem.total)
        self.series.push(usage)

        cached = None if mem.cached is None else mem.cached + (mem.slab or 0)
        details = [
            f" In Use:      {format_bytes(mem.used):<10s} "
            f"Available: {format_bytes(mem.available):<10s} Total: {format_bytes(mem.total):<10s}",
            f" Committed:   {_bytes_or_na(mem.committed):<10s} "
            f"Limit:     {_bytes_or_na(mem.commit_limit):<10s} Cached: {_bytes_or_na(cached):<10s}",
            f" Buffers:     {_bytes_or_na(mem.buffers):<10s} "
            f"Swap Used: {format_bytes(mem.swap_used):<10s} Total: {format_bytes(mem.swap_total):<10s}",
            f" Paged Pool:  {_bytes_or_na(mem.page_tables):<10s} "
            f"Non-Paged: {_bytes_or_na(mem.slab):<10s}",
        ]
        return Frame(
            header=[f"Memory Usage: {usage:3d}%"],
            graph=render_percent(self.series, self.height, now=graph_now),
            details=details,
            alerted=self.alert_gate.check(usage),
        )


class GpuView(MonitorView):
    title = "GPU Monitoring"
    palette = ("magenta",)

    def __init__(
        self,
        config: dict[str, Any],
        index: int = 0,
        width: int | None = None,
        bell: Callable[[], None] = terminal_bell,
        collector: collectors.GpuCollector | None = None,
    ) -> None:
        super().__init__(config, width, bell)
        self.index = index
        self.collector = collector or collectors.GpuCollector(index)
        self.series = TimeSeries(self.width)

    def intro(self) -> list[str]:
        info = collectors.gpu_info(self.index)
        return [
            f"GPU Model             : {_na(info.name)}",
            f"VRAM Total            : {_na(info.memory_total, '{:.0f}')} MiB",
            f"Driver Version        : {_na(info.driver_version)}",
        ]

    def step(self, now: float) -> Frame:
        gpu = self.collector.collect()
        usage = None if gpu.utilization is None else max(0, min(100, round(gpu.utilization)))
        self.series.push(usage)

        vram_pct = None
        if gpu.memory_used is not None and gpu.memory_total:
            vram_pct = gpu.memory_used / gpu.memory_total * 100

        header = f"GPU Utilization: {usage:3d}%" if usage is not None else "GPU Utilization: N/A"
        return Frame(
            header=[header],
            graph=render_percent(self.series, self.height, now=time.time()),
            details=[
                f"VRAM Usage        : {_na(gpu.memory_used, '{:.0f}')} MiB / "
                f"{_na(gpu.memory_total, '{:.0f}')} MiB ({_na(vram_pct, '{:.1f}')}%)",
                f"Power Draw        : {_na(gpu.power, '{:.1f}')} W",
                f"Temperature       : {_na(gpu.temperature, '{:.0f}')} °C",
                f"Fan Speed         : {_na(gpu.fan, '{:.0f}')} %",
                f"Performance State : {_na(gpu.pstate)}",
                f"GPU Clock         : {_na(gpu.graphics_clock, '{:.0f}')} MHz",
                f"Memory Clock      : {_na(gpu.memory_clock, '{:.0f}')} MHz",
                f"GPU Processes     : {_na(gpu.processes)}",
            ],
            alerted=usage is not None and self.alert_gate.check(usage),
        )


# ── Dual-series throughput views ────────────────────────────────────────────


class NetworkView(MonitorView):
    title = "Real-time Network I/O Monitoring"
    palette = ("cyan", "magenta", "blue")

    def __init__(
        self,
        config: dict[str, Any],
        interface: str,
        width: int | None = None,
        bell: Callable[[], None] = terminal_bell,
        collector: collectors.NetworkCollector | None = None,
    ) -> None:
        super().__init__(config, width, bell)
        self.interface = interface
        self.collector = collector or collectors.NetworkCollector(interface)
        self.rates = RateTracker()
        self.rx_series = TimeSeries(self.width)
        self.tx_series = TimeSeries(self.width)

    def intro(self) -> list[str]:
        info = collectors.interface_info(self.interface)
        return [
            f"Network Info: {self.interface}",
            f"Status        : {info.state}",
            f"MAC Address   : {_na(info.mac)}",
            f"IPv4 Address  : {_na(info.ipv4)}",
            f"IPv6 Address  : {_na(info.ipv6)}",
            f"Speed         : {_na(info.speed_mbps)} Mbits/s",
            f"Duplex        : {_na(info.duplex)}",
            f"MTU           : {_na(info.mtu)}",
        ]

    def _observe(self, now: float) -> tuple[float | None, float | None] | None:
        counters = self.collector.collect()
        if counters is None:
            return None
        rx = self.rates.observe((self.interface, "rx"), counters.rx_bytes, now)
        tx = self.rates.observe((self.interface, "tx"), counters.tx_bytes, now)
        return rx, tx

    def start(self, now: float) -> None:
        self._observe(now)

    def step(self, now: float) -> Frame:
        observed = self._observe(now)
        if observed is None:
            rx_text = tx_text = NOT_AVAILABLE
            self.rx_series.push(0)
            self.tx_series.push(0)
        else:
            rx, tx = observed
            rx_text = format_bytes(rx, per_second=True) if rx is not None else "..."
            tx_text = format_bytes(tx, per_second=True) if tx is not None else "..."
            if rx is not None and tx is not None:
                self.rx_series.push(kbps_bucket(rx))
                self.tx_series.push(kbps_bucket(tx))

        return Frame(
            header=[f"Recv: {rx_text:<15s} Send: {tx_text:<15s}"],
            graph=render_overlap(
                self.rx_series,
                self.tx_series,
                self.height,
                titles=("Recv (KB/s)", "Send (KB/s)"),
                now=time.time(),
            ),
        )


class DiskView(MonitorView):
    title = "Real-time Disk I/O Monitoring"
    palette = ("blue", "yellow", "cyan")

    def __init__(
        self,
        config: dict[str, Any],
        disk: str,
        width: int | None = None,
        bell: Callable[[], None] = terminal_bell,
        collector: collectors.DiskCollector | None = None,
    ) -> None:
        super().__init__(config, width, bell)
        self.disk = disk
        self.collector = collector or collectors.DiskCollector(disk, interval=self.delay)
        self.read_series = TimeSeries(self.width)
        self.write_series = TimeSeries(self.width)

    @property
    def blocking(self) -> bool:
        return self.collector.blocks

    def intro(self) -> list[str]:
        info = collectors.disk_info(self.disk)
        lines = [
            f"Disk Info: {info.device}",
            f"Device Size : {_bytes_or_na(info.size)}",
        ]
        if info.mount_point is not None:
            lines.append(f"Mount Point : {info.mount_point} (on {info.mounted_device})")
            lines.append(
                f"Filesystem  : {_bytes_or_na(info.fs_total)} total, "
                f"{_bytes_or_na(info.fs_used)} used, {_bytes_or_na(info.fs_free)} avail "
                f"({_na(info.fs_percent, '{:.0f}')}%)"
            )
        else:
            lines.append("Mount Point : Not directly mounted or no mounted partitions found.")
        return lines

    def start(self, now: float) -> None:
        self.collector.start()

    def step(self, now: float) -> Frame:
        rates = self.collector.collect()
        read_text = (
            format_bytes(rates.read_kbps * 1024, per_second=True)
            if rates.read_kbps is not None
            else NOT_AVAILABLE
        )
        write_text = (
            format_bytes(rates.write_kbps * 1024, per_second=True)
            if rates.write_kbps is not None
            else NOT_AVAILABLE
        )
        self.read_series.push(None if rates.read_kbps is None else round(rates.read_kbps))
        self.write_series.push(None if rates.write_kbps is None else round(rates.write_kbps))

        return Frame(
            header=[f"Read: {read_text:<15s} Write: {write_text:<15s}"],
            graph=render_overlap(
                self.read_series,
                self.write_series,
                self.height,
                titles=("Read (KB/s)", "Write (KB/s)"),
                now=time.time(),
            ),
        )


# ── Process table ───────────────────────────────────────────────────────────

PROCESS_HEADER = (
    f"{'USER':<10s} {'PID':>6s} {'%CPU':>5s} {'%MEM':>5s} {'VIRT':>8s} {'RES':>8s}   "
    f"{'READ/s':>12s}   {'WRITE/s':>12s} {'STAT':<5s} {'START':<8s} {'TIME':<9s} COMMAND"
)

UNREADABLE_RATE = "0 B/s"
UNKNOWN_RATE = "-"


class ProcessView(MonitorView):
    """Top processes by CPU with per-process read/write rates."""

    title = "Process Monitor"

    def __init__(
        self,
        config: dict[str, Any],
        width: int | None = None,
        bell: Callable[[], None] = terminal_bell,
        collector: collectors.ProcessCollector | None = None,
    ) -> None:
        super().__init__(config, width, bell)
        proc_cfg = config["processes"]
        self.limit = int(proc_cfg["max"])
        self.prune_stale = bool(proc_cfg["prune_stale"])
        self.collector = collector or collectors.ProcessCollector(self.limit)
        self.usage = CpuUsageTracker()
        self.rates = RateTracker()
        self._prev_time: float | None = None
        self.interval = 0.0

    def start(self, now: float) -> None:
        self.usage.observe(self.collector.read_ticks())
        self._prev_time = now

    def _rate_text(self, key: Hashable, counter: int | None, now: float) -> str:
        if counter is None:
            return UNREADABLE_RATE
        rate = self.rates.observe(key, counter, now)
        if rate is None:
            return UNKNOWN_RATE
        return format_bytes(rate, per_second=True)

    def step(self, now: float) -> Frame:
        self.interval = now - self._prev_time if self._prev_time is not None else 0.0
        self._prev_time = now

        sample = self.collector.collect()
        usage = self.usage.observe(sample.ticks)
        cpu_text = NOT_AVAILABLE if usage is None else f"{usage:3d}%"

        mem = sample.memory
        if mem is not None and mem.total > 0:
            mem_text = (
                f"{mem.used * 100 / mem.total:.1f}% "
                f"({format_bytes(mem.used)} / {format_bytes(mem.total)})"
            )
        else:
            mem_text = NOT_AVAILABLE

        observed: set[Hashable] = set()
        lines: list[str] = []
        for row in sample.rows:
            read_key = (row.pid, "read")
            write_key = (row.pid, "write")
            read_text = self._rate_text(read_key, row.read_bytes, now)
            write_text = self._rate_text(write_key, row.write_bytes, now)
            if row.read_bytes is not None:
                observed.add(read_key)
            if row.write_bytes is not None:
                observed.add(write_key)
            lines.append(
                f"{row.user[:10]:<10s} {row.pid:>6d} {row.cpu_percent:>5.1f} "
                f"{row.memory_percent:>5.1f} {format_bytes(row.vms):>8s} "
                f"{format_bytes(row.rss):>8s}   {read_text:>12s}   {write_text:>12s}    "
                f"{row.status:<5s} {row.started:<8s} {row.cpu_time:<9s} {row.command}"
            )

        if self.prune_stale:
            self.rates.prune(observed)

        stamp = time.strftime("%Y-%m-%d %H:%M:%S")
        header = [
            f"Process Monitor - {stamp} (Update Interval: {self.interval:.1f} s)"
            " - Press any key to exit",
            f"Overall CPU: {cpu_text}   Overall Memory: {mem_text}",
            "",
            PROCESS_HEADER,
        ]
        return Frame(header=header, details=lines)
