"""Per-domain counter collectors.

Each collector reads one kind of raw data (CPU ticks, memory pages, network
byte counters, disk throughput, per-process I/O, GPU telemetry) and returns a
plain dataclass. Collectors never raise for missing data: a field that could
not be read is ``None`` and is displayed as "N/A".
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import socket
import subprocess
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import psutil

from sysgraph.metrics import CpuTicks, RateTracker

log = logging.getLogger(__name__)

PROC_STAT = "/proc/stat"
PROC_MEMINFO = "/proc/meminfo"
PROC_FILE_NR = "/proc/sys/fs/file-nr"
SYS_BLOCK = "/sys/block"

NOT_AVAILABLE = "N/A"


class Collector(Protocol):
    """Anything a monitor view can pull one tick of raw data from."""

    def collect(self) -> Any: ...


# ── CPU ─────────────────────────────────────────────────────────────────────


def read_cpu_ticks(path: str = PROC_STAT) -> CpuTicks | None:
    """Read aggregate (total, idle) jiffies from the first line of /proc/stat."""
    try:
        with open(path) as f:
            parts = f.readline().split()
        values = [int(x) for x in parts[1:]]  # skip "cpu" label
    except (OSError, ValueError) as e:
        log.debug("cannot read CPU ticks from %s: %s", path, e)
        return None
    if len(values) < 4:
        return None
    return CpuTicks(total=sum(values), idle=values[3])


def read_open_file_handles(path: str = PROC_FILE_NR) -> int | None:
    try:
        with open(path) as f:
            return int(f.read().split()[0])
    except (OSError, ValueError, IndexError):
        return None


@dataclass
class CpuSample:
    """One CPU tick: raw counters plus a few live extras."""

    ticks: CpuTicks | None
    frequency_mhz: float | None = None
    processes: int | None = None
    threads: int | None = None
    file_handles: int | None = None


def _average_frequency() -> float | None:
    try:
        freq = psutil.cpu_freq()
    except (OSError, NotImplementedError, AttributeError):
        return None
    if freq is None or not freq.current:
        return None
    return float(freq.current)


def _process_and_thread_counts() -> tuple[int | None, int | None]:
    processes = 0
    threads = 0
    try:
        for proc in psutil.process_iter(["num_threads"]):
            processes += 1
            threads += proc.info.get("num_threads") or 0
    except OSError as e:
        log.debug("process scan failed: %s", e)
        return None, None
    return processes, threads


class CpuCollector:
    """Aggregate CPU ticks plus frequency, process, thread and handle counts."""

    def __init__(self, stat_path: str = PROC_STAT) -> None:
        self.stat_path = stat_path

    def read_ticks(self) -> CpuTicks | None:
        return read_cpu_ticks(self.stat_path)

    def collect(self) -> CpuSample:
        processes, threads = _process_and_thread_counts()
        return CpuSample(
            ticks=self.read_ticks(),
            frequency_mhz=_average_frequency(),
            processes=processes,
            threads=threads,
            file_handles=read_open_file_handles(),
        )


def core_counts() -> tuple[int | None, int | None]:
    """Return (logical, physical) core counts; either may be None."""
    return psutil.cpu_count(logical=True), psutil.cpu_count(logical=False)


# ── Memory ──────────────────────────────────────────────────────────────────


def read_meminfo(path: str = PROC_MEMINFO) -> dict[str, int]:
    """Parse /proc/meminfo into a dict of byte values (empty if unreadable)."""
    values: dict[str, int] = {}
    try:
        with open(path) as f:
            for line in f:
                name, _, rest = line.partition(":")
                parts = rest.split()
                if not parts:
                    continue
                try:
                    amount = int(parts[0])
                except ValueError:
                    continue
                if len(parts) > 1 and parts[1].lower() == "kb":
                    amount *= 1024
                values[name.strip()] = amount
    except OSError as e:
        log.debug("cannot read %s: %s", path, e)
    return values


@dataclass
class MemorySample:
    """Memory counters in bytes. Linux-only fields are None elsewhere."""

    total: int
    available: int
    buffers: int | None = None
    cached: int | None = None
    slab: int | None = None
    swap_total: int = 0
    swap_used: int = 0
    committed: int | None = None
    commit_limit: int | None = None
    page_tables: int | None = None

    @property
    def used(self) -> int:
        return max(0, self.total - self.available)


def _memory_from_meminfo(info: dict[str, int]) -> MemorySample | None:
    if "MemTotal" not in info or "MemAvailable" not in info:
        return None
    swap_total = info.get("SwapTotal", 0)
    return MemorySample(
        total=info["MemTotal"],
        available=info["MemAvailable"],
        buffers=info.get("Buffers"),
        cached=info.get("Cached"),
        slab=info.get("Slab"),
        swap_total=swap_total,
        swap_used=max(0, swap_total - info.get("SwapFree", swap_total)),
        committed=info.get("Committed_AS"),
        commit_limit=info.get("CommitLimit"),
        page_tables=info.get("PageTables"),
    )


def _memory_from_psutil() -> MemorySample | None:
    try:
        ram = psutil.virtual_memory()
        swap = psutil.swap_memory()
    except (OSError, RuntimeError) as e:
        log.debug("psutil memory query failed: %s", e)
        return None
    return MemorySample(
        total=ram.total,
        available=ram.available,
        buffers=getattr(ram, "buffers", None),
        cached=getattr(ram, "cached", None),
        slab=getattr(ram, "slab", None),
        swap_total=swap.total,
        swap_used=swap.used,
    )


class MemoryCollector:
    """Reads /proc/meminfo, falling back to psutil on other platforms."""

    def __init__(self, meminfo_path: str = PROC_MEMINFO) -> None:
        self.meminfo_path = meminfo_path

    def collect(self) -> MemorySample | None:
        sample = _memory_from_meminfo(read_meminfo(self.meminfo_path))
        if sample is None:
            sample = _memory_from_psutil()
        return sample


# ── Network ─────────────────────────────────────────────────────────────────


def _is_loopback(name: str, stats: Any) -> bool:
    flags = getattr(stats, "flags", "") or ""
    return name == "lo" or "loopback" in flags.split(",")


def list_interfaces() -> list[str]:
    """Names of non-loopback network interfaces, sorted."""
    try:
        stats = psutil.net_if_stats()
    except OSError as e:
        log.debug("net_if_stats failed: %s", e)
        return []
    return sorted(name for name, st in stats.items() if not _is_loopback(name, st))


@dataclass
class InterfaceInfo:
    """Static description of a network interface."""

    name: str
    state: str = NOT_AVAILABLE
    mac: str | None = None
    ipv4: str | None = None
    ipv6: str | None = None
    speed_mbps: int | None = None
    duplex: str | None = None
    mtu: int | None = None


_DUPLEX = {
    psutil.NIC_DUPLEX_FULL: "full",
    psutil.NIC_DUPLEX_HALF: "half",
}


def interface_info(name: str) -> InterfaceInfo:
    info = InterfaceInfo(name=name)
    try:
        stats = psutil.net_if_stats().get(name)
        addrs = psutil.net_if_addrs().get(name, [])
    except OSError as e:
        log.debug("interface query for %s failed: %s", name, e)
        return info

    if stats is not None:
        info.state = "up" if stats.isup else "down"
        info.speed_mbps = stats.speed or None
        info.duplex = _DUPLEX.get(stats.duplex)
        info.mtu = stats.mtu or None

    for addr in addrs:
        if addr.family == psutil.AF_LINK and info.mac is None:
            info.mac = addr.address
        elif addr.family == socket.AF_INET and info.ipv4 is None:
            info.ipv4 = addr.address
        elif addr.family == socket.AF_INET6 and info.ipv6 is None:
            info.ipv6 = addr.address.split("%")[0]
    return info


@dataclass
class NetCounters:
    """Cumulative bytes received and sent by one interface."""

    rx_bytes: int
    tx_bytes: int


def read_net_counters(name: str) -> NetCounters | None:
    try:
        counters = psutil.net_io_counters(pernic=True).get(name)
    except OSError as e:
        log.debug("net_io_counters failed: %s", e)
        return None
    if counters is None:
        return None
    return NetCounters(rx_bytes=counters.bytes_recv, tx_bytes=counters.bytes_sent)


class NetworkCollector:
    """Cumulative byte counters for one interface."""

    def __init__(self, interface: str) -> None:
        self.interface = interface

    def collect(self) -> NetCounters | None:
        return read_net_counters(self.interface)


# ── Disk ────────────────────────────────────────────────────────────────────

DISK_PATTERN = re.compile(r"^(sd|nvme|vd|hd|xvd)")
_PARTITION = re.compile(r"^(?:(?:sd|vd|hd|xvd)[a-z]+\d+|nvme\d+n\d+p\d+)$")


def list_disks(sys_block: str = SYS_BLOCK) -> list[str]:
    """Whole-disk device names (``sda``, ``nvme0n1``, ...), sorted."""
    try:
        names = os.listdir(sys_block)
    except OSError:
        try:
            names = [
                n for n in psutil.disk_io_counters(perdisk=True) if not _PARTITION.search(n)
            ]
        except (OSError, RuntimeError):
            names = []
    return sorted(n for n in names if DISK_PATTERN.match(n))


@dataclass
class DiskInfo:
    """Static description of a block device and its mounted filesystem."""

    name: str
    size: int | None = None
    model: str | None = None
    mount_point: str | None = None
    mounted_device: str | None = None
    fs_total: int | None = None
    fs_used: int | None = None
    fs_free: int | None = None
    fs_percent: float | None = None

    @property
    def device(self) -> str:
        return f"/dev/{self.name}"


def _read_sys(path: str) -> str | None:
    try:
        with open(path) as f:
            return f.read().strip()
    except OSError:
        return None


def disk_info(name: str, sys_block: str = SYS_BLOCK) -> DiskInfo:
    info = DiskInfo(name=name)
    sectors = _read_sys(os.path.join(sys_block, name, "size"))
    if sectors is not None and sectors.isdigit():
        info.size = int(sectors) * 512
    vendor = _read_sys(os.path.join(sys_block, name, "device", "vendor")) or ""
    model = _read_sys(os.path.join(sys_block, name, "device", "model")) or ""
    info.model = f"{vendor} {model}".strip() or None

    # The device itself first, then its partitions.
    try:
        partitions = psutil.disk_partitions(all=False)
    except OSError as e:
        log.debug("disk_partitions failed: %s", e)
        return info
    candidates = sorted(
        (p for p in partitions if p.device.startswith(info.device)),
        key=lambda p: (p.device != info.device, p.device),
    )
    for part in candidates:
        try:
            usage = psutil.disk_usage(part.mountpoint)
        except OSError:
            continue
        info.mount_point = part.mountpoint
        info.mounted_device = part.device
        info.fs_total = usage.total
        info.fs_used = usage.used
        info.fs_free = usage.free
        info.fs_percent = usage.percent
        break
    return info


@dataclass
class DiskRates:
    """Read/write throughput of one device, in KB/s."""

    read_kbps: float | None
    write_kbps: float | None


def parse_iostat(output: str, name: str) -> tuple[float, float] | None:
    """Extract (kB_read/s, kB_wrtn/s) for *name* from the last iostat report."""
    found: tuple[float, float] | None = None
    for line in output.splitlines():
        parts = line.split()
        if len(parts) >= 4 and parts[0] == name:
            try:
                found = (float(parts[2]), float(parts[3]))
            except ValueError:
                continue
    return found


class DiskCollector:
    """Per-second read/write rates for one block device.

    With ``iostat`` on the PATH the rate comes from a fresh report over one
    interval, so :meth:`collect` blocks for about that long. Otherwise rates
    are derived from psutil's cumulative per-disk byte counters.
    """

    def __init__(
        self,
        name: str,
        interval: float = 1.0,
        use_iostat: bool | None = None,
    ) -> None:
        self.name = name
        self.interval = max(1, round(interval))
        self.use_iostat = shutil.which("iostat") is not None if use_iostat is None else use_iostat
        self._tracker = RateTracker()

    @property
    def blocks(self) -> bool:
        return self.use_iostat

    def start(self) -> None:
        """Seed the counter baseline when rates are derived locally."""
        if not self.use_iostat:
            self._from_counters(time.monotonic())

    def collect(self) -> DiskRates:
        if self.use_iostat:
            return self._from_iostat()
        return self._from_counters(time.monotonic())

    def _from_iostat(self) -> DiskRates:
        try:
            result = subprocess.run(
                ["iostat", "-dk", f"/dev/{self.name}", str(self.interval), "2"],
                capture_output=True,
                text=True,
                timeout=self.interval * 2 + 5,
                env={**os.environ, "LC_ALL": "C"},
            )
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            log.debug("iostat failed for %s: %s", self.name, e)
            return DiskRates(None, None)
        if result.returncode != 0:
            return DiskRates(None, None)
        rates = parse_iostat(result.stdout, self.name)
        if rates is None:
            return DiskRates(None, None)
        return DiskRates(read_kbps=rates[0], write_kbps=rates[1])

    def _from_counters(self, now: float) -> DiskRates:
        try:
            counters = psutil.disk_io_counters(perdisk=True).get(self.name)
        except (OSError, RuntimeError) as e:
            log.debug("disk_io_counters failed: %s", e)
            counters = None
        if counters is None:
            return DiskRates(None, None)
        read = self._tracker.observe("read", counters.read_bytes, now)
        write = self._tracker.observe("write", counters.write_bytes, now)
        return DiskRates(
            read_kbps=None if read is None else read / 1024,
            write_kbps=None if write is None else write / 1024,
        )


# ── Processes ───────────────────────────────────────────────────────────────

_STATUS_CODES = {
    psutil.STATUS_RUNNING: "R",
    psutil.STATUS_SLEEPING: "S",
    psutil.STATUS_DISK_SLEEP: "D",
    psutil.STATUS_STOPPED: "T",
    psutil.STATUS_TRACING_STOP: "t",
    psutil.STATUS_ZOMBIE: "Z",
    psutil.STATUS_DEAD: "X",
    psutil.STATUS_IDLE: "I",
}

_PROCESS_ATTRS = [
    "pid",
    "name",
    "username",
    "status",
    "cpu_percent",
    "memory_percent",
    "memory_info",
    "create_time",
    "cpu_times",
]
if hasattr(psutil.Process, "io_counters"):
    _PROCESS_ATTRS.append("io_counters")


@dataclass
class ProcessRow:
    """One line of the process table, before rate derivation."""

    pid: int
    user: str
    cpu_percent: float
    memory_percent: float
    vms: int
    rss: int
    status: str
    started: str
    cpu_time: str
    command: str
    read_bytes: int | None = None
    write_bytes: int | None = None


def format_start(create_time: float | None, now: float | None = None) -> str:
    """ps-style START column: HH:MM today, MonDD otherwise."""
    if not create_time:
        return "?"
    started = time.localtime(create_time)
    today = time.localtime(now)
    if started[:3] == today[:3]:
        return time.strftime("%H:%M", started)
    return time.strftime("%b%d", started)


def format_cpu_time(seconds: float) -> str:
    total = int(seconds)
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def _row_from_info(info: dict[str, Any]) -> ProcessRow:
    mem_info = info.get("memory_info")
    cpu_times = info.get("cpu_times")
    io = info.get("io_counters")
    cpu_seconds = (cpu_times.user + cpu_times.system) if cpu_times else 0.0
    return ProcessRow(
        pid=info.get("pid", 0),
        user=info.get("username") or "?",
        cpu_percent=info.get("cpu_percent") or 0.0,
        memory_percent=info.get("memory_percent") or 0.0,
        vms=mem_info.vms if mem_info else 0,
        rss=mem_info.rss if mem_info else 0,
        status=_STATUS_CODES.get(info.get("status") or "", "?"),
        started=format_start(info.get("create_time")),
        cpu_time=format_cpu_time(cpu_seconds),
        command=info.get("name") or "?",
        read_bytes=io.read_bytes if io else None,
        write_bytes=io.write_bytes if io else None,
    )


def top_processes(limit: int = 35) -> list[ProcessRow]:
    """The *limit* busiest processes by CPU share.

    Access-denied attributes come back as None (the row is kept); processes
    that exit mid-scan are skipped.
    """
    rows: list[ProcessRow] = []
    for proc in psutil.process_iter(attrs=_PROCESS_ATTRS, ad_value=None):
        try:
            rows.append(_row_from_info(proc.info))
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue
    rows.sort(key=lambda r: r.cpu_percent, reverse=True)
    return rows[:limit]


@dataclass
class ProcessSample:
    ticks: CpuTicks | None
    memory: MemorySample | None
    rows: list[ProcessRow] = field(default_factory=lambda: list[ProcessRow]())


class ProcessCollector:
    """System-wide CPU/memory plus the top processes with their I/O counters."""

    def __init__(self, limit: int = 35) -> None:
        self.limit = limit
        self._cpu = CpuCollector()
        self._memory = MemoryCollector()

    def read_ticks(self) -> CpuTicks | None:
        return self._cpu.read_ticks()

    def collect(self) -> ProcessSample:
        return ProcessSample(
            ticks=self._cpu.read_ticks(),
            memory=self._memory.collect(),
            rows=top_processes(self.limit),
        )


# ── GPU (NVIDIA) ────────────────────────────────────────────────────────────

GPU_QUERY_FIELDS = (
    "utilization.gpu",
    "memory.used",
    "memory.total",
    "power.draw",
    "temperature.gpu",
    "fan.speed",
    "pstate",
    "clocks.gr",
    "clocks.mem",
)

_UNAVAILABLE_MARKERS = {"", "n/a", "[n/a]", "[not supported]", "not supported", "[unknown error]"}


def _nvidia_smi(args: Sequence[str], timeout: float = 3) -> str | None:
    """Run nvidia-smi and return stdout, or None if it is missing or fails."""
    try:
        result = subprocess.run(
            ["nvidia-smi", *args],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired) as e:
        log.debug("nvidia-smi %s failed: %s", " ".join(args), e)
        return None
    if result.returncode != 0:
        return None
    return result.stdout


def _gpu_number(raw: str) -> float | None:
    text = raw.strip()
    if text.lower() in _UNAVAILABLE_MARKERS:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def _gpu_text(raw: str) -> str | None:
    text = raw.strip()
    return None if text.lower() in _UNAVAILABLE_MARKERS else text


def list_gpus() -> list[tuple[int, str]]:
    """(index, name) for every GPU nvidia-smi reports."""
    out = _nvidia_smi(["--query-gpu=index,name", "--format=csv,noheader"])
    if out is None:
        return []
    gpus: list[tuple[int, str]] = []
    for line in out.strip().splitlines():
        index, _, name = line.partition(",")
        try:
            gpus.append((int(index.strip()), name.strip()))
        except ValueError:
            continue
    return gpus


@dataclass
class GpuInfo:
    index: int
    name: str | None = None
    memory_total: float | None = None
    driver_version: str | None = None


def gpu_info(index: int) -> GpuInfo:
    info = GpuInfo(index=index)
    out = _nvidia_smi(
        [
            "--query-gpu=name,memory.total,driver_version",
            "--format=csv,noheader,nounits",
            "-i",
            str(index),
        ]
    )
    if out is None:
        return info
    parts = out.strip().split(",")
    if len(parts) >= 3:
        info.name = _gpu_text(parts[0])
        info.memory_total = _gpu_number(parts[1])
        info.driver_version = _gpu_text(parts[2])
    return info


@dataclass
class GpuSample:
    """Live telemetry for one GPU; any field may be None."""

    utilization: float | None = None
    memory_used: float | None = None
    memory_total: float | None = None
    power: float | None = None
    temperature: float | None = None
    fan: float | None = None
    pstate: str | None = None
    graphics_clock: float | None = None
    memory_clock: float | None = None
    processes: int | None = None


def parse_gpu_stats(line: str) -> GpuSample:
    """Parse one CSV line produced by the GPU_QUERY_FIELDS query."""
    parts = line.strip().split(",")
    if len(parts) < len(GPU_QUERY_FIELDS):
        return GpuSample()
    return GpuSample(
        utilization=_gpu_number(parts[0]),
        memory_used=_gpu_number(parts[1]),
        memory_total=_gpu_number(parts[2]),
        power=_gpu_number(parts[3]),
        temperature=_gpu_number(parts[4]),
        fan=_gpu_number(parts[5]),
        pstate=_gpu_text(parts[6]),
        graphics_clock=_gpu_number(parts[7]),
        memory_clock=_gpu_number(parts[8]),
    )


class GpuCollector:
    """nvidia-smi telemetry for one GPU index."""

    def __init__(self, index: int = 0) -> None:
        self.index = index

    def collect(self) -> GpuSample:
        out = _nvidia_smi(
            [
                f"--query-gpu={','.join(GPU_QUERY_FIELDS)}",
                "--format=csv,noheader,nounits",
                "-i",
                str(self.index),
            ]
        )
        if out is None or not out.strip():
            return GpuSample()
        sample = parse_gpu_stats(out.strip().splitlines()[0])

        apps = _nvidia_smi(
            ["--query-compute-apps=pid", "--format=csv,noheader", "-i", str(self.index)]
        )
        if apps is not None:
            sample.processes = len([line for line in apps.splitlines() if line.strip()])
        return sample


# ── Startup checks ──────────────────────────────────────────────────────────

REQUIRED_SOURCES: dict[str, str] = {
    PROC_STAT: "CPU tick counters",
    PROC_MEMINFO: "memory counters",
}

OPTIONAL_TOOLS: dict[str, str] = {
    "iostat": "disk rates from sysstat (falls back to kernel counters)",
    "nvidia-smi": "NVIDIA GPU telemetry",
}


def check_requirements(sources: dict[str, str] | None = None) -> list[str]:
    """Return a description of every required data source that is unreadable."""
    missing: list[str] = []
    for path, label in (sources or REQUIRED_SOURCES).items():
        if not os.access(path, os.R_OK):
            missing.append(f"{path} ({label})")
    return missing


def missing_optional_tools() -> list[str]:
    return [f"{tool} ({label})" for tool, label in OPTIONAL_TOOLS.items() if not shutil.which(tool)]
