"""Rate derivation and time-series primitives shared by every monitor view.

Everything here is pure bookkeeping: collectors hand in raw counters, views
read back rates, percentages and bounded sample windows. Nothing in this
module touches the OS or the terminal except the alert bell.
"""

from __future__ import annotations

import math
import sys
import threading
import time
from collections import deque
from collections.abc import Callable, Hashable, Iterable, Iterator
from typing import Any, NamedTuple

# ── Unit formatting ─────────────────────────────────────────────────────────

ZERO_BYTES = "0 B"

_UNITS: tuple[tuple[str, int], ...] = (
    ("TB", 1 << 40),
    ("GB", 1 << 30),
    ("MB", 1 << 20),
    ("KB", 1 << 10),
)


def _as_number(value: Any) -> float | None:
    """Coerce *value* to a finite non-negative float, or None if invalid."""
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return None
    if not isinstance(value, (int, float)):
        return None
    number = float(value)
    if math.isnan(number) or math.isinf(number) or number < 0:
        return None
    return number


def format_bytes(value: Any, per_second: bool = False) -> str:
    """Human-readable byte count using binary prefixes.

    Picks the largest unit the value reaches (B, KB, MB, GB, TB) and renders
    one fractional digit, truncated, e.g. ``1048576 -> "1.0 MB"`` and
    ``1048575 -> "1023.9 KB"``. Invalid input (non-numeric, NaN, negative)
    yields ``"0 B"``.
    """
    number = _as_number(value)
    if number is None:
        return ZERO_BYTES

    suffix, scale = "B", 1
    for unit, factor in _UNITS:
        if number >= factor:
            suffix, scale = unit, factor
            break

    if per_second:
        suffix += "/s"
    # epsilon absorbs float error such as 48.6 -> 48.59999...
    tenths = math.floor(number / scale * 10 + 1e-6)
    return f"{tenths / 10:.1f} {suffix}"


# ── Per-key rate tracking ───────────────────────────────────────────────────

# Substituted for a zero or negative elapsed time between two observations.
MIN_INTERVAL = 1e-3


class RateTracker:
    """Per-second rates of monotonic counters, one previous value per key.

    Keys are whatever identifies the entity: an interface name, a device
    name, or a ``(pid, "read")`` tuple. The first observation of a key only
    seeds it and returns None ("unknown"); callers must not plot that as a
    zero or as a spike.
    """

    def __init__(self, min_interval: float = MIN_INTERVAL) -> None:
        self.min_interval = min_interval
        self._entries: dict[Hashable, tuple[float, float]] = {}

    def observe(self, key: Hashable, counter: float, now: float) -> float | None:
        """Record *counter* for *key* at *now* and return the rate since the last call."""
        previous = self._entries.get(key)
        self._entries[key] = (counter, now)
        if previous is None:
            return None

        prev_counter, prev_time = previous
        delta = counter - prev_counter
        if delta < 0:
            # counter reset or wraparound
            delta = 0
        elapsed = now - prev_time
        if elapsed <= 0:
            elapsed = self.min_interval
        return max(0.0, delta / elapsed)

    def prune(self, keep: Iterable[Hashable]) -> int:
        """Drop every key not in *keep*. Returns how many entries were removed."""
        keep_set = set(keep)
        stale = [key for key in self._entries if key not in keep_set]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def forget(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def keys(self) -> list[Hashable]:
        return list(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


# ── Aggregate CPU usage ─────────────────────────────────────────────────────


class CpuTicks(NamedTuple):
    """Aggregate jiffies from the first line of /proc/stat."""

    total: int
    idle: int


def cpu_usage_percent(prev: CpuTicks, curr: CpuTicks) -> int:
    """Busy share of the ticks consumed between two samples, as 0-100."""
    diff_total = curr.total - prev.total
    diff_idle = curr.idle - prev.idle
    if diff_total <= 0:
        return 0
    usage = (100 * (diff_total - diff_idle)) // diff_total
    return max(0, min(100, usage))


class CpuUsageTracker:
    """Holds the previous CPU tick sample between ticks of a view."""

    def __init__(self) -> None:
        self._prev: CpuTicks | None = None

    def observe(self, ticks: CpuTicks | None) -> int | None:
        """Return usage since the previous sample, or None if there is none yet.

        A missing sample (None) keeps the previous one and reports None.
        """
        if ticks is None:
            return None
        prev, self._prev = self._prev, ticks
        if prev is None:
            return None
        return cpu_usage_percent(prev, ticks)


def percent_of(part: float, whole: float) -> int:
    """Integer percentage of *part* in *whole*, clamped to 0-100."""
    if whole <= 0:
        return 0
    return max(0, min(100, int((100 * part) // whole)))


# ── Bounded sample window ───────────────────────────────────────────────────


class TimeSeries:
    """Fixed-width window of samples, oldest first, pre-filled with zeros."""

    def __init__(self, width: int) -> None:
        if width < 1:
            raise ValueError(f"width must be positive, got {width}")
        self._samples: deque[float] = deque([0] * width, maxlen=width)

    @property
    def width(self) -> int:
        return self._samples.maxlen or 0

    def push(self, sample: Any) -> None:
        """Append the newest sample, evicting the oldest.

        Missing or invalid samples (None, NaN, negative) are stored as zero.
        """
        number = _as_number(sample)
        if number is None:
            self._samples.append(0)
        elif isinstance(sample, int) and not isinstance(sample, bool):
            self._samples.append(sample)
        else:
            self._samples.append(number)

    def values(self) -> list[float]:
        return list(self._samples)

    @property
    def latest(self) -> float:
        return self._samples[-1]

    @property
    def peak(self) -> float:
        return max(self._samples)

    def __iter__(self) -> Iterator[float]:
        return iter(self._samples)

    def __len__(self) -> int:
        return len(self._samples)


# ── Audible alerts ──────────────────────────────────────────────────────────


def _as_percent(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, str) and value.isascii() and value.isdigit():
        return int(value)
    return None


def over_threshold(value: Any, threshold: int) -> bool:
    """True when *value* is a non-negative integer strictly above *threshold*."""
    percent = _as_percent(value)
    return percent is not None and percent > threshold


def terminal_bell() -> None:
    """Ring the terminal bell on stdout."""
    sys.stdout.write("\a")
    sys.stdout.flush()


class AlertGate:
    """Decides each tick whether the latest sample warrants a bell.

    With the default ``cooldown=0`` every over-threshold tick re-triggers;
    a positive cooldown suppresses repeats for that many seconds.
    """

    def __init__(
        self,
        threshold: int = 85,
        pulses: int = 3,
        pulse_gap: float = 0.2,
        cooldown: float = 0.0,
        bell: Callable[[], None] = terminal_bell,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.threshold = threshold
        self.pulses = pulses
        self.pulse_gap = pulse_gap
        self.cooldown = cooldown
        self._bell = bell
        self._clock = clock
        self._last_fired: float | None = None

    def check(self, value: Any, threshold: int | None = None) -> bool:
        """Return True and ring the bell (in the background) if *value* is too high."""
        limit = self.threshold if threshold is None else threshold
        if not over_threshold(value, limit):
            return False

        now = self._clock()
        if (
            self.cooldown > 0
            and self._last_fired is not None
            and now - self._last_fired < self.cooldown
        ):
            return False
        self._last_fired = now
        self.dispatch()
        return True

    def dispatch(self) -> threading.Thread:
        """Start the bell pattern on a daemon thread and return without joining."""
        thread = threading.Thread(target=self._ring, daemon=True, name="AlertGate")
        thread.start()
        return thread

    def _ring(self) -> None:
        for i in range(self.pulses):
            self._bell()
            if i < self.pulses - 1:
                time.sleep(self.pulse_gap)
