"""Interactive terminal front end for sysgraph.

A single-key main menu selects one monitor view (CPU, memory, disk, process,
network, GPU). Each view redraws its graph every tick until a key is pressed,
which returns to the menu (or to the device selection for disk, network and
GPU views).

Usage:
    uv run sysgraph
    uv run sysgraph --interval 2 --config path/to/config.toml
"""

from __future__ import annotations

import argparse
import curses
import logging
import signal
import sys
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from sysgraph import collectors
from sysgraph.config import apply_overrides, dump_default_config, load_config
from sysgraph.graph import BLOCK, EMPTY, OVERLAP, SERIES_A, SERIES_B, Graph
from sysgraph.metrics import format_bytes, terminal_bell
from sysgraph.views import (
    CpuView,
    DiskView,
    Frame,
    GpuView,
    MemoryView,
    MonitorView,
    NetworkView,
    ProcessView,
)

log = logging.getLogger(__name__)

# ── Constants ──────────────────────────────────────────────────────────────

# Curses colour-pair IDs
C_NORMAL = 1
C_WARNING = 2
C_CRITICAL = 3
C_TITLE = 4
C_DIM = 5
C_BLUE = 6
C_MAGENTA = 7

COLOR_PAIRS: dict[str, int] = {
    "green": C_NORMAL,
    "yellow": C_WARNING,
    "red": C_CRITICAL,
    "cyan": C_TITLE,
    "white": C_DIM,
    "blue": C_BLUE,
    "magenta": C_MAGENTA,
}

BLOCKING_POLL_MS = 100

MENU_ITEMS: list[tuple[str, str]] = [
    ("1", "CPU Monitor"),
    ("2", "Memory Monitor"),
    ("3", "Disk I/O Monitor"),
    ("4", "Process Monitor"),
    ("5", "Network I/O Monitor"),
    ("6", "GPU Monitor (NVIDIA)"),
]

# ── Colour helpers ─────────────────────────────────────────────────────────


def _init_colors() -> None:
    curses.start_color()
    curses.use_default_colors()
    curses.init_pair(C_NORMAL, curses.COLOR_GREEN, -1)
    curses.init_pair(C_WARNING, curses.COLOR_YELLOW, -1)
    curses.init_pair(C_CRITICAL, curses.COLOR_RED, -1)
    curses.init_pair(C_TITLE, curses.COLOR_CYAN, -1)
    curses.init_pair(C_DIM, curses.COLOR_WHITE, -1)
    curses.init_pair(C_BLUE, curses.COLOR_BLUE, -1)
    curses.init_pair(C_MAGENTA, curses.COLOR_MAGENTA, -1)


def category_colors(palette: tuple[str, ...]) -> dict[int, int]:
    """Map graph cell categories to colour-pair IDs for a view's palette."""
    pairs = [COLOR_PAIRS.get(name, C_DIM) for name in palette] or [C_TITLE]
    while len(pairs) < 3:
        pairs.append(pairs[-1])
    return {SERIES_A: pairs[0], SERIES_B: pairs[1], OVERLAP: pairs[2]}


def cell_runs(cells: list[int]) -> list[tuple[int, int]]:
    """Collapse a row of cells into (category, length) runs."""
    runs: list[tuple[int, int]] = []
    for cell in cells:
        if runs and runs[-1][0] == cell:
            runs[-1] = (cell, runs[-1][1] + 1)
        else:
            runs.append((cell, 1))
    return runs


# ── Curses drawing primitives ──────────────────────────────────────────────


def _safe(win: curses.window, *args: Any) -> None:
    """addstr wrapper that swallows out-of-bounds errors."""
    try:
        win.addstr(*args)
    except curses.error:
        pass


def _draw_lines(win: curses.window, y: int, lines: list[str], attr: int = 0) -> int:
    max_y, max_x = win.getmaxyx()
    for line in lines:
        if y >= max_y - 1:
            break
        _safe(win, y, 0, line[: max_x - 1], attr)
        y += 1
    return y


def draw_graph(win: curses.window, y: int, graph: Graph, palette: tuple[str, ...]) -> int:
    """Draw *graph* starting at row *y*; returns the first row below it."""
    max_y, max_x = win.getmaxyx()
    colors = category_colors(palette)
    dim = curses.color_pair(C_DIM)

    if graph.legend and y < max_y - 1:
        _safe(win, y, 0, f"{graph.indent}Legend: ", dim)
        for i, (category, title) in enumerate(graph.legend):
            _safe(win, BLOCK, curses.color_pair(colors[category]) | curses.A_BOLD)
            _safe(win, f"={title}" + (", " if i < len(graph.legend) - 1 else ""), dim)
        y += 1

    for label, cells in zip(graph.labels, graph.cells):
        if y >= max_y - 1:
            return y
        _safe(win, y, 0, f"{label} | ", dim)
        for category, length in cell_runs(cells):
            if category == EMPTY:
                _safe(win, " " * length)
            else:
                _safe(win, BLOCK * length, curses.color_pair(colors[category]))
        y += 1

    return _draw_lines(win, y, [graph.border_line(), graph.timestamp_line()], dim)


def draw_frame(
    win: curses.window,
    view: MonitorView,
    intro: list[str],
    frame: Frame | None,
) -> None:
    win.erase()
    attr = curses.color_pair(C_TITLE) | curses.A_BOLD
    y = _draw_lines(win, 0, [f"===== {view.title} ====="], attr)
    y = _draw_lines(win, y, intro, curses.color_pair(C_DIM))
    if intro:
        y += 1
    if frame is None:
        _draw_lines(win, y, ["Collecting..."], curses.color_pair(C_DIM))
    else:
        header_attr = curses.color_pair(C_CRITICAL) | curses.A_BOLD if frame.alerted else 0
        y = _draw_lines(win, y, frame.header, header_attr)
        if frame.graph is not None:
            y = draw_graph(win, y, frame.graph, view.palette)
        _draw_lines(win, y, frame.details)
    win.refresh()


# ── View loop ──────────────────────────────────────────────────────────────


def graph_width(win: curses.window, configured: int) -> int:
    """Configured graph width, clamped so axis labels and the graph fit."""
    _, max_x = win.getmaxyx()
    return max(10, min(configured, max_x - 10))


def run_view(win: curses.window, view: MonitorView) -> None:
    """Wait for a tick or keypress, collect, draw; any key returns."""
    intro = view.intro()
    view.start(time.monotonic())
    frame: Frame | None = None
    draw_frame(win, view, intro, frame)

    win.timeout(BLOCKING_POLL_MS if view.blocking else int(view.delay * 1000))
    while True:
        key = win.getch()
        if key == curses.KEY_RESIZE:
            win.clear()
        elif key != -1:
            return
        try:
            frame = view.step(time.monotonic())
        except Exception:
            log.exception("%s: tick failed", view.title)
        draw_frame(win, view, intro, frame)


# ── Menus ──────────────────────────────────────────────────────────────────


def _prompt(win: curses.window, y: int, text: str) -> str:
    """Read a line of input at row *y* (blocking)."""
    win.timeout(-1)
    curses.curs_set(1)
    buf = ""
    try:
        while True:
            _safe(win, y, 0, " " * (win.getmaxyx()[1] - 1))
            _safe(win, y, 0, f"{text}{buf}")
            win.refresh()
            key = win.getch()
            if key in (curses.KEY_ENTER, 10, 13):
                return buf.strip()
            if key in (curses.KEY_BACKSPACE, 127, 8):
                buf = buf[:-1]
            elif 32 <= key < 127:
                buf += chr(key)
    finally:
        curses.curs_set(0)


def _wait_key(win: curses.window, y: int, text: str) -> None:
    win.timeout(-1)
    _safe(win, y, 0, text, curses.color_pair(C_DIM))
    win.refresh()
    win.getch()


def parse_selection(text: str, count: int) -> int | None:
    """Index chosen by *text*, or None when it is not in range."""
    if not text.isascii() or not text.isdigit():
        return None
    index = int(text)
    return index if 0 <= index < count else None


def select_option(win: curses.window, title: str, options: list[str]) -> int | None:
    """Numbered selection menu; returns the chosen index or None for q."""
    message = ""
    while True:
        win.erase()
        y = _draw_lines(win, 0, [f"===== {title} ====="], curses.color_pair(C_TITLE) | curses.A_BOLD)
        y = _draw_lines(win, y, [f"  [{i}] {opt}" for i, opt in enumerate(options)])
        y = _draw_lines(win, y, ["  [q] Return to Main Menu"])
        if message:
            y = _draw_lines(win, y, [message], curses.color_pair(C_WARNING))
        answer = _prompt(win, y, "Enter selection number or q: ")
        if answer.lower() == "q":
            return None
        index = parse_selection(answer, len(options))
        if index is not None:
            return index
        message = f"Invalid selection '{answer}'."


def _disk_menu(win: curses.window, make: Callable[..., MonitorView]) -> None:
    while True:
        disks = collectors.list_disks()
        if not disks:
            win.erase()
            _wait_key(win, 0, "No suitable disk devices found (/dev/sd*, /dev/nvme*, etc.). Press any key.")
            return
        options = []
        for name in disks:
            info = collectors.disk_info(name)
            size = format_bytes(info.size) if info.size is not None else "?"
            options.append(f"{info.device} ({info.model or 'Unknown'} {size})")
        index = select_option(win, "Select Disk to Monitor", options)
        if index is None:
            return
        run_view(win, make(DiskView, disk=disks[index]))


def _network_menu(win: curses.window, make: Callable[..., MonitorView]) -> None:
    while True:
        interfaces = collectors.list_interfaces()
        if not interfaces:
            win.erase()
            _wait_key(win, 0, "No non-loopback network interfaces found. Press any key.")
            return
        options = []
        for name in interfaces:
            info = collectors.interface_info(name)
            options.append(f"{name} (State: {info.state}, IP: {info.ipv4 or 'N/A'})")
        index = select_option(win, "Select Network Interface to Monitor", options)
        if index is None:
            return
        run_view(win, make(NetworkView, interface=interfaces[index]))


def _gpu_menu(win: curses.window, make: Callable[..., MonitorView]) -> None:
    while True:
        gpus = collectors.list_gpus()
        if not gpus:
            win.erase()
            _wait_key(win, 0, "No NVIDIA GPUs detected (nvidia-smi missing or failed). Press any key.")
            return
        options = [f"GPU {index}: {name}" for index, name in gpus]
        choice = select_option(win, "Select NVIDIA GPU to Monitor", options)
        if choice is None:
            return
        run_view(win, make(GpuView, index=gpus[choice][0]))


def _draw_menu(win: curses.window, message: str) -> None:
    win.erase()
    title_attr = curses.color_pair(C_TITLE) | curses.A_BOLD
    lines = ["=============================", " sysgraph - System Monitor", "============================="]
    y = _draw_lines(win, 0, lines, title_attr)
    y = _draw_lines(win, y, [f" {key}. {label}" for key, label in MENU_ITEMS])
    y = _draw_lines(win, y, ["-----------------------------", " q. Quit", "============================="])
    if message:
        y = _draw_lines(win, y, [message], curses.color_pair(C_WARNING))
    _safe(win, y, 0, "Select an option: ")
    win.refresh()


def build_view(
    win: curses.window,
    config: dict[str, Any],
    view_cls: type[MonitorView],
    **kwargs: Any,
) -> MonitorView:
    """Construct *view_cls* sized to the terminal.

    The bell rings from a background thread, so it writes BEL to stdout
    rather than calling into curses, which is not thread-safe.
    """
    width = graph_width(win, int(config["graph"]["width"]))
    return view_cls(config, width=width, bell=terminal_bell, **kwargs)


def _menu_loop(win: curses.window, config: dict[str, Any]) -> None:
    _init_colors()
    curses.curs_set(0)

    def make(view_cls: type[MonitorView], **kwargs: Any) -> MonitorView:
        return build_view(win, config, view_cls, **kwargs)

    actions: dict[str, Callable[[], None]] = {
        "1": lambda: run_view(win, make(CpuView)),
        "2": lambda: run_view(win, make(MemoryView)),
        "3": lambda: _disk_menu(win, make),
        "4": lambda: run_view(win, make(ProcessView)),
        "5": lambda: _network_menu(win, make),
        "6": lambda: _gpu_menu(win, make),
    }

    message = ""
    while True:
        _draw_menu(win, message)
        win.timeout(-1)
        key = win.getch()
        if key == curses.KEY_RESIZE:
            continue
        option = chr(key) if 0 <= key < 256 else "?"
        if option in ("q", "Q"):
            return
        action = actions.get(option)
        if action is None:
            message = f"Invalid option '{option}'."
            continue
        message = ""
        action()


# ── CLI entry point ────────────────────────────────────────────────────────


def setup_logging(log_file: Path | None) -> None:
    """Send DEBUG records to *log_file*; stay silent otherwise (curses owns the tty)."""
    if log_file is None:
        logging.getLogger("sysgraph").addHandler(logging.NullHandler())
        return
    logging.basicConfig(
        filename=log_file,
        level=logging.DEBUG,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Real-time terminal graphs of CPU, memory, disk, network, process and GPU activity.",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between refreshes (default: 1.0)",
    )
    parser.add_argument("--height", type=int, default=None, help="Graph height in rows (default: 20)")
    parser.add_argument("--width", type=int, default=None, help="Graph width in columns (default: 120)")
    parser.add_argument(
        "--threshold",
        type=int,
        default=None,
        help="Usage percentage above which the bell rings (default: 85)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="PATH",
        help="Path to TOML config file",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        metavar="PATH",
        help="Write debug logs to this file",
    )
    parser.add_argument(
        "--print-config",
        action="store_true",
        help="Print the default configuration as TOML and exit",
    )
    args = parser.parse_args()

    if args.print_config:
        print(dump_default_config(), end="")
        return

    config = apply_overrides(
        load_config(args.config),
        delay=args.interval,
        height=args.height,
        width=args.width,
        threshold=args.threshold,
    )
    if config["delay"] <= 0 or config["graph"]["height"] < 1 or config["graph"]["width"] < 1:
        parser.error("interval, height and width must be positive")
    setup_logging(args.log_file)

    missing = collectors.check_requirements()
    if missing:
        print("sysgraph: error: required data sources missing:", file=sys.stderr)
        for item in missing:
            print(f"  - {item}", file=sys.stderr)
        raise SystemExit(1)
    for item in collectors.missing_optional_tools():
        log.info("optional tool not found: %s", item)

    signal.signal(signal.SIGTERM, signal.default_int_handler)
    try:
        curses.wrapper(_menu_loop, config)
    except KeyboardInterrupt:
        pass
    print("Exited sysgraph.")


if __name__ == "__main__":
    main()
