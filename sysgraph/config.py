"""Configuration loading for sysgraph.

Loads settings from TOML config files with sensible defaults.
Search order: explicit --config path → ~/.config/sysgraph/config.toml → defaults only.
"""

from __future__ import annotations

import sys
import tomllib
from pathlib import Path
from typing import Any

DEFAULT_CONFIG: dict[str, Any] = {
    "delay": 1.0,
    "graph": {"height": 20, "width": 120},
    "alerts": {"threshold": 85, "pulses": 3, "pulse_gap": 0.2, "cooldown": 0},
    "processes": {"max": 35, "prune_stale": True},
}

_DEFAULT_PATH = Path.home() / ".config" / "sysgraph" / "config.toml"


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Merge overlay into base. Nested dicts are merged at the first level only."""
    merged = {k: dict(v) if isinstance(v, dict) else v for k, v in base.items()}
    for key, value in overlay.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def load_config(path: Path | None = None) -> dict[str, Any]:
    """Load configuration, merging user TOML over defaults.

    Args:
        path: Explicit config file path (from --config). If None, tries the
              default location ~/.config/sysgraph/config.toml.

    Returns:
        Merged configuration dict.

    Raises:
        SystemExit: If an explicit path doesn't exist or can't be parsed.
    """
    if path is not None:
        if not path.is_file():
            print(f"sysgraph: config file not found: {path}", file=sys.stderr)
            raise SystemExit(1)
        try:
            user_config = tomllib.loads(path.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError as e:
            print(f"sysgraph: invalid TOML in {path}: {e}", file=sys.stderr)
            raise SystemExit(1) from e
        return _deep_merge(DEFAULT_CONFIG, user_config)

    if _DEFAULT_PATH.is_file():
        try:
            user_config = tomllib.loads(_DEFAULT_PATH.read_text(encoding="utf-8"))
            return _deep_merge(DEFAULT_CONFIG, user_config)
        except tomllib.TOMLDecodeError:
            print(
                f"sysgraph: warning: ignoring invalid TOML in {_DEFAULT_PATH}",
                file=sys.stderr,
            )

    return _deep_merge(DEFAULT_CONFIG, {})


def apply_overrides(config: dict[str, Any], **overrides: Any) -> dict[str, Any]:
    """Apply command-line overrides (``None`` means "not given").

    Recognised keywords: ``delay``, ``height``, ``width``, ``threshold``.
    """
    patch: dict[str, Any] = {}
    if overrides.get("delay") is not None:
        patch["delay"] = float(overrides["delay"])
    graph = {
        k: int(overrides[k]) for k in ("height", "width") if overrides.get(k) is not None
    }
    if graph:
        patch["graph"] = graph
    if overrides.get("threshold") is not None:
        patch["alerts"] = {"threshold": int(overrides["threshold"])}
    return _deep_merge(config, patch)


def dump_default_config() -> str:
    """Return the default configuration as a TOML string."""
    lines = [
        "# sysgraph configuration",
        "# Place this file at ~/.config/sysgraph/config.toml",
        "",
        f"delay = {DEFAULT_CONFIG['delay']}",
        "",
    ]

    for table in ("graph", "alerts", "processes"):
        lines.append(f"[{table}]")
        for key, value in DEFAULT_CONFIG[table].items():
            if isinstance(value, bool):
                lines.append(f"{key} = {'true' if value else 'false'}")
            else:
                lines.append(f"{key} = {value}")
        lines.append("")

    return "\n".join(lines) + "\n"
