"""Tests for sysgraph.config."""

from __future__ import annotations

import tomllib
from pathlib import Path

import pytest

import sysgraph.config as config_mod
from sysgraph.config import (
    DEFAULT_CONFIG,
    _deep_merge,
    apply_overrides,
    dump_default_config,
    load_config,
)


@pytest.fixture(autouse=True)
def _no_user_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    # Keep a real ~/.config/sysgraph/config.toml out of the tests
    monkeypatch.setattr(config_mod, "_DEFAULT_PATH", tmp_path / "absent.toml")


class TestLoadConfigDefaults:
    def test_defaults_returned_when_no_file(self) -> None:
        cfg = load_config(None)
        assert cfg["delay"] == 1.0
        assert cfg["graph"] == {"height": 20, "width": 120}
        assert cfg["alerts"]["threshold"] == 85
        assert cfg["processes"]["max"] == 35

    def test_all_default_keys_present(self) -> None:
        cfg = load_config(None)
        assert set(cfg.keys()) == set(DEFAULT_CONFIG.keys())

    def test_defaults_not_shared(self) -> None:
        cfg = load_config(None)
        cfg["graph"]["height"] = 5
        assert DEFAULT_CONFIG["graph"]["height"] == 20

    def test_default_location_used(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        user = tmp_path / "config.toml"
        user.write_text("delay = 3.0\n")
        monkeypatch.setattr(config_mod, "_DEFAULT_PATH", user)
        assert load_config(None)["delay"] == 3.0

    def test_invalid_default_location_ignored(
        self,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        user = tmp_path / "config.toml"
        user.write_text("not [valid\n")
        monkeypatch.setattr(config_mod, "_DEFAULT_PATH", user)
        cfg = load_config(None)
        assert cfg["delay"] == 1.0
        assert "ignoring invalid TOML" in capsys.readouterr().err


class TestTomlOverlay:
    def test_overrides_graph_height(self, tmp_path: Path) -> None:
        toml_file = tmp_path / "config.toml"
        toml_file.write_text("[graph]\nheight = 10\n")
        cfg = load_config(toml_file)
        assert cfg["graph"]["height"] == 10
        # Sibling keys remain at defaults
        assert cfg["graph"]["width"] == 120

    def test_overrides_alerts(self, tmp_path: Path) -> None:
        toml_file = tmp_path / "config.toml"
        toml_file.write_text("[alerts]\nthreshold = 70\ncooldown = 30\n")
        cfg = load_config(toml_file)
        assert cfg["alerts"]["threshold"] == 70
        assert cfg["alerts"]["cooldown"] == 30
        assert cfg["alerts"]["pulses"] == 3

    def test_overrides_scalar(self, tmp_path: Path) -> None:
        toml_file = tmp_path / "config.toml"
        toml_file.write_text("delay = 0.5\n")
        cfg = load_config(toml_file)
        assert cfg["delay"] == 0.5
        assert cfg["processes"] == DEFAULT_CONFIG["processes"]


class TestExplicitPath:
    def test_missing_explicit_path_errors(self, tmp_path: Path) -> None:
        with pytest.raises(SystemExit):
            load_config(tmp_path / "nonexistent.toml")

    def test_invalid_toml_errors(self, tmp_path: Path) -> None:
        bad_file = tmp_path / "bad.toml"
        bad_file.write_text("this is [not valid toml\n")
        with pytest.raises(SystemExit):
            load_config(bad_file)


class TestApplyOverrides:
    def test_none_means_not_given(self) -> None:
        cfg = load_config(None)
        assert apply_overrides(cfg, delay=None, height=None, width=None, threshold=None) == cfg

    def test_values_replace_config(self) -> None:
        cfg = apply_overrides(load_config(None), delay=2, height=12, threshold=90)
        assert cfg["delay"] == 2.0
        assert cfg["graph"] == {"height": 12, "width": 120}
        assert cfg["alerts"]["threshold"] == 90
        assert cfg["alerts"]["pulses"] == 3


class TestDumpDefaultConfig:
    def test_is_valid_toml(self) -> None:
        parsed = tomllib.loads(dump_default_config())
        assert {"delay", "graph", "alerts", "processes"} <= set(parsed)

    def test_roundtrips_defaults(self) -> None:
        parsed = tomllib.loads(dump_default_config())
        assert parsed == DEFAULT_CONFIG


class TestDeepMerge:
    def test_scalar_overwrite(self) -> None:
        assert _deep_merge({"a": 1, "b": 2}, {"a": 10}) == {"a": 10, "b": 2}

    def test_nested_dict_merge(self) -> None:
        result = _deep_merge({"x": {"a": 1, "b": 2}}, {"x": {"b": 3, "c": 4}})
        assert result["x"] == {"a": 1, "b": 3, "c": 4}

    def test_new_key_added(self) -> None:
        assert _deep_merge({"a": 1}, {"b": 2}) == {"a": 1, "b": 2}
