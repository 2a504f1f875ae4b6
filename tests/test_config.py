"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from sheettree.config import (
    CONFIG_FILENAME,
    DEFAULT_CONFIG,
    debounce_seconds,
    load_config,
    resolve_log_dir,
)


class TestLoadConfig:
    def test_defaults_without_file(self, tmp_path: Path) -> None:
        assert load_config(tmp_path) == DEFAULT_CONFIG

    def test_file_overrides_defaults(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILENAME).write_text(yaml.dump({"save_debounce_ms": 500, "extra": "kept"}))
        config = load_config(tmp_path)
        assert config["save_debounce_ms"] == 500
        assert config["extra"] == "kept"
        assert config["settings_key"] == "treeStructure"

    def test_overrides_applied_last_and_none_ignored(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILENAME).write_text(yaml.dump({"copy_suffix": "Dup"}))
        config = load_config(tmp_path, {"copy_suffix": "Clone", "settings_key": None})
        assert config["copy_suffix"] == "Clone"
        assert config["settings_key"] == "treeStructure"

    def test_empty_file(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILENAME).write_text("")
        assert load_config(tmp_path) == DEFAULT_CONFIG

    def test_non_mapping_rejected(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILENAME).write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="must contain a mapping"):
            load_config(tmp_path)


class TestHelpers:
    def test_debounce_seconds(self) -> None:
        assert debounce_seconds({"save_debounce_ms": 200}) == pytest.approx(0.2)
        assert debounce_seconds({"save_debounce_ms": -5}) == 0.0

    def test_default_log_dir_beside_workbook(self, tmp_path: Path) -> None:
        path = resolve_log_dir(dict(DEFAULT_CONFIG), tmp_path / "book.xlsx")
        assert path == tmp_path.resolve() / ".sheettree" / "logs"

    def test_explicit_log_dir(self, tmp_path: Path) -> None:
        config = {**DEFAULT_CONFIG, "log_dir": str(tmp_path / "elsewhere")}
        assert resolve_log_dir(config, tmp_path / "book.xlsx") == tmp_path / "elsewhere"
