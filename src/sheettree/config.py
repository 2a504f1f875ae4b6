"""Configuration loading (``sheettree.yaml`` beside the workbook)."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

CONFIG_FILENAME = "sheettree.yaml"

DEFAULT_CONFIG = {
    "save_debounce_ms": 200,
    "settings_key": "treeStructure",
    "max_settings_bytes": 1_900_000,  # ~1.9 MB document settings ceiling
    "default_folder_name": "New Folder",
    "default_sheet_name": "New Sheet",
    "copy_suffix": "Copy",
    "logging_fsync": False,
    "logging_tail_bytes": 2_097_152,  # 2 MB
    "log_dir": None,  # default: <workbook dir>/.sheettree/logs
}


def load_config(directory: Path, overrides: dict[str, Any] | None = None) -> dict[str, Any]:
    """Load configuration from ``sheettree.yaml`` in *directory*, with defaults.

    Args:
        directory: Directory holding the workbook (and optional config file).
        overrides: Values applied last, e.g. from CLI flags.

    Returns:
        Merged configuration dict.

    Raises:
        ValueError: The config file does not contain a mapping.
    """
    config = dict(DEFAULT_CONFIG)
    config_path = directory / CONFIG_FILENAME
    if config_path.exists():
        user_config = yaml.safe_load(config_path.read_text()) or {}
        if not isinstance(user_config, dict):
            raise ValueError(f"{config_path} must contain a mapping")
        config.update(user_config)
    if overrides:
        config.update({k: v for k, v in overrides.items() if v is not None})
    return config


def debounce_seconds(config: dict[str, Any]) -> float:
    """Return the save debounce window in seconds."""
    return max(0.0, float(config.get("save_debounce_ms", 200)) / 1000.0)


def resolve_log_dir(config: dict[str, Any], workbook_path: Path) -> Path:
    """Return the event log directory for *workbook_path*."""
    log_dir = config.get("log_dir")
    if log_dir:
        return Path(log_dir)
    return workbook_path.resolve().parent / ".sheettree" / "logs"
