"""Shared helpers for CLI commands."""

from __future__ import annotations

from pathlib import Path

from releaseboard.config import BoardConfig, config
from releaseboard.core.wiring import BoardServices, build_services


def board_config(db_path: str | None = None, scripts_dir: str | None = None) -> BoardConfig:
    """Return the global config with command-line overrides applied."""
    update: dict[str, Path] = {}
    if db_path:
        update["db_path"] = Path(db_path)
    if scripts_dir:
        update["scripts_dir"] = Path(scripts_dir)
    return config.model_copy(update=update) if update else config


def open_services(db_path: str | None = None, scripts_dir: str | None = None) -> BoardServices:
    return build_services(board_config(db_path, scripts_dir))
