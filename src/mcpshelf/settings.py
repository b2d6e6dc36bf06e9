"""Runtime settings for the mcpshelf store and CLI."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from mcpshelf import __version__

DEFAULT_MAX_BACKUPS = 10

_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class RuntimeSettings:
    home_dir: Path
    data_dir: Path
    log_dir: Path
    max_backups: int = DEFAULT_MAX_BACKUPS
    auto_backup: bool = True
    cli_version: str = __version__

    @property
    def state_file(self) -> Path:
        return self.data_dir / "store.json"

    @property
    def backups_file(self) -> Path:
        return self.data_dir / "backups.json"


def _default_home_dir() -> Path:
    override = os.getenv("MCPSHELF_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".mcpshelf"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if value < 1:
        raise ValueError(f"{name} must be at least 1")
    return value


def load_settings() -> RuntimeSettings:
    base = _default_home_dir()
    return RuntimeSettings(
        home_dir=base,
        data_dir=base / "data",
        log_dir=base / "logs",
        max_backups=_env_int("MCPSHELF_MAX_BACKUPS", DEFAULT_MAX_BACKUPS),
        auto_backup=os.getenv("MCPSHELF_AUTO_BACKUP", "1").strip().lower() not in _FALSE_VALUES,
    )


SETTINGS = load_settings()
