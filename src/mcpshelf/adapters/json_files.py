"""JSON file helpers shared by the filesystem adapters."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from mcpshelf.domain.mcp import PersistenceError


def read_json(path: Path) -> Any | None:
    if not path.exists():
        return None
    raw = path.read_text(encoding="utf-8")
    if not raw.strip():
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise PersistenceError(f"Cannot parse {path}: {exc}") from exc


def write_json_atomic(path: Path, payload: Any) -> None:
    """Write ``payload`` next to ``path`` and swap it in with ``os.replace``."""

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(json.dumps(payload, ensure_ascii=False, indent=2) + "\n")
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


__all__ = ["read_json", "write_json_atomic"]
