from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any


def ensure_directory(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def render_json(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, indent=2)


def write_json(path: Path, payload: Any) -> None:
    """Write ``payload`` next to ``path`` first, then move it into place."""
    ensure_directory(path.parent)
    staging = path.with_name(f".{path.name}.tmp")
    try:
        staging.write_text(render_json(payload), encoding="utf-8")
        os.replace(staging, path)
    except OSError:
        staging.unlink(missing_ok=True)
        raise


def is_writable_directory(path: Path) -> bool:
    """True if ``path`` is, or could be created as, a writable directory."""
    target = path
    while not target.exists() and target != target.parent:
        target = target.parent
    return target.is_dir() and os.access(target, os.W_OK)
