from __future__ import annotations

import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_path(path: Path | str) -> str:
    return os.path.normcase(os.path.abspath(str(path)))


def point_id_for(path: Path | str) -> str:
    """Stable vector id for a file; re-upserting the same file overwrites its entry."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"file://{normalize_path(path)}"))


def single_line(text: str) -> str:
    return " ".join((text or "").split())


def distance_to_similarity(distance: Any) -> float:
    try:
        d = float(distance)
    except (TypeError, ValueError):
        return -1.0
    return max(-1.0, min(1.0, 1.0 - d))


def snippet(text: str, limit: int = 110) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 1].rstrip() + "…"
