from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .models import RunSummary

logger = logging.getLogger(__name__)


def _utc_now_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _write_json(path: Path, payload: dict[str, Any]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
    tmp.replace(path)
    return path


def write_in_progress(
    path: Path,
    *,
    started_at: str,
    owner_id: str,
    root: Path,
    config: dict[str, Any],
    counts: dict[str, int] | None = None,
) -> Path | None:
    """
    Writes the in-progress marker. `counts` is added once scanning finished.
    Marker I/O problems are logged, never fatal for the run.
    """
    payload: dict[str, Any] = {
        "started_at": started_at,
        "updated_at": _utc_now_iso(),
        "process_id": owner_id,
        "folder_path": str(root),
        "config": config,
        "proxy_enabled": bool(config.get("use_proxy")),
    }
    if counts:
        payload.update(counts)

    try:
        return _write_json(path, payload)
    except OSError as e:
        logger.error(f"❌ [Markers] Error creating progress file: {e}")
        return None


def remove_in_progress(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.error(f"❌ [Markers] Error removing progress file: {e}")


def write_completion(
    path: Path,
    in_progress_path: Path,
    summary: RunSummary,
    elapsed_s: float,
) -> Path | None:
    """Writes the completion marker and deletes the in-progress one."""
    payload: dict[str, Any] = {
        "completed_at": _utc_now_iso(),
        "total_time_seconds": round(elapsed_s, 2),
        "results": summary.counts(),
        "details": [o.to_json_dict() for o in summary.outcomes],
    }
    try:
        written = _write_json(path, payload)
    except OSError as e:
        logger.error(f"❌ [Markers] Error creating completion file: {e}")
        return None

    remove_in_progress(in_progress_path)
    return written
