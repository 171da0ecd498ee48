"""
OCR Batch - Configuration Module
Defaults come from OCR_* environment variables, CLI flags override them.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any


def _get_int(env_names: list[str], fallback: int, minimum: int = 1) -> int:
    for name in env_names:
        value = os.environ.get(name, "").strip()
        if value:
            try:
                return max(minimum, int(value))
            except Exception:
                continue
    return fallback


def _get_bool(env_name: str, fallback: bool) -> bool:
    value = os.environ.get(env_name, "").strip().lower()
    if not value:
        return fallback
    return value in ("1", "true", "yes", "on")


def parse_extensions(raw: str) -> tuple[str, ...]:
    """'JPG, .png,,gif' -> ('jpg', 'png', 'gif')"""
    exts = [e.strip().lower().lstrip(".") for e in raw.split(",")]
    return tuple(e for e in exts if e)


# Defaults
DEFAULT_EXTENSIONS = ("jpeg", "jpg", "png", "gif", "bmp")
DEFAULT_CONCURRENCY = _get_int(["OCR_BATCH_SIZE", "OCR_WORKERS"], 5)
DEFAULT_BATCH_DELAY_MS = _get_int(["OCR_BATCH_DELAY_MS"], 3000, minimum=0)
DEFAULT_STALE_LOCK_MINUTES = _get_int(["OCR_STALE_LOCK_MINUTES"], 30)
DEFAULT_PROXY_TIMEOUT_S = _get_int(["OCR_PROXY_TIMEOUT"], 30)
DEFAULT_PROXY_RETRIES = _get_int(["OCR_PROXY_RETRIES"], 3, minimum=0)
DEFAULT_PROXY_REFRESH_INTERVAL_S = _get_int(["OCR_PROXY_REFRESH_INTERVAL_SEC"], 30 * 60)
DEFAULT_VENDOR = os.environ.get("OCR_VENDOR", "i2ocr").strip() or "i2ocr"

PROXY_LIST_URL = os.environ.get("OCR_PROXY_LIST_URL", "https://free-proxy-list.net/")

# State files (markers, proxy cache) live in the working dir unless overridden
STATE_DIR = Path(os.environ.get("OCR_STATE_DIR", "."))
PROXY_CACHE_FILENAME = "available_proxies.json"
IN_PROGRESS_FILENAME = "ocr_in_progress.flag"
COMPLETED_FILENAME = "ocr_completed.flag"


@dataclass(frozen=True)
class BatchConfig:
    """
    Runtime configuration of one batch run.
    No secrets here: vendor credentials are read by the vendor itself.
    """

    concurrency: int = 5
    batch_delay_ms: int = 3000
    extensions: tuple[str, ...] = DEFAULT_EXTENSIONS
    stale_lock_minutes: int = 30
    use_proxy: bool = True
    proxy_timeout_s: int = 30
    proxy_retries: int = 3
    proxy_refresh_interval_s: int = 30 * 60
    proxy_backoff_s: float = 1.0
    vendor: str = "i2ocr"
    state_dir: Path = Path(".")

    @classmethod
    def from_env(cls) -> BatchConfig:
        extensions = parse_extensions(os.environ.get("OCR_EXTENSIONS", ""))
        return cls(
            concurrency=DEFAULT_CONCURRENCY,
            batch_delay_ms=DEFAULT_BATCH_DELAY_MS,
            extensions=extensions or DEFAULT_EXTENSIONS,
            stale_lock_minutes=DEFAULT_STALE_LOCK_MINUTES,
            use_proxy=_get_bool("OCR_USE_PROXY", True),
            proxy_timeout_s=DEFAULT_PROXY_TIMEOUT_S,
            proxy_retries=DEFAULT_PROXY_RETRIES,
            proxy_refresh_interval_s=DEFAULT_PROXY_REFRESH_INTERVAL_S,
            vendor=DEFAULT_VENDOR,
            state_dir=STATE_DIR,
        )

    def with_overrides(self, **overrides: Any) -> BatchConfig:
        """Return a copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes)

    @property
    def proxy_cache_file(self) -> Path:
        return self.state_dir / PROXY_CACHE_FILENAME

    @property
    def in_progress_file(self) -> Path:
        return self.state_dir / IN_PROGRESS_FILENAME

    @property
    def completed_file(self) -> Path:
        return self.state_dir / COMPLETED_FILENAME

    def to_snapshot(self) -> dict[str, Any]:
        data = asdict(self)
        data["extensions"] = list(self.extensions)
        data["state_dir"] = str(self.state_dir)
        return data
