"""Rotating proxy pool with failure tracking and a JSON cache shared across runs."""

from __future__ import annotations

import html
import json
import logging
import re
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import requests

from .errors import ProxyRefreshError
from .models import ProxyEntry

logger = logging.getLogger(__name__)

SOFT_FAIL_LIMIT = 3  # excluded from selection
HARD_FAIL_LIMIT = 5  # removed from the pool
CACHE_MAX_AGE_S = 30 * 60

_BROWSER_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)

_ROW_RE = re.compile(r"<tr[^>]*>(.*?)</tr>", re.IGNORECASE | re.DOTALL)
_CELL_RE = re.compile(r"<td[^>]*>(.*?)</td>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")
_IP_RE = re.compile(r"^\d{1,3}(?:\.\d{1,3}){3}$")


def parse_proxy_table(markup: str) -> list[ProxyEntry]:
    """
    Extract HTTPS-capable proxies from a free-proxy-list style table.

    Columns: 0 = IP, 1 = port, 6 = "Https" (yes/no). Rows that do not look like
    an ip/port pair (headers, footers) are ignored.
    """
    proxies: list[ProxyEntry] = []
    seen: set[str] = set()
    for row in _ROW_RE.findall(markup):
        cells = [html.unescape(_TAG_RE.sub("", c)).strip() for c in _CELL_RE.findall(row)]
        if len(cells) < 7:
            continue
        ip, port, https = cells[0], cells[1], cells[6].lower()
        if not _IP_RE.match(ip) or not port.isdigit():
            continue
        if https != "yes":
            continue
        entry = ProxyEntry(ip=ip, port=port)
        if entry.address in seen:
            continue
        seen.add(entry.address)
        proxies.append(entry)
    return proxies


class ProxyPoolManager:
    """
    Supplies one proxy per request attempt.

    One instance per run, shared by all workers. Every read-modify-write of the
    list, the round-robin index and the fail counters happens under `self._lock`.
    """

    def __init__(
        self,
        cache_file: Path,
        refresh_interval_s: float = 30 * 60,
        source_url: str = "https://free-proxy-list.net/",
        fetch_timeout_s: float = 10,
        clock: Callable[[], float] = time.time,
    ):
        self.cache_file = cache_file
        self.refresh_interval_s = refresh_interval_s
        self.source_url = source_url
        self.fetch_timeout_s = fetch_timeout_s
        self._clock = clock

        self._lock = threading.RLock()
        self._proxies: list[ProxyEntry] = []
        self._index = 0
        self._last_refresh_ms = 0
        self._evicted: set[str] = set()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @property
    def proxies(self) -> list[ProxyEntry]:
        with self._lock:
            return list(self._proxies)

    def __len__(self) -> int:
        with self._lock:
            return len(self._proxies)

    # --- cache ---------------------------------------------------------------

    def _load_cache(self) -> bool:
        if not self.cache_file.exists():
            return False
        try:
            data = json.loads(self.cache_file.read_text(encoding="utf-8"))
        except Exception as e:
            logger.warning(f"⚠️ [Proxy] Unreadable proxy cache {self.cache_file}: {e}")
            return False

        if not isinstance(data, dict):
            return False
        raw = data.get("proxies") or []
        try:
            timestamp = int(data.get("timestamp") or 0)
            age_s = (self._now_ms() - timestamp) / 1000
            if age_s >= CACHE_MAX_AGE_S or not isinstance(raw, list) or not raw:
                return False
            proxies = [ProxyEntry.from_json_dict(item) for item in raw if isinstance(item, dict)]
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"⚠️ [Proxy] Malformed proxy cache entry: {e}")
            return False
        if not proxies:
            return False

        self._proxies = proxies
        self._last_refresh_ms = timestamp
        self._index = 0
        return True

    def _save_cache(self) -> None:
        payload: dict[str, Any] = {
            "timestamp": self._last_refresh_ms,
            "proxies": [p.to_json_dict() for p in self._proxies],
        }
        try:
            self.cache_file.parent.mkdir(parents=True, exist_ok=True)
            self.cache_file.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as e:
            logger.error(f"❌ [Proxy] Failed to write proxy cache: {e}")

    # --- lifecycle -----------------------------------------------------------

    def init(self) -> None:
        """Load from cache when fresh, otherwise refresh. Never raises."""
        logger.info("🌐 [Proxy] Initializing proxy manager...")
        with self._lock:
            if self._load_cache():
                logger.info(f"🌐 [Proxy] Loaded {len(self._proxies)} proxies from cache")
                return
            try:
                self.refresh()
            except Exception as e:
                logger.error(f"❌ [Proxy] Proxy manager initialization error: {e}")
                self._proxies = []

    def refresh(self) -> None:
        """Fetch and parse the public list, keep HTTPS entries, persist."""
        logger.info("🌐 [Proxy] Fetching fresh proxy list...")
        try:
            resp = requests.get(
                self.source_url,
                headers={"User-Agent": _BROWSER_UA},
                timeout=self.fetch_timeout_s,
            )
        except requests.RequestException as e:
            raise ProxyRefreshError(f"Failed to fetch proxy list: {e}") from e

        if not 200 <= resp.status_code < 300:
            raise ProxyRefreshError(
                f"Failed to fetch proxy list: {resp.status_code}",
                {"status": resp.status_code},
            )

        proxies = [p for p in parse_proxy_table(resp.text) if p.address not in self._evicted]
        if not proxies:
            raise ProxyRefreshError("No HTTPS proxies found in the list")

        with self._lock:
            self._proxies = proxies
            self._last_refresh_ms = self._now_ms()
            self._index = 0
            self._save_cache()
        logger.info(f"🌐 [Proxy] Fetched {len(proxies)} HTTPS proxies")

    def _is_stale(self) -> bool:
        return (self._now_ms() - self._last_refresh_ms) / 1000 > self.refresh_interval_s

    # --- selection -----------------------------------------------------------

    def get_proxy(self) -> ProxyEntry | None:
        """
        Next usable proxy in round-robin order, or None when the pool is empty
        even after a refresh attempt.
        """
        with self._lock:
            if self._proxies and self._is_stale():
                try:
                    self.refresh()
                except ProxyRefreshError as e:
                    logger.warning(f"⚠️ [Proxy] Refresh failed, keeping current list: {e}")
                    self._last_refresh_ms = self._now_ms()

            if not self._proxies:
                try:
                    self.refresh()
                except ProxyRefreshError as e:
                    logger.error(f"❌ [Proxy] Failed to refresh proxies and none are available: {e}")
                    return None
                if not self._proxies:
                    return None

            for _ in range(len(self._proxies)):
                self._index %= len(self._proxies)
                proxy = self._proxies[self._index]
                self._index = (self._index + 1) % len(self._proxies)
                if proxy.fails >= SOFT_FAIL_LIMIT:
                    continue
                proxy.last_used = self._now_ms()
                return proxy

            logger.warning("⚠️ [Proxy] All proxies have failed too many times. Resetting fail counts.")
            for proxy in self._proxies:
                proxy.fails = 0
            first = self._proxies[0]
            first.last_used = self._now_ms()
            self._index = 1 % len(self._proxies)
            self._save_cache()
            return first

    def mark_failed(self, entry: ProxyEntry | None) -> None:
        if entry is None:
            return
        with self._lock:
            match = next(
                (p for p in self._proxies if p.ip == entry.ip and p.port == entry.port),
                None,
            )
            if match is None:
                return
            match.fails += 1
            logger.info(f"⚠️ [Proxy] Marked proxy {match.address} as failed ({match.fails} fails)")

            if match.fails >= HARD_FAIL_LIMIT:
                logger.info(f"🗑️ [Proxy] Removing proxy {match.address} due to too many failures")
                idx = self._proxies.index(match)
                self._proxies.pop(idx)
                self._evicted.add(match.address)
                if idx < self._index:
                    self._index -= 1

            self._save_cache()
