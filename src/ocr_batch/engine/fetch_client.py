"""
Resilient HTTP exchange: proxy rotation with failure marking, then a direct attempt.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import requests

from .errors import NetworkError, ProxyExhaustedError, ResponseParseError
from .models import ProxyEntry
from .proxy_pool import ProxyPoolManager

if TYPE_CHECKING:
    from .vendors import OcrVendor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchRequest:
    """Everything needed to replay one HTTP request on every attempt."""

    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    data: dict[str, Any] | None = None
    files: dict[str, Any] | None = None


class ResilientFetchClient:
    def __init__(
        self,
        proxy_pool: ProxyPoolManager | None = None,
        timeout_s: float = 30,
        backoff_s: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.proxy_pool = proxy_pool
        self.timeout_s = timeout_s
        self.backoff_s = backoff_s
        self._sleep = sleep

    def _send(self, request: FetchRequest, proxy: ProxyEntry | None) -> requests.Response:
        proxies = {"http": proxy.url, "https": proxy.url} if proxy else None
        resp = requests.request(
            request.method,
            request.url,
            headers=request.headers,
            data=request.data,
            files=request.files,
            proxies=proxies,
            timeout=self.timeout_s,
        )
        if not 200 <= resp.status_code < 300:
            raise NetworkError(
                f"HTTP error: {resp.status_code}",
                {"status": resp.status_code, "url": request.url},
            )
        return resp

    def _send_direct(self, request: FetchRequest) -> requests.Response:
        try:
            return self._send(request, None)
        except requests.RequestException as e:
            raise NetworkError(f"Direct request failed: {e}", {"url": request.url}) from e

    def fetch_with_resilience(self, request: FetchRequest, max_retries: int) -> requests.Response:
        """
        Up to `max_retries` proxied attempts, then one direct attempt.
        The first 2xx response at any stage is returned.
        """
        if self.proxy_pool is None:
            return self._send_direct(request)

        last_error: Exception | None = None
        for attempt in range(max_retries):
            proxy = self.proxy_pool.get_proxy()
            if proxy is None:
                logger.info("🌐 [Fetch] No proxy available, using direct connection")
                break

            logger.debug(f"🌐 [Fetch] Using proxy {proxy.address} (attempt {attempt + 1}/{max_retries})")
            try:
                return self._send(request, proxy)
            except (requests.RequestException, NetworkError) as e:
                last_error = e
                logger.info(f"⚠️ [Fetch] Proxy error ({proxy.address}): {e}")
                self.proxy_pool.mark_failed(proxy)
                self._sleep(self.backoff_s)
        else:
            if max_retries > 0:
                logger.info("🌐 [Fetch] All proxy attempts failed, trying direct connection")

        try:
            return self._send_direct(request)
        except NetworkError as direct_error:
            raise ProxyExhaustedError(
                f"Failed to fetch {request.url} after {max_retries} proxy attempts and direct fallback",
                {
                    "url": request.url,
                    "last_proxy_error": str(last_error) if last_error else None,
                    "direct_error": str(direct_error),
                },
            ) from (last_error or direct_error)

    def run_exchange(self, vendor: OcrVendor, image_path: Path, max_retries: int) -> str:
        """
        Submit the image, then follow the vendor's result locator if it returns one.
        Both legs go through fetch_with_resilience.
        """
        submit_resp = self.fetch_with_resilience(vendor.build_submit_request(image_path), max_retries)
        parsed = vendor.parse_submission(submit_resp)

        if not parsed.found:
            raise ResponseParseError(
                parsed.reason or "Could not find result locator in response",
                {"vendor": vendor.name, "file": str(image_path)},
            )
        if parsed.text is not None:
            return parsed.text

        download_resp = self.fetch_with_resilience(
            vendor.build_download_request(parsed.locator), max_retries
        )
        return vendor.extract_text(download_resp)
