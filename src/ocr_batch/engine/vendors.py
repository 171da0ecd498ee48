"""
OCR vendor adapters.

A vendor knows how to build the upload request and how to read the vendor-specific
response. Orchestration only sees the typed SubmissionParse result.
"""

from __future__ import annotations

import hashlib
import json
import mimetypes
import os
import random
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

import requests

from .errors import ConfigError, PersistenceError, ResponseParseError
from .fetch_client import FetchRequest

_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/134.0.0.0 Safari/537.36"
)


@dataclass(frozen=True)
class SubmissionParse:
    """
    Outcome of parsing the upload response:
    - locator set: result must be downloaded in a second request
    - text set: vendor returned the text inline
    - neither: response did not contain what we expected (see reason)
    """

    locator: str | None = None
    text: str | None = None
    reason: str = ""

    @property
    def found(self) -> bool:
        return self.locator is not None or self.text is not None


@runtime_checkable
class OcrVendor(Protocol):
    @property
    def name(self) -> str: ...

    def build_submit_request(self, image_path: Path) -> FetchRequest: ...

    def parse_submission(self, response: requests.Response) -> SubmissionParse: ...

    def build_download_request(self, locator: str) -> FetchRequest: ...

    def extract_text(self, response: requests.Response) -> str: ...


def _read_image(image_path: Path) -> bytes:
    try:
        return image_path.read_bytes()
    except OSError as e:
        raise PersistenceError(f"Cannot read image {image_path.name}: {e}") from e


def _guess_mime(image_path: Path) -> str:
    return mimetypes.guess_type(image_path.name)[0] or "application/octet-stream"


class I2OcrVendor:
    """i2ocr.com: form upload, then download of the generated text file."""

    BASE_URL = "https://www.i2ocr.com"
    _DOWNLOAD_LINK_RE = re.compile(r'\$\("#download_text"\)\.attr\("href",\s*"([^"]+)"\)')

    def __init__(self, languages: str = "ir,urd", cookie: str | None = None):
        self.languages = languages
        self.cookie = cookie

    @property
    def name(self) -> str:
        return "i2ocr"

    def _headers(self) -> dict[str, str]:
        headers = {
            "accept": "*/*",
            "accept-language": "en-GB,en-US;q=0.9,en;q=0.8",
            "origin": self.BASE_URL,
            "referer": f"{self.BASE_URL}/",
            "user-agent": _USER_AGENT,
            "x-requested-with": "XMLHttpRequest",
        }
        if self.cookie:
            headers["cookie"] = self.cookie
        return headers

    def build_submit_request(self, image_path: Path) -> FetchRequest:
        form = {
            "i2ocr_languages": self.languages,
            "engine_options": "engine_3",
            "layout_options": "single_column",
            "i2ocr_options": "file",
            "ocr_type": "1",
            "i2ocr_url": "http://",
            "x": "",
            "y": "",
            "w": "",
            "h": "",
            "ly": "single_column",
            "en": "3",
        }
        files = {
            "i2ocr_uploadedfile": (image_path.name, _read_image(image_path), _guess_mime(image_path)),
        }
        return FetchRequest(
            url=f"{self.BASE_URL}/process_form",
            method="POST",
            headers=self._headers(),
            data=form,
            files=files,
        )

    def parse_submission(self, response: requests.Response) -> SubmissionParse:
        match = self._DOWNLOAD_LINK_RE.search(response.text or "")
        if not match:
            return SubmissionParse(reason="Could not find download link in response")
        return SubmissionParse(locator=match.group(1))

    def build_download_request(self, locator: str) -> FetchRequest:
        url = locator if locator.startswith("http") else f"{self.BASE_URL}{locator}"
        headers = {"referer": f"{self.BASE_URL}/", "user-agent": _USER_AGENT}
        if self.cookie:
            headers["cookie"] = self.cookie
        return FetchRequest(url=url, headers=headers)

    def extract_text(self, response: requests.Response) -> str:
        response.encoding = response.encoding or "utf-8"
        return response.text


class OpenlVendor:
    """api.openl.io: signed single-request upload, text returned inline as JSON."""

    URL = "https://api.openl.io/translate/img"

    def __init__(self, api_secret: str, secret_key: str):
        if not api_secret or not secret_key:
            raise ConfigError("OpenL vendor requires OCR_OPENL_API_SECRET and OCR_OPENL_SECRET_KEY")
        self.api_secret = api_secret
        self.secret_key = secret_key

    @property
    def name(self) -> str:
        return "openl"

    def _signed_headers(self) -> dict[str, str]:
        timestamp = str(int(time.time() * 1000))
        signature = hashlib.md5(
            (timestamp + self.api_secret + self.secret_key).encode("utf-8")
        ).hexdigest()
        return {
            "accept": "application/json, text/plain, */*",
            "nonce": str(random.random()),
            "secret": self.secret_key,
            "signature": signature,
            "timestamp": timestamp,
            "x-api-secret": self.api_secret,
            "user-agent": _USER_AGENT,
        }

    def build_submit_request(self, image_path: Path) -> FetchRequest:
        files = {"file": (image_path.name, _read_image(image_path), _guess_mime(image_path))}
        return FetchRequest(url=self.URL, method="POST", headers=self._signed_headers(), files=files)

    def parse_submission(self, response: requests.Response) -> SubmissionParse:
        try:
            data = response.json()
        except (ValueError, json.JSONDecodeError):
            return SubmissionParse(reason="Invalid response from OpenL API (not JSON)")
        text = data.get("text") if isinstance(data, dict) else None
        if not isinstance(text, str) or not text:
            return SubmissionParse(reason="Invalid response from OpenL API (missing text field)")
        return SubmissionParse(text=text)

    def build_download_request(self, locator: str) -> FetchRequest:
        raise ResponseParseError("OpenL returns text inline, there is nothing to download")

    def extract_text(self, response: requests.Response) -> str:
        parsed = self.parse_submission(response)
        if parsed.text is None:
            raise ResponseParseError(parsed.reason)
        return parsed.text


VENDORS = ("i2ocr", "openl")


def get_vendor(name: str) -> OcrVendor:
    """Build a vendor from its name, reading its settings from OCR_* env vars."""
    key = (name or "").strip().lower()
    if key == "i2ocr":
        return I2OcrVendor(
            languages=os.environ.get("OCR_I2OCR_LANGUAGES", "ir,urd"),
            cookie=os.environ.get("OCR_I2OCR_COOKIE") or None,
        )
    if key == "openl":
        return OpenlVendor(
            api_secret=os.environ.get("OCR_OPENL_API_SECRET", "").strip(),
            secret_key=os.environ.get("OCR_OPENL_SECRET_KEY", "").strip(),
        )
    raise ConfigError(f"Unknown OCR vendor: {name!r}", {"available": list(VENDORS)})
