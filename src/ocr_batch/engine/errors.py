from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class OcrError(Exception):
    """
    Explicit engine error. Per-resource errors are caught at the task boundary
    and turned into a Failure outcome; only BatchAbortError reaches the CLI.
    """

    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class LockConflictError(OcrError):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__("LOCK_CONFLICT", message, details or {})


class ProxyExhaustedError(OcrError):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__("PROXY_EXHAUSTED", message, details or {})


class NetworkError(OcrError):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__("NETWORK_FAILURE", message, details or {})


class ResponseParseError(OcrError):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__("RESPONSE_PARSE_FAILURE", message, details or {})


class PersistenceError(OcrError):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__("PERSISTENCE_FAILURE", message, details or {})


class ProxyRefreshError(OcrError):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__("PROXY_REFRESH_FAILURE", message, details or {})


class ConfigError(OcrError):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__("CONFIG_ERROR", message, details or {})


class BatchAbortError(OcrError):
    """Fatal pre-scan condition: invalid root or nothing to process."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__("BATCH_ABORTED", message, details or {})
