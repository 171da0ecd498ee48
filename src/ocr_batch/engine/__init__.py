from .controller import BatchRunController
from .errors import (
    BatchAbortError,
    ConfigError,
    LockConflictError,
    NetworkError,
    OcrError,
    PersistenceError,
    ProxyExhaustedError,
    ProxyRefreshError,
    ResponseParseError,
)
from .fetch_client import FetchRequest, ResilientFetchClient
from .lock_manager import LockManager
from .models import JobOutcome, OutcomeKind, ProxyEntry, Resource, RunSummary
from .proxy_pool import ProxyPoolManager
from .vendors import I2OcrVendor, OcrVendor, OpenlVendor, SubmissionParse, get_vendor
from .worker_pool import WorkerPool

__all__ = [
    "BatchAbortError",
    "BatchRunController",
    "ConfigError",
    "FetchRequest",
    "I2OcrVendor",
    "JobOutcome",
    "LockConflictError",
    "LockManager",
    "NetworkError",
    "OcrError",
    "OcrVendor",
    "OpenlVendor",
    "OutcomeKind",
    "PersistenceError",
    "ProxyEntry",
    "ProxyExhaustedError",
    "ProxyPoolManager",
    "ProxyRefreshError",
    "ResilientFetchClient",
    "Resource",
    "ResponseParseError",
    "RunSummary",
    "SubmissionParse",
    "WorkerPool",
    "get_vendor",
]
