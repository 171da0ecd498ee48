"""
Batch run controller: scan, classify, dispatch, aggregate.

Everything is derived from filesystem state (result files and lock markers), so
several controllers may run over the same tree from different processes.
"""

from __future__ import annotations

import logging
import os
import time
import uuid
from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

import requests

from ..config import PROXY_LIST_URL, BatchConfig
from . import markers
from .errors import BatchAbortError, LockConflictError, OcrError, PersistenceError
from .fetch_client import ResilientFetchClient
from .lock_manager import LockManager
from .models import JobOutcome, Resource, RunSummary
from .proxy_pool import ProxyPoolManager
from .scanner import count_folders, find_image_files
from .vendors import OcrVendor, get_vendor
from .worker_pool import WorkerPool

logger = logging.getLogger(__name__)


def generate_owner_id() -> str:
    return f"pid-{os.getpid()}-{uuid.uuid4().hex[:9]}"


def persist_result(resource: Resource, text: str) -> Path:
    """Write text next to the image. Temp file + replace, so a crash never leaves a partial result."""
    output_path = resource.result_path
    tmp_path = output_path.with_name(f".{output_path.name}.{uuid.uuid4().hex[:8]}.tmp")
    try:
        tmp_path.write_text(text, encoding="utf-8")
        os.replace(tmp_path, output_path)
    except OSError as e:
        tmp_path.unlink(missing_ok=True)
        raise PersistenceError(
            f"Cannot write result for {resource.name}: {e}",
            {"output_path": str(output_path)},
        ) from e
    return output_path


class BatchRunController:
    def __init__(
        self,
        config: BatchConfig,
        vendor: OcrVendor | None = None,
        lock_manager: LockManager | None = None,
        proxy_pool: ProxyPoolManager | None = None,
        fetch_client: ResilientFetchClient | None = None,
        owner_id: str | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.vendor = vendor
        self.lock_manager = lock_manager or LockManager(clock=clock)
        self.proxy_pool = proxy_pool
        self.fetch_client = fetch_client
        self.owner_id = owner_id or generate_owner_id()
        self._clock = clock

    # --- setup ---------------------------------------------------------------

    def _validate_root(self, root: Path) -> Path:
        if not root.exists():
            raise BatchAbortError(f"'{root}' does not exist.", {"root": str(root)})
        if not root.is_dir():
            raise BatchAbortError(f"'{root}' is not a directory.", {"root": str(root)})
        return root.resolve()

    def _ensure_client(self, needs_network: bool) -> ResilientFetchClient | None:
        if self.fetch_client is not None or not needs_network:
            return self.fetch_client

        if self.config.use_proxy and self.proxy_pool is None:
            self.proxy_pool = ProxyPoolManager(
                cache_file=self.config.proxy_cache_file,
                refresh_interval_s=self.config.proxy_refresh_interval_s,
                source_url=PROXY_LIST_URL,
            )
            self.proxy_pool.init()

        self.fetch_client = ResilientFetchClient(
            proxy_pool=self.proxy_pool if self.config.use_proxy else None,
            timeout_s=self.config.proxy_timeout_s,
            backoff_s=self.config.proxy_backoff_s,
        )
        return self.fetch_client

    # --- classification ------------------------------------------------------

    def classify(self, resources: list[Resource]) -> tuple[list[JobOutcome], list[Resource]]:
        """Split into pre-decided outcomes (skipped/locked) and pending work."""
        decided: list[JobOutcome] = []
        pending: list[Resource] = []
        for resource in resources:
            if resource.has_result():
                logger.info(f"↷ Skipping: {resource.name} (already processed)")
                decided.append(JobOutcome.skipped(resource, resource.result_path))
            elif self.lock_manager.is_locked(resource, self.config.stale_lock_minutes):
                logger.info(f"⊘ Skipping: {resource.name} (locked by another process)")
                decided.append(JobOutcome.locked(resource, "Being processed by another instance"))
            else:
                pending.append(resource)
        return decided, pending

    # --- per-resource task ---------------------------------------------------

    def process_resource(self, resource: Resource) -> JobOutcome:
        """Lock, OCR, persist, unlock. Never raises; errors become Failure outcomes."""
        try:
            if not self.lock_manager.acquire(
                resource, self.owner_id, self.config.stale_lock_minutes
            ):
                raise LockConflictError("Image is being processed by another instance")
        except LockConflictError as e:
            return JobOutcome.locked(resource, e.message)
        except OcrError as e:
            return JobOutcome.failure(resource, e.message)

        try:
            if self.vendor is None or self.fetch_client is None:
                raise OcrError("NOT_CONFIGURED", "No OCR vendor or fetch client configured")
            text = self.fetch_client.run_exchange(
                self.vendor, resource.path, self.config.proxy_retries
            )
            output_path = persist_result(resource, text)
            return JobOutcome.success(resource, text, output_path)
        except OcrError as e:
            logger.warning(f"⚠️ [Task] {resource.name}: {e}")
            return JobOutcome.failure(resource, e.message)
        except (requests.RequestException, OSError) as e:
            logger.warning(f"⚠️ [Task] {resource.name}: {e}")
            return JobOutcome.failure(resource, str(e) or type(e).__name__)
        finally:
            self.lock_manager.release(resource)

    # --- run -----------------------------------------------------------------

    def run_batch(self, root: Path) -> RunSummary:
        start = self._clock()
        root = self._validate_root(Path(root))
        if self.vendor is None:
            self.vendor = get_vendor(self.config.vendor)
        started_at = datetime.now(UTC).isoformat()
        snapshot = self.config.to_snapshot()
        in_progress = self.config.in_progress_file

        markers.write_in_progress(
            in_progress, started_at=started_at, owner_id=self.owner_id, root=root, config=snapshot
        )

        try:
            resources = find_image_files(root, self.config.extensions)
        except OSError as e:
            markers.remove_in_progress(in_progress)
            raise BatchAbortError(f"Error reading directory {root}: {e}", {"root": str(root)}) from e

        if not resources:
            markers.remove_in_progress(in_progress)
            raise BatchAbortError(
                f"No image files found in '{root}' or its subdirectories with extensions: "
                f"{', '.join(self.config.extensions)}",
                {"root": str(root)},
            )

        folders = count_folders(resources)
        logger.info(f"🔎 Found {len(resources)} image file(s) across {folders} folder(s)")

        decided, pending = self.classify(resources)

        self._ensure_client(needs_network=bool(pending))

        markers.write_in_progress(
            in_progress,
            started_at=started_at,
            owner_id=self.owner_id,
            root=root,
            config=snapshot,
            counts={
                "total_images": len(resources),
                "pending_images": len(pending),
                "folders_count": folders,
                "proxy_count": len(self.proxy_pool) if self.proxy_pool else 0,
            },
        )

        summary = RunSummary()
        summary.extend(decided)

        if pending:
            pool = WorkerPool(delay_s=self.config.batch_delay_ms / 1000)
            summary.extend(pool.run(deque(pending), self.config.concurrency, self.process_resource))

        markers.write_completion(
            self.config.completed_file, in_progress, summary, self._clock() - start
        )
        return summary
