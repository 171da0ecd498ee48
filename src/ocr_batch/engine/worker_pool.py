from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed

from .models import JobOutcome, OutcomeKind, Resource

logger = logging.getLogger(__name__)

Task = Callable[[Resource], JobOutcome]

_SYMBOLS = {
    OutcomeKind.SUCCESS: "✓",
    OutcomeKind.FAILURE: "✗",
    OutcomeKind.LOCKED: "⊘",
    OutcomeKind.SKIPPED: "↷",
}


class WorkerPool:
    """
    Fixed number of workers draining one shared FIFO queue.

    Each queued resource is popped exactly once (pop under `_queue_lock`) and yields
    exactly one outcome (append under `_results_lock`). Result order is whatever
    order the workers finish in.
    """

    def __init__(
        self,
        delay_s: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.delay_s = delay_s
        self._sleep = sleep
        self._queue_lock = threading.Lock()
        self._results_lock = threading.Lock()
        self.workers_started = 0

    def _pop(self, queue: deque[Resource]) -> Resource | None:
        with self._queue_lock:
            return queue.popleft() if queue else None

    def _worker(self, queue: deque[Resource], task: Task, results: list[JobOutcome], total: int) -> None:
        while True:
            resource = self._pop(queue)
            if resource is None:
                return

            try:
                outcome = task(resource)
            except Exception as e:
                logger.error(f"❌ [Pool] Unhandled error for {resource.name}: {e}", exc_info=True)
                outcome = JobOutcome.failure(resource, str(e) or type(e).__name__)

            with self._results_lock:
                results.append(outcome)
                done = len(results)

            detail = outcome.output_path.name if outcome.output_path else outcome.reason
            logger.info(f"{_SYMBOLS[outcome.kind]} {resource.name} - {detail} [{done}/{total}]")

            if self.delay_s > 0:
                with self._queue_lock:
                    more = bool(queue)
                if more:
                    self._sleep(self.delay_s)

    def run(self, queue: deque[Resource], concurrency: int, task: Task) -> list[JobOutcome]:
        total = len(queue)
        results: list[JobOutcome] = []
        worker_count = min(max(1, concurrency), total)
        self.workers_started = worker_count
        if worker_count == 0:
            return results

        logger.info(f"🚀 [Pool] Starting worker pool with {worker_count} concurrent workers")
        with ThreadPoolExecutor(max_workers=worker_count, thread_name_prefix="ocr-worker") as executor:
            futures = [
                executor.submit(self._worker, queue, task, results, total)
                for _ in range(worker_count)
            ]
            for future in as_completed(futures):
                future.result()

        return results
