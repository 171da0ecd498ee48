"""
Tests for ocr_batch.engine.controller.

End-to-end runs over a temp folder with a fake OCR exchange.
"""

import json
import os
import threading
import time
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from ocr_batch.config import BatchConfig
from ocr_batch.engine import controller as controller_module
from ocr_batch.engine.controller import BatchRunController, persist_result
from ocr_batch.engine.errors import BatchAbortError, PersistenceError, ProxyExhaustedError
from ocr_batch.engine.lock_manager import LockManager
from ocr_batch.engine.models import OutcomeKind, Resource


class FakeExchange:
    """Stands in for ResilientFetchClient.run_exchange."""

    def __init__(self, fail_for: set[str] | None = None):
        self.fail_for = fail_for or set()
        self.calls: list[Path] = []
        self.in_progress_snapshots: list[dict] = []
        self.in_progress_file: Path | None = None
        self._lock = threading.Lock()

    def run_exchange(self, vendor, image_path: Path, max_retries: int) -> str:
        with self._lock:
            self.calls.append(image_path)
            if self.in_progress_file is not None and self.in_progress_file.exists():
                self.in_progress_snapshots.append(json.loads(self.in_progress_file.read_text()))
        if image_path.name in self.fail_for:
            raise ProxyExhaustedError("all proxies and direct connection failed")
        return f"text of {image_path.name}"


def _config(tmp_path, **overrides) -> BatchConfig:
    base = BatchConfig(
        concurrency=2,
        batch_delay_ms=0,
        use_proxy=False,
        stale_lock_minutes=30,
        state_dir=tmp_path / "state",
    )
    return base.with_overrides(**overrides)


def _controller(config, exchange, lock_manager=None) -> BatchRunController:
    return BatchRunController(
        config,
        vendor=MagicMock(name="vendor"),
        fetch_client=exchange,
        lock_manager=lock_manager,
        owner_id="pid-test",
    )


def _images(root: Path, *names: str) -> list[Path]:
    paths = []
    for name in names:
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"image")
        paths.append(path)
    return paths


@pytest.fixture
def root(tmp_path):
    folder = tmp_path / "scans"
    folder.mkdir()
    return folder


class TestScenarios:
    """End-to-end batch runs."""

    def test_three_fresh_images_all_succeed(self, tmp_path, root):
        """A: three images, nothing locked or done, concurrency 2."""
        images = _images(root, "a.jpg", "b.png", "sub/c.jpeg")
        config = _config(tmp_path)
        exchange = FakeExchange()

        summary = _controller(config, exchange).run_batch(root)

        assert summary.successful == 3
        for image in images:
            assert image.with_suffix(".txt").read_text(encoding="utf-8") == f"text of {image.name}"
            assert not Path(str(image) + ".lock").exists()

        completed = json.loads(config.completed_file.read_text(encoding="utf-8"))
        assert completed["results"] == {
            "total": 3,
            "successful": 3,
            "failed": 0,
            "skipped": 0,
            "locked": 0,
        }
        assert not config.in_progress_file.exists()

    def test_fresh_lock_is_left_alone(self, tmp_path, root):
        """B: an active lock marker means Locked, no network call, marker untouched."""
        (image,) = _images(root, "a.jpg")
        lock = Path(str(image) + ".lock")
        lock.write_text("pid-other:123", encoding="utf-8")
        exchange = FakeExchange()

        summary = _controller(_config(tmp_path), exchange).run_batch(root)

        assert [o.kind for o in summary.outcomes] == [OutcomeKind.LOCKED]
        assert exchange.calls == []
        assert lock.read_text(encoding="utf-8") == "pid-other:123"

    def test_stale_lock_is_overridden(self, tmp_path, root):
        """C: a lock older than the window is taken over and removed after success."""
        (image,) = _images(root, "a.jpg")
        lock = Path(str(image) + ".lock")
        lock.write_text("pid-crashed:1", encoding="utf-8")
        old = time.time() - 60 * 60
        os.utime(lock, (old, old))
        exchange = FakeExchange()

        summary = _controller(_config(tmp_path), exchange).run_batch(root)

        assert summary.successful == 1
        assert exchange.calls == [image.resolve()]
        assert not lock.exists()

    def test_missing_root_aborts_before_any_marker(self, tmp_path):
        """D: nonexistent root raises and writes no in-progress marker."""
        config = _config(tmp_path)

        with pytest.raises(BatchAbortError):
            _controller(config, FakeExchange()).run_batch(tmp_path / "nope")

        assert not config.in_progress_file.exists()
        assert not config.completed_file.exists()


class TestAbort:
    """Fatal pre-scan conditions."""

    def test_root_is_a_file(self, tmp_path):
        file_root = tmp_path / "file.jpg"
        file_root.write_bytes(b"x")

        with pytest.raises(BatchAbortError, match="not a directory"):
            _controller(_config(tmp_path), FakeExchange()).run_batch(file_root)

    def test_no_candidates_removes_in_progress_marker(self, tmp_path, root):
        (root / "notes.md").write_text("hi")
        config = _config(tmp_path)

        with pytest.raises(BatchAbortError, match="No image files found"):
            _controller(config, FakeExchange()).run_batch(root)

        assert not config.in_progress_file.exists()
        assert not config.completed_file.exists()


class TestClassification:
    """Skipped / Locked / pending partitioning."""

    def test_existing_result_is_skipped_without_lock(self, tmp_path, root):
        (image,) = _images(root, "a.jpg")
        image.with_suffix(".txt").write_text("done before", encoding="utf-8")
        lock_manager = MagicMock(wraps=LockManager())
        exchange = FakeExchange()

        summary = _controller(_config(tmp_path), exchange, lock_manager).run_batch(root)

        assert [o.kind for o in summary.outcomes] == [OutcomeKind.SKIPPED]
        assert summary.outcomes[0].output_path == image.resolve().with_suffix(".txt")
        lock_manager.acquire.assert_not_called()
        assert exchange.calls == []
        assert image.with_suffix(".txt").read_text(encoding="utf-8") == "done before"

    def test_counts_always_add_up(self, tmp_path, root):
        """successful + failed + skipped + locked == candidates found."""
        images = _images(root, "ok1.jpg", "ok2.jpg", "bad.jpg", "done.jpg", "busy.jpg", "x/ok3.png")
        images[3].with_suffix(".txt").write_text("old", encoding="utf-8")
        Path(str(images[4]) + ".lock").write_text("other:1", encoding="utf-8")
        exchange = FakeExchange(fail_for={"bad.jpg"})

        summary = _controller(_config(tmp_path, concurrency=3), exchange).run_batch(root)

        assert (summary.successful, summary.failed, summary.skipped, summary.locked) == (3, 1, 1, 1)
        assert summary.successful + summary.failed + summary.skipped + summary.locked == 6
        assert summary.total == 6


class TestProcessResource:
    """Per-resource task behavior."""

    def test_failure_carries_reason_and_releases_lock(self, tmp_path, root):
        (image,) = _images(root, "bad.jpg")
        exchange = FakeExchange(fail_for={"bad.jpg"})

        summary = _controller(_config(tmp_path), exchange).run_batch(root)

        (outcome,) = summary.outcomes
        assert outcome.kind is OutcomeKind.FAILURE
        assert outcome.reason == "all proxies and direct connection failed"
        assert not Path(str(image) + ".lock").exists()
        assert not image.with_suffix(".txt").exists()

        completed = json.loads(_config(tmp_path).completed_file.read_text(encoding="utf-8"))
        assert completed["details"][0]["reason"] == "all proxies and direct connection failed"

    def test_lock_taken_between_classify_and_work_is_locked(self, tmp_path, root):
        (image,) = _images(root, "a.jpg")
        controller = _controller(_config(tmp_path), FakeExchange())
        Path(str(image) + ".lock").write_text("racer:1", encoding="utf-8")

        outcome = controller.process_resource(Resource.from_path(image))

        assert outcome.kind is OutcomeKind.LOCKED
        assert Path(str(image) + ".lock").read_text(encoding="utf-8") == "racer:1"

    def test_persistence_failure_becomes_failure(self, tmp_path, root, monkeypatch):
        (image,) = _images(root, "a.jpg")
        controller = _controller(_config(tmp_path), FakeExchange())

        def broken(resource, text):
            raise PersistenceError("disk full")

        monkeypatch.setattr("ocr_batch.engine.controller.persist_result", broken)
        outcome = controller.process_resource(Resource.from_path(image))

        assert outcome.kind is OutcomeKind.FAILURE
        assert outcome.reason == "disk full"
        assert not Path(str(image) + ".lock").exists()


class TestMarkers:
    """In-progress marker contents while the run is active."""

    def test_in_progress_marker_has_counts_during_run(self, tmp_path, root):
        _images(root, "a.jpg", "b.jpg")
        config = _config(tmp_path)
        exchange = FakeExchange()
        exchange.in_progress_file = config.in_progress_file

        _controller(config, exchange).run_batch(root)

        snapshot = exchange.in_progress_snapshots[0]
        assert snapshot["process_id"] == "pid-test"
        assert snapshot["total_images"] == 2
        assert snapshot["pending_images"] == 2
        assert snapshot["config"]["concurrency"] == 2
        assert not config.in_progress_file.exists()

    def test_total_time_includes_setup_before_workers(self, tmp_path, root, monkeypatch):
        """Scanning and proxy setup count towards total_time_seconds."""
        _images(root, "a.jpg")
        config = _config(tmp_path)
        clock = MagicMock(return_value=1000.0)
        real_scan = controller_module.find_image_files

        def slow_scan(folder, extensions):
            clock.return_value = 1007.5
            return real_scan(folder, extensions)

        monkeypatch.setattr("ocr_batch.engine.controller.find_image_files", slow_scan)
        controller = BatchRunController(
            config,
            vendor=MagicMock(name="vendor"),
            fetch_client=FakeExchange(),
            lock_manager=LockManager(),
            owner_id="pid-test",
            clock=clock,
        )

        controller.run_batch(root)

        completed = json.loads(config.completed_file.read_text(encoding="utf-8"))
        assert completed["total_time_seconds"] == 7.5


class TestPersistResult:
    """Test persist_result."""

    def test_writes_utf8_sibling(self, tmp_path):
        image = tmp_path / "page.jpg"
        image.write_bytes(b"x")

        out = persist_result(Resource.from_path(image), "zażółć")

        assert out == image.resolve().with_suffix(".txt")
        assert out.read_text(encoding="utf-8") == "zażółć"
        assert [p.name for p in tmp_path.iterdir() if p.name.endswith(".tmp")] == []
