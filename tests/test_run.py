"""
Tests for the ocr-batch command line entry point.
"""

from pathlib import Path
from unittest.mock import patch

from ocr_batch.engine.errors import BatchAbortError
from ocr_batch.engine.models import JobOutcome, Resource, RunSummary
from ocr_batch.run import build_parser, config_from_args, main


class TestArgs:
    @patch.dict("os.environ", {}, clear=True)
    def test_flags_override_defaults(self):
        args = build_parser().parse_args(
            [
                "/data",
                "--batch-size=3",
                "--delay=0",
                "--extensions=JPG,tif",
                "--stale-lock=10",
                "--proxy=no",
                "--proxy-timeout=5",
                "--proxy-retries=0",
                "--state-dir=/tmp/st",
            ]
        )

        config = config_from_args(args)

        assert config.concurrency == 3
        assert config.batch_delay_ms == 0
        assert config.extensions == ("jpg", "tif")
        assert config.stale_lock_minutes == 10
        assert config.use_proxy is False
        assert config.proxy_timeout_s == 5
        assert config.proxy_retries == 0
        assert config.state_dir == Path("/tmp/st")

    @patch.dict("os.environ", {}, clear=True)
    def test_unset_flags_keep_defaults(self):
        config = config_from_args(build_parser().parse_args(["/data"]))

        assert config.concurrency == 5
        assert config.use_proxy is True
        assert config.vendor == "i2ocr"


class TestMain:
    def test_missing_folder_exits_non_zero(self, tmp_path):
        code = main([str(tmp_path / "missing"), f"--state-dir={tmp_path}"])

        assert code == 1
        assert not (tmp_path / "ocr_in_progress.flag").exists()

    def test_empty_folder_exits_non_zero(self, tmp_path):
        (tmp_path / "scans").mkdir()

        assert main([str(tmp_path / "scans"), f"--state-dir={tmp_path}"]) == 1

    @patch("ocr_batch.run.BatchRunController.run_batch")
    def test_failures_still_exit_zero(self, mock_run, tmp_path, capsys):
        summary = RunSummary()
        summary.add(JobOutcome.failure(Resource.from_path(tmp_path / "a.jpg"), "HTTP error: 500"))
        mock_run.return_value = summary

        assert main([str(tmp_path), "--proxy=no"]) == 0
        out = capsys.readouterr().out
        assert "Failed:" in out
        assert "HTTP error: 500" in out

    @patch("ocr_batch.run.BatchRunController.run_batch", side_effect=BatchAbortError("nope"))
    def test_abort_exits_one(self, _mock_run, tmp_path):
        assert main([str(tmp_path)]) == 1
