from __future__ import annotations

import argparse
import logging
import time
from pathlib import Path

from ocr_batch.config import BatchConfig, parse_extensions
from ocr_batch.engine import BatchRunController, OcrError, OutcomeKind, RunSummary
from ocr_batch.engine.vendors import VENDORS

logger = logging.getLogger(__name__)


def _yes_no(value: str) -> bool:
    return value.strip().lower() in ("yes", "true", "1", "on")


def _positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value}")
    return number


def _non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"expected a non-negative integer, got {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ocr-batch",
        description="OCR every image under a folder (recursively) and save the text next to it",
    )
    parser.add_argument("folder", help="Root folder with images")
    parser.add_argument("--batch-size", type=_positive_int, help="Concurrent workers (default: 5)")
    parser.add_argument(
        "--delay", type=_non_negative_int, help="Delay in ms a worker waits between images (default: 3000)"
    )
    parser.add_argument(
        "--extensions", help="Comma-separated extensions (default: jpeg,jpg,png,gif,bmp)"
    )
    parser.add_argument(
        "--stale-lock", type=_positive_int, help="Minutes after which a lock file is stale (default: 30)"
    )
    parser.add_argument("--proxy", type=_yes_no, help="Use proxy rotation: yes|no (default: yes)")
    parser.add_argument("--proxy-timeout", type=_positive_int, help="Per-attempt timeout in seconds (default: 30)")
    parser.add_argument("--proxy-retries", type=_non_negative_int, help="Proxy attempts before direct fallback (default: 3)")
    parser.add_argument("--vendor", choices=VENDORS, help="OCR vendor (default: i2ocr)")
    parser.add_argument("--state-dir", type=Path, help="Where markers and the proxy cache are written (default: .)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def config_from_args(args: argparse.Namespace) -> BatchConfig:
    extensions = parse_extensions(args.extensions) if args.extensions else None
    return BatchConfig.from_env().with_overrides(
        concurrency=args.batch_size,
        batch_delay_ms=args.delay,
        extensions=extensions,
        stale_lock_minutes=args.stale_lock,
        use_proxy=args.proxy,
        proxy_timeout_s=args.proxy_timeout,
        proxy_retries=args.proxy_retries,
        vendor=args.vendor,
        state_dir=args.state_dir,
    )


def print_summary(summary: RunSummary, elapsed_s: float) -> None:
    print("\n" + "=" * 60)
    print(" SUMMARY")
    print("=" * 60)
    print(f" Total images found:               {summary.total}")
    print(f" Successful:                       {summary.successful}")
    print(f" Failed:                           {summary.failed}")
    print(f" Skipped (already processed):      {summary.skipped}")
    print(f" Skipped (locked by other process): {summary.locked}")
    print(f" Total processing time:            {elapsed_s:.2f} seconds")
    print("=" * 60)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    config = config_from_args(args)
    controller = BatchRunController(config)

    print("=" * 60)
    print(" OCR BATCH")
    print("=" * 60)
    print(f" Process ID:    {controller.owner_id}")
    print(f" Folder:        {args.folder}")
    print(f" Workers:       {config.concurrency}")
    print(f" Delay:         {config.batch_delay_ms}ms")
    print(f" Stale lock:    {config.stale_lock_minutes} min")
    print(f" Proxy:         {'Enabled' if config.use_proxy else 'Disabled'}")
    print(f" Vendor:        {config.vendor}")
    print("-" * 60)

    start = time.monotonic()
    try:
        summary = controller.run_batch(Path(args.folder))
    except OcrError as e:
        logger.error(f"❌ [Batch] {e.message}")
        return 1

    print_summary(summary, time.monotonic() - start)
    for outcome in summary.outcomes:
        if outcome.kind is OutcomeKind.FAILURE:
            print(f" ✗ {outcome.resource.path}: {outcome.reason}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
