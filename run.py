import sys
from pathlib import Path

# Allow running from a checkout without installing: python run.py <folder> [options]
sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from ocr_batch.run import main  # noqa: E402

if __name__ == "__main__":
    raise SystemExit(main())
