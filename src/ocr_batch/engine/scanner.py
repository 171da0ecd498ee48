from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from pathlib import Path

from .models import Resource

logger = logging.getLogger(__name__)


def _raise(err: OSError) -> None:
    raise err


def find_image_files(root: Path, extensions: Iterable[str]) -> list[Resource]:
    """
    Recursively collect files under root whose extension is in the allow-list.
    Extension match is case-insensitive. An unreadable directory aborts the scan.
    """
    allowed = {e.lower().lstrip(".") for e in extensions}
    found: list[Resource] = []

    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise):
        dirnames.sort()
        for filename in sorted(filenames):
            ext = os.path.splitext(filename)[1].lower().lstrip(".")
            if ext in allowed:
                found.append(Resource.from_path(Path(dirpath) / filename))

    logger.debug(f"🔎 [Scan] {len(found)} candidate file(s) under {root}")
    return found


def count_folders(resources: Iterable[Resource]) -> int:
    return len({r.path.parent for r in resources})
