"""
File-based advisory locking for OCR resources.

Each image gets a side-car `<image>.lock` marker holding `ownerId:epochMillis`.
A marker whose mtime is at least `stale_after_minutes` old is considered abandoned
and any process may override it.

Known limitation: overriding a stale marker is delete-then-create. Two processes
that observe the same stale marker at the same moment can both win and process the
resource twice. Fresh acquisition (no marker at all) is atomic via O_EXCL.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable

from .errors import PersistenceError
from .models import Resource

logger = logging.getLogger(__name__)


class LockManager:
    """Acquires and releases per-resource lock markers."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock

    def _create_marker(self, resource: Resource, owner_id: str) -> bool:
        """Exclusive create. False if someone else created it first."""
        lock_path = resource.lock_path
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        except OSError as e:
            raise PersistenceError(
                f"Cannot create lock for {resource.name}: {e}",
                {"lock_path": str(lock_path)},
            ) from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                fd = -1  # owned by f from here on
                f.write(f"{owner_id}:{int(self._clock() * 1000)}")
        except OSError as e:
            if fd >= 0:
                os.close(fd)
            # Never leave an empty marker behind
            self.release(resource)
            raise PersistenceError(
                f"Cannot write lock for {resource.name}: {e}",
                {"lock_path": str(lock_path)},
            ) from e
        return True

    def lock_age_minutes(self, resource: Resource) -> float | None:
        """Age of the marker from its mtime, None when there is no marker."""
        try:
            mtime = resource.lock_path.stat().st_mtime
        except FileNotFoundError:
            return None
        return (self._clock() - mtime) / 60.0

    def is_locked(self, resource: Resource, stale_after_minutes: float) -> bool:
        """True when an active (non-stale) marker exists."""
        age = self.lock_age_minutes(resource)
        return age is not None and age < stale_after_minutes

    def acquire(self, resource: Resource, owner_id: str, stale_after_minutes: float) -> bool:
        """Try to take the lock. Returns False if the resource is busy."""
        if self._create_marker(resource, owner_id):
            logger.debug(f"🔒 [Lock] Acquired {resource.name}")
            return True

        age = self.lock_age_minutes(resource)
        if age is None:
            # Holder released between our create attempt and stat
            return self._create_marker(resource, owner_id)

        holder = self.read_owner(resource) or "unknown"
        if age >= stale_after_minutes:
            logger.info(
                f"🔓 [Lock] Found stale lock for {resource.name} held by {holder} "
                f"({age:.1f} min), overriding"
            )
            self.release(resource)
            return self._create_marker(resource, owner_id)

        logger.debug(f"🔒 [Lock] {resource.name} is held by {holder} ({age:.1f} min)")
        return False

    def release(self, resource: Resource) -> bool:
        """Remove the marker if present. Never raises."""
        try:
            resource.lock_path.unlink(missing_ok=True)
            return True
        except OSError as e:
            logger.error(f"❌ [Lock] Error removing lock file for {resource.name}: {e}")
            return False

    def read_owner(self, resource: Resource) -> str | None:
        try:
            content = resource.lock_path.read_text(encoding="utf-8")
        except OSError:
            return None
        owner, _, _ = content.rpartition(":")
        return owner or None
