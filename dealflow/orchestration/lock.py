"""Per-deal advisory run lock backed by an exclusive marker file."""

from __future__ import annotations

import json
import logging
import os
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

logger = logging.getLogger(__name__)

LOCK_FILENAME = "run.lock"
DEFAULT_TTL_SECONDS = 900.0


class RunLock:
    """Non-blocking mutual exclusion for one deal.

    A marker older than ``ttl_seconds`` is treated as left behind by a dead
    holder and may be taken over.
    """

    def __init__(self, deal_dir: Path, deal_id: str, ttl_seconds: float = DEFAULT_TTL_SECONDS):
        self.deal_id = deal_id
        self.path = Path(deal_dir) / LOCK_FILENAME
        self.ttl_seconds = ttl_seconds
        self.token = uuid.uuid4().hex
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def _create_marker(self) -> bool:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(str(self.path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
            json.dump({"token": self.token, "pid": os.getpid(), "acquired_at": time.time()}, file_obj)
        return True

    def _is_stale(self) -> bool:
        try:
            age = time.time() - self.path.stat().st_mtime
        except FileNotFoundError:
            return True
        return age > self.ttl_seconds

    def _owner_token(self) -> Optional[str]:
        try:
            with open(self.path, "r", encoding="utf-8") as file_obj:
                return json.load(file_obj).get("token")
        except (FileNotFoundError, ValueError):
            return None

    def try_acquire(self) -> bool:
        """Take the lock if free; never waits."""
        if self._held:
            return True
        if self._create_marker():
            self._held = True
            return True
        if self._is_stale():
            logger.warning(
                "Taking over stale run lock",
                extra={"component": "RunLock", "deal_id": self.deal_id},
            )
            try:
                self.path.unlink()
            except FileNotFoundError:
                pass
            if self._create_marker():
                self._held = True
                return True
        return False

    def refresh(self) -> None:
        """Keep a long-running holder from looking stale."""
        if self._held:
            os.utime(self.path, None)

    def release(self) -> None:
        if not self._held:
            return
        self._held = False
        if self._owner_token() == self.token:
            try:
                self.path.unlink()
            except FileNotFoundError:
                pass

    @contextmanager
    def guard(self) -> Iterator[bool]:
        """Yield whether the lock was acquired; release on exit if it was."""
        acquired = self.try_acquire()
        try:
            yield acquired
        finally:
            if acquired:
                self.release()
