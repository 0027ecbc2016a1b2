"""
Generation Lock - one active generation per project.

A lock entry is (owner token, expiry). The owner token is the generation
session id, so the same session can re-acquire (and thereby refresh) its own
lock when a stream resumes, while any other session of the project gets
GENERATION_IN_PROGRESS. Nothing is queued.

Entries expire on their own after the TTL, so a crashed worker cannot block
a project forever.

MVP: in-memory per process, mirroring Redis `SET key owner NX EX ttl`.
For multi-worker deployments, back this with Redis.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from app.core.config import settings

logger = logging.getLogger("genui.services.generation_lock")


@dataclass
class _LockEntry:
    owner: str
    expires_at: float


class GenerationLockRegistry:
    """
    Per-project lock with owner token and TTL.

    Usage:
        if not generation_lock.acquire(str(project_id), owner=str(session_id)):
            raise GenerationError(ErrorCode.GENERATION_IN_PROGRESS)
        ...
        generation_lock.release(str(project_id), owner=str(session_id))
    """

    def __init__(self, ttl_seconds: Optional[int] = None, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._locks: Dict[str, _LockEntry] = {}
        self._mutex = threading.Lock()

    @property
    def ttl(self) -> int:
        return self._ttl if self._ttl is not None else settings.GENERATION_LOCK_TTL_SECONDS

    def acquire(self, project_id: str, owner: str) -> bool:
        """
        Take the lock, or refresh it if `owner` already holds it.

        Returns:
            False if another owner holds an unexpired lock
        """
        now = self._clock()
        with self._mutex:
            entry = self._locks.get(project_id)
            if entry and entry.expires_at > now and entry.owner != owner:
                return False
            self._locks[project_id] = _LockEntry(owner=owner, expires_at=now + self.ttl)
        return True

    def release(self, project_id: str, owner: str) -> bool:
        """Release only if `owner` holds the lock. Safe to call repeatedly."""
        with self._mutex:
            entry = self._locks.get(project_id)
            if entry is None or entry.owner != owner:
                return False
            del self._locks[project_id]
        logger.debug(f"Lock released for project {project_id}")
        return True

    def holder(self, project_id: str) -> Optional[str]:
        now = self._clock()
        with self._mutex:
            entry = self._locks.get(project_id)
            if entry is None:
                return None
            if entry.expires_at <= now:
                del self._locks[project_id]
                return None
            return entry.owner

    def is_locked(self, project_id: str) -> bool:
        return self.holder(project_id) is not None

    def reset(self) -> None:
        """Clear every lock (tests)."""
        with self._mutex:
            self._locks.clear()


generation_lock = GenerationLockRegistry()
