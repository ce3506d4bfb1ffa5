"""
User Locks - Serializes sleep state changes per user.

Each user id gets its own lock; different users never wait on each other.
"""

from contextlib import contextmanager
from typing import Dict, Iterator
import logging
import threading

logger = logging.getLogger(__name__)


class UserLockRegistry:
    """
    Hands out one lock per user id.

    Responsibilities:
    - Create and retrieve per-user locks
    - Hold a user's lock around a read-check-write sequence
    """

    def __init__(self):
        """Initialize lock registry."""
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        logger.info("Initialized UserLockRegistry")

    def get_lock(self, user_id: str) -> threading.Lock:
        """
        Get or create the lock for a user.

        Args:
            user_id: Stable user id

        Returns:
            The lock owned by that user id
        """
        with self._registry_lock:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[user_id] = lock
            return lock

    @contextmanager
    def hold(self, user_id: str) -> Iterator[None]:
        """Hold a user's lock for the duration of the block."""
        lock = self.get_lock(user_id)
        with lock:
            yield

    def get_lock_count(self) -> int:
        """Number of users that have a lock."""
        with self._registry_lock:
            return len(self._locks)
