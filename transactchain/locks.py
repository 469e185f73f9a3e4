"""
Per-Account Locking

One lock per account id, created on demand and dropped once nobody holds or
waits for it. Multi-account acquisition always goes in sorted id order so two
transfers over the same pair cannot deadlock, and every acquisition is
bounded by a timeout that surfaces as TryAgain.
"""

import threading
import time
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List, Tuple

from .errors import TryAgain
from .logging_config import get_logger


class KeyedLockManager:
    """Reference-counted mutexes keyed by account id"""

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._guard = threading.Lock()
        self._locks: Dict[str, Tuple[threading.Lock, int]] = {}
        self.logger = get_logger("transactchain.locks")

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            lock, refs = self._locks.get(key, (None, 0))
            if lock is None:
                lock = threading.Lock()
            self._locks[key] = (lock, refs + 1)
            return lock

    def _checkin(self, key: str) -> None:
        with self._guard:
            lock, refs = self._locks[key]
            if refs <= 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, refs - 1)

    @contextmanager
    def hold(self, keys: Iterable[str]) -> Iterator[List[str]]:
        """
        Acquire the locks for all keys, in sorted order.

        The timeout covers the whole acquisition. On timeout every lock taken
        so far is released and TryAgain is raised.
        """
        ordered = sorted(set(keys))
        deadline = time.monotonic() + self.timeout
        acquired: List[Tuple[str, threading.Lock]] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                remaining = max(0.0, deadline - time.monotonic())
                if not lock.acquire(timeout=remaining):
                    self._checkin(key)
                    self.logger.warning(f"Timed out waiting for account lock {key}")
                    raise TryAgain(
                        "Account is busy, try again",
                        details={"account_id": key}
                    )
                acquired.append((key, lock))
            yield ordered
        finally:
            for key, lock in reversed(acquired):
                lock.release()
                self._checkin(key)

    def active_keys(self) -> List[str]:
        """Keys that currently have a lock object (held or awaited)"""
        with self._guard:
            return list(self._locks)
