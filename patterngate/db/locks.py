#!/usr/bin/env python3
# CUI // SP-CTI
"""Per-key mutual exclusion.

Mutations against one session id are serialized; different ids never block
each other. Locks are re-entrant so an operation holding a session's lock can
call another operation on the same session.
"""

import threading
from contextlib import contextmanager
from typing import Dict


class KeyedLocks:
    """Registry of one RLock per key, created on first use."""

    def __init__(self):
        self._registry_lock = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    def get(self, key: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str):
        lock = self.get(key)
        with lock:
            yield

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._locks)
