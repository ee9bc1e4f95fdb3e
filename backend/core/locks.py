"""
Process-local keyed locks

Serializes work on the same key (e.g. a school's balance) inside one worker
process. Cross-process safety comes from the compare-and-set writes that the
callers perform while holding the lock.
"""
import threading
from collections import defaultdict
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator


class KeyedLock:

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, threading.Lock] = defaultdict(threading.Lock)

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            lock = self._locks[key]
        with lock:
            yield
