from __future__ import annotations

import threading
import weakref
from contextlib import contextmanager
from typing import Hashable, Iterator

# Process-local mutual exclusion keyed by ("document", id) / ("campaign", id).
# Locks are held weakly so unused keys do not accumulate.
_registry: "weakref.WeakValueDictionary[Hashable, threading.RLock]" = weakref.WeakValueDictionary()
_registry_guard = threading.Lock()


def _lock_for(key: Hashable) -> threading.RLock:
    with _registry_guard:
        lock = _registry.get(key)
        if lock is None:
            lock = threading.RLock()
            _registry[key] = lock
        return lock


@contextmanager
def hold(key: Hashable) -> Iterator[None]:
    lock = _lock_for(key)
    with lock:
        yield


def document_lock(document_id: int):
    return hold(("document", int(document_id)))


def campaign_lock(campaign_id: int):
    return hold(("campaign", int(campaign_id)))
