"""Single-flight sharing of derived reads.

Several observers asking for the same aggregate (for example a job card
resolved with its vehicle and technician) attach to one ``LiveAggregate``
instead of each running the underlying query. The handle map is guarded by a
single lock; a handle whose last subscriber leaves is kept for a short grace
period so that quick unsubscribe/resubscribe churn reuses it.
"""
from __future__ import annotations

import itertools
import logging
import threading
from typing import Any, Callable, Hashable

logger = logging.getLogger(__name__)

_UNSET = object()

Loader = Callable[[], Any]
Callback = Callable[[Any], None]


class LiveAggregate:
    """Shared computation for one aggregate key."""

    def __init__(self, key: tuple[str, str], loader: Loader):
        self.key = key
        self._loader = loader
        self._observers: dict[int, Callback | None] = {}
        self._emit_lock = threading.RLock()
        self._latest = _UNSET
        self.refcount = 0
        self.load_count = 0
        self.closed = False
        self.teardown_timer = None

    @property
    def started(self) -> bool:
        return self._latest is not _UNSET

    @property
    def latest(self) -> Any:
        return None if self._latest is _UNSET else self._latest

    def attach(self, token: int, callback: Callback | None) -> Any:
        with self._emit_lock:
            if not self.started:
                self._latest = self._load()
            self._observers[token] = callback
            if callback is not None:
                callback(self._latest)
            return self._latest

    def detach(self, token: int) -> None:
        with self._emit_lock:
            self._observers.pop(token, None)

    def refresh(self) -> Any:
        with self._emit_lock:
            if self.closed:
                return None
            self._latest = self._load()
            for callback in list(self._observers.values()):
                if callback is not None:
                    callback(self._latest)
            return self._latest

    def close(self) -> None:
        with self._emit_lock:
            self.closed = True
            self._observers.clear()

    def _load(self) -> Any:
        self.load_count += 1
        return self._loader()


class Subscription:
    def __init__(self, coalescer: "AggregateReadCoalescer", handle: LiveAggregate, token: int):
        self._coalescer = coalescer
        self._handle = handle
        self._token = token
        self._closed = False

    @property
    def key(self) -> tuple[str, str]:
        return self._handle.key

    @property
    def value(self) -> Any:
        return self._handle.latest

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._coalescer._release(self._handle, self._token)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False


class AggregateReadCoalescer:
    def __init__(self, grace_period: float = 5.0, timer_factory=threading.Timer):
        self.grace_period = grace_period
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._handles: dict[tuple[str, str], LiveAggregate] = {}
        self._tokens = itertools.count(1)

    @staticmethod
    def make_key(kind: str, aggregate_id: Hashable) -> tuple[str, str]:
        return (kind, str(aggregate_id))

    def subscribe(self, kind: str, aggregate_id: Hashable, loader: Loader, callback: Callback | None = None) -> Subscription:
        key = self.make_key(kind, aggregate_id)
        with self._lock:
            handle = self._handles.get(key)
            if handle is None:
                handle = LiveAggregate(key, loader)
                self._handles[key] = handle
                logger.debug("coalescer_handle_created key=%s:%s", *key)
            if handle.teardown_timer is not None:
                handle.teardown_timer.cancel()
                handle.teardown_timer = None
            handle.refcount += 1
            token = next(self._tokens)

        try:
            handle.attach(token, callback)
        except Exception:
            self._release(handle, token)
            raise
        return Subscription(self, handle, token)

    def publish(self, kind: str, aggregate_id: Hashable) -> bool:
        """Recompute a live aggregate and push the new value to its subscribers."""
        with self._lock:
            handle = self._handles.get(self.make_key(kind, aggregate_id))
        if handle is None or not handle.started:
            return False
        handle.refresh()
        return True

    def is_active(self, kind: str, aggregate_id: Hashable) -> bool:
        with self._lock:
            return self.make_key(kind, aggregate_id) in self._handles

    def subscriber_count(self, kind: str, aggregate_id: Hashable) -> int:
        with self._lock:
            handle = self._handles.get(self.make_key(kind, aggregate_id))
            return handle.refcount if handle else 0

    def _release(self, handle: LiveAggregate, token: int) -> None:
        handle.detach(token)
        with self._lock:
            handle.refcount -= 1
            if handle.refcount > 0 or self._handles.get(handle.key) is not handle:
                return
            if self.grace_period <= 0:
                self._remove_locked(handle)
                return
            timer = self._timer_factory(self.grace_period, self._expire, args=(handle,))
            timer.daemon = True
            handle.teardown_timer = timer
        timer.start()

    def _expire(self, handle: LiveAggregate) -> None:
        with self._lock:
            if handle.refcount == 0 and self._handles.get(handle.key) is handle:
                self._remove_locked(handle)

    def _remove_locked(self, handle: LiveAggregate) -> None:
        del self._handles[handle.key]
        handle.teardown_timer = None
        handle.close()
        logger.debug("coalescer_handle_removed key=%s:%s", *handle.key)
