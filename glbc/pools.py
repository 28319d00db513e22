"""Storage pools used by the L7 controller.

The controller keeps its own record of the cloud resources it manages,
because resource names can only carry so much information, a project may
be shared by several controllers, and listing from the cloud is slow.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from datetime import timedelta
from typing import Any

log = logging.getLogger(__name__)

KeyFunc = Callable[[Any], str]
Lister = Callable[[], Iterable[Any]]


class InMemoryPool:
    """A thread-safe key/value cache for cluster resource pools."""

    def __init__(self) -> None:
        self._items: dict[str, Any] = {}
        self._items_lock = threading.Lock()

    def add(self, key: str, obj: Any) -> None:
        """Store obj under key, replacing any previous value."""
        with self._items_lock:
            self._items[key] = obj

    def get(self, key: str) -> Any | None:
        """The object stored under key, or None if there is none."""
        with self._items_lock:
            return self._items.get(key)

    def delete(self, key: str) -> None:
        """Remove key from the pool; missing keys are ignored."""
        with self._items_lock:
            self._items.pop(key, None)

    def list_keys(self) -> list[str]:
        """All keys currently in the pool."""
        with self._items_lock:
            return list(self._items)

    def snapshot(self) -> dict[str, Any]:
        """A copy of the key/value pairs in the pool.

        The mapping is new, but the stored objects are shared with the pool.
        """
        with self._items_lock:
            return dict(self._items)

    def __contains__(self, key: object) -> bool:
        with self._items_lock:
            return key in self._items

    def __len__(self) -> int:
        with self._items_lock:
            return len(self._items)


class CloudListingPool(InMemoryPool):
    """An in-memory pool that is periodically refilled from the cloud."""

    def __init__(
        self,
        key_func: KeyFunc,
        lister: Lister,
        relist_period: float | timedelta = 30.0,
        start: bool = True,
    ) -> None:
        super().__init__()
        self._pool_lock = threading.Lock()
        self._key_func = key_func
        self._lister = lister
        if isinstance(relist_period, timedelta):
            relist_period = relist_period.total_seconds()
        self._relist_period = float(relist_period)
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None
        if start:
            log.debug("Starting pool replenish thread")
            self._thread = threading.Thread(target=self._run, name="pool-replenish", daemon=True)
            self._thread.start()

    def _run(self) -> None:
        while not self._stopped.is_set():
            self.replenish_pool()
            if self._stopped.wait(self._relist_period):
                break

    def replenish_pool(self) -> None:
        """List resources from the cloud and insert them into the pool.

        Listing failures are logged and leave the pool untouched; items for
        which no key can be produced are skipped.
        """
        with self._pool_lock:
            log.debug("Replenishing pool")
            try:
                items = list(self._lister())
            except Exception as err:  # the lister talks to a remote service
                log.warning("Failed to list: %s", err)
                return
            for item in items:
                try:
                    key = self._key_func(item)
                except Exception as err:
                    log.debug("CloudListingPool: %s", err)
                    continue
                super().add(key, item)

    def snapshot(self) -> dict[str, Any]:
        with self._pool_lock:
            return super().snapshot()

    def add(self, key: str, obj: Any) -> None:
        with self._pool_lock:
            super().add(key, obj)

    def delete(self, key: str) -> None:
        with self._pool_lock:
            super().delete(key)

    def stop(self) -> None:
        """Stop the background relisting and wait for it to finish."""
        self._stopped.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    def __enter__(self) -> CloudListingPool:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()