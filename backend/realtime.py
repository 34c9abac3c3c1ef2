# realtime.py — In-process snapshot fan-out for live collection subscriptions
"""
Listeners register on a collection path (e.g. ``channels/<id>/messages``).
After a write to that path is committed, the document store publishes the
path and every listener receives the full, ordered collection.
"""
import asyncio
import inspect
import logging
import os
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger("solis-center.realtime")

# Listeners that take longer than this to accept a snapshot are dropped
DELIVERY_TIMEOUT_SECONDS = float(os.getenv("SNAPSHOT_DELIVERY_TIMEOUT_SECONDS", "5"))

SnapshotCallback = Callable[[List[Dict[str, Any]]], Any]
SnapshotLoader = Callable[[], Awaitable[List[Dict[str, Any]]]]


class Subscription:
    """Handle returned by ``SnapshotHub.subscribe``; ``close()`` tears it down"""

    def __init__(self, hub: "SnapshotHub", key: Tuple[str, str], callback: SnapshotCallback):
        self._hub = hub
        self.key = key
        self.callback = callback
        self.closed = False

    @property
    def path(self) -> str:
        return self.key[1]

    def close(self) -> None:
        if not self.closed:
            self._hub._remove(self)
            self.closed = True

    async def deliver(self, snapshot: List[Dict[str, Any]]) -> None:
        result = self.callback(snapshot)
        if inspect.isawaitable(result):
            await result


class SnapshotHub:
    """Keeps listeners per (org_id, path) and pushes snapshots to them"""

    def __init__(self, delivery_timeout: Optional[float] = None):
        self.delivery_timeout = delivery_timeout if delivery_timeout is not None else DELIVERY_TIMEOUT_SECONDS
        self._listeners: Dict[Tuple[str, str], List[Subscription]] = {}

    def subscribe(self, org_id: str, path: str, callback: SnapshotCallback) -> Subscription:
        key = (org_id, path)
        sub = Subscription(self, key, callback)
        self._listeners.setdefault(key, []).append(sub)
        logger.debug(f"Subscribed to {path} (org={org_id}, listeners={len(self._listeners[key])})")
        return sub

    def _remove(self, sub: Subscription) -> None:
        subs = self._listeners.get(sub.key)
        if not subs:
            return
        if sub in subs:
            subs.remove(sub)
        if not subs:
            del self._listeners[sub.key]

    def has_listeners(self, org_id: str, path: str) -> bool:
        return bool(self._listeners.get((org_id, path)))

    def listener_count(self, org_id: Optional[str] = None) -> int:
        return sum(
            len(subs) for (oid, _), subs in self._listeners.items()
            if org_id is None or oid == org_id
        )

    async def publish(self, org_id: str, path: str, loader: SnapshotLoader) -> int:
        """Load the collection once and deliver it to every listener on the path.

        Listeners are served concurrently. Returns the number that received the
        snapshot; a listener whose callback raises or exceeds
        ``delivery_timeout`` is logged and dropped.
        """
        subs = list(self._listeners.get((org_id, path), []))
        if not subs:
            return 0
        snapshot = await loader()
        results = await asyncio.gather(*(
            self._deliver(sub, path, snapshot) for sub in subs if not sub.closed
        ))
        return sum(results)

    async def _deliver(self, sub: Subscription, path: str, snapshot: List[Dict[str, Any]]) -> bool:
        try:
            await asyncio.wait_for(sub.deliver(snapshot), timeout=self.delivery_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Dropping snapshot listener on {path}: no response within {self.delivery_timeout}s")
        except Exception as e:
            logger.warning(f"Dropping snapshot listener on {path}: {e}")
        sub.close()
        return False


# Global hub shared by the app
snapshot_hub = SnapshotHub()
