"""
Fan-out of gateway status events to live-status (SSE) subscribers.

Each subscriber owns an asyncio.Queue; ``publish`` never blocks. A
subscription may carry a keep-alive task that enqueues ``ping`` events.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set, Tuple

logger = logging.getLogger(__name__)

Event = Tuple[str, Dict[str, Any]]


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def format_sse(event: str, data: Dict[str, Any]) -> str:
    """One server-sent event frame."""
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


class Subscription:
    def __init__(self) -> None:
        self.queue: "asyncio.Queue[Event]" = asyncio.Queue()
        self.keepalive: Optional[asyncio.Task] = None
        self.closed = False

    async def next_event(self, timeout: Optional[float] = None) -> Optional[Event]:
        """Next queued event, or None if ``timeout`` elapses first."""
        try:
            return await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None


class LiveStatusBroadcaster:
    """Manage live-status subscribers."""

    def __init__(self, ping_interval: float = 30.0) -> None:
        self.ping_interval = ping_interval
        self._subscribers: Set[Subscription] = set()

    async def _keepalive(self, sub: Subscription, interval: float) -> None:
        while not sub.closed:
            await asyncio.sleep(interval)
            if sub.closed:
                break
            sub.queue.put_nowait(("ping", {"timestamp": _timestamp()}))

    def subscribe(self, ping_interval: Optional[float] = None) -> Subscription:
        """Register a subscriber; must be called from a running event loop when pings are enabled."""
        sub = Subscription()
        interval = self.ping_interval if ping_interval is None else ping_interval
        if interval and interval > 0:
            sub.keepalive = asyncio.get_running_loop().create_task(self._keepalive(sub, interval))
        self._subscribers.add(sub)
        logger.info("Live-status subscriber added (%d active)", len(self._subscribers))
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        """Synchronous teardown: no event is delivered to ``sub`` after this returns."""
        self._subscribers.discard(sub)
        sub.closed = True
        if sub.keepalive is not None:
            sub.keepalive.cancel()
            sub.keepalive = None
        while not sub.queue.empty():
            sub.queue.get_nowait()
        logger.info("Live-status subscriber removed (%d active)", len(self._subscribers))

    def publish(self, event: str, data: Dict[str, Any]) -> None:
        for sub in list(self._subscribers):
            if not sub.closed:
                sub.queue.put_nowait((event, data))

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
