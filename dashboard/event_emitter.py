"""Event fan-out: the detector service pushes status events, the dashboard relays them.

Uses threading primitives so a detector running in another thread or event
loop can safely push events that the dashboard's asyncio WebSocket relay
consumes.
"""

import logging
import queue
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List

logger = logging.getLogger(__name__)

SUBSCRIBER_QUEUE_SIZE = 2000


class DashboardEventEmitter:
    """Thread-safe fan-out queue for real-time cascade events.

    Subscribers get a thread-safe ``queue.Queue``.  The dashboard's WS relay
    wraps it with ``await asyncio.to_thread(q.get)`` so it doesn't block
    the event loop.  A slow subscriber loses messages rather than stalling
    the emitter.
    """

    def __init__(self, maxsize: int = SUBSCRIBER_QUEUE_SIZE) -> None:
        self._subscribers: List[queue.Queue] = []
        self._lock = threading.Lock()
        self._maxsize = maxsize
        self._dropped = 0

    def subscribe(self) -> queue.Queue:
        q: queue.Queue = queue.Queue(maxsize=self._maxsize)
        with self._lock:
            self._subscribers.append(q)
        return q

    def unsubscribe(self, q: queue.Queue) -> None:
        with self._lock:
            try:
                self._subscribers.remove(q)
            except ValueError:
                pass

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    @property
    def dropped(self) -> int:
        return self._dropped

    async def emit(self, channel: str, payload: Dict[str, Any]) -> None:
        self._do_emit(channel, payload)

    def _do_emit(self, channel: str, payload: Dict[str, Any]) -> None:
        msg = {
            "channel": channel,
            "data": payload,
            "ts": datetime.now(timezone.utc).isoformat(),
        }
        with self._lock:
            for q in self._subscribers:
                try:
                    q.put_nowait(msg)
                except queue.Full:
                    self._dropped += 1
