"""Simple async events bus for drawing updates, keyed by symbol."""
import asyncio
import logging
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class EventsBus:
    def __init__(self, maxsize: int = 256) -> None:
        self._subscribers: Dict[str, List[asyncio.Queue]] = {}
        self._lock = asyncio.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._maxsize = maxsize

    def set_event_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    async def subscribe(self, topic: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._maxsize)
        async with self._lock:
            self._subscribers.setdefault(topic, []).append(queue)
        return queue

    async def unsubscribe(self, topic: str, queue: asyncio.Queue) -> None:
        async with self._lock:
            lst = self._subscribers.get(topic, [])
            if queue in lst:
                lst.remove(queue)
            if not lst and topic in self._subscribers:
                self._subscribers.pop(topic, None)

    @staticmethod
    def _safe_put(queue: asyncio.Queue, payload: Dict[str, Any]) -> None:
        # Slow consumers lose their oldest update; each payload is a full snapshot.
        if queue.full():
            try:
                queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
        try:
            queue.put_nowait(payload)
        except asyncio.QueueFull:
            logger.warning("Dropping drawing update for a stalled subscriber")

    async def notify(self, topic: str, payload: Dict[str, Any]) -> None:
        async with self._lock:
            targets = list(self._subscribers.get(topic, []))
        for q in targets:
            self._safe_put(q, payload)

    def dispatch(self, topic: str, payload: Dict[str, Any]) -> None:
        """Schedule a notification from sync code, on or off the event loop."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if self._loop is None:
                logger.debug("Events bus has no loop; dropping %s update", topic)
                return
            asyncio.run_coroutine_threadsafe(self.notify(topic, payload), self._loop)
        else:
            loop.create_task(self.notify(topic, payload))
