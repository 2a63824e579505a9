import asyncio
import time
from typing import Any, Dict, List, Optional


AUTH_STATE_CHANGED = "auth_state_changed"
AVAILABILITY_CHANGED = "availability_changed"
SESSION_OPENED = "session_opened"
SESSION_CLOSED = "session_closed"
MODEL_REGISTERED = "model_registered"


class StateEventBus:
    """In-memory fan-out of state changes to subscriber queues."""

    def __init__(self, max_queue_size: int = 0):
        self.subscribers: List[asyncio.Queue] = []
        self.lock = asyncio.Lock()
        self.max_queue_size = max_queue_size

    async def emit(self, event_type: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        event = {"event_type": event_type, "payload": dict(payload or {}), "ts": time.time()}
        async with self.lock:
            queues = list(self.subscribers)
        for q in queues:
            try:
                q.put_nowait(event)
            except asyncio.QueueFull:
                # Full queue: drop its oldest event.
                q.get_nowait()
                q.put_nowait(event)
        return event

    async def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        async with self.lock:
            self.subscribers.append(queue)
        return queue

    async def unsubscribe(self, queue: asyncio.Queue) -> None:
        async with self.lock:
            if queue in self.subscribers:
                self.subscribers.remove(queue)
