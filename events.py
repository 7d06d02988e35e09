"""
In-process publish/subscribe for order lifecycle events.

Delivery is synchronous and limited to the current process: nothing is
persisted or replayed, and other server instances never see these events.
Running several instances needs a broker or a database change stream instead.
"""

import asyncio
import json
import logging
import os
import threading
import weakref
from typing import Any, AsyncIterator, Callable, Dict, List, Tuple

from database import now_iso
from errors import ListenerLimitError

logger = logging.getLogger(__name__)

ORDER_EVENT = "order-event"
EVENT_LISTENER_LIMIT = int(os.getenv("EVENT_LISTENER_LIMIT", 150))
SSE_KEEPALIVE_SECONDS = float(os.getenv("SSE_KEEPALIVE_SECONDS", 25))

Listener = Callable[[Dict[str, Any]], None]


class OrderEventRelay:
    def __init__(self, max_listeners: int = EVENT_LISTENER_LIMIT):
        self.max_listeners = max_listeners
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)

    def subscribe(self, callback: Listener) -> Callable[[], None]:
        """Register `callback`; the returned function removes it again."""
        with self._lock:
            if len(self._listeners) >= self.max_listeners:
                raise ListenerLimitError(self.max_listeners)
            self._listeners.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def emit(self, event: Dict[str, Any]) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Order event listener failed for %s", event.get("type"))


relay = OrderEventRelay()


def order_event(event_type: str, order: dict) -> Dict[str, Any]:
    return {"type": event_type, "order": order, "timestamp": now_iso()}


def format_sse(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


def open_order_stream(request, is_visible: Callable[[dict], bool],
                      source: OrderEventRelay = relay,
                      keepalive: float = SSE_KEEPALIVE_SECONDS
                      ) -> Tuple[AsyncIterator[str], Callable[[], None]]:
    """Subscribe to `source` and return the server-sent-event frame generator
    together with its idempotent unsubscribe function.

    Must be called from the event loop that will consume the stream. The
    subscription happens here rather than on first iteration so a full relay
    fails the request before any response is started. Relay callbacks run on
    whichever thread emitted, so events reach the loop through
    `call_soon_threadsafe`.

    The generator unsubscribes when it finishes. A generator that is never
    iterated unsubscribes when it is collected, and callers should also run
    the returned function once the response is done.
    """
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def listener(event: Dict[str, Any]) -> None:
        if is_visible(event["order"]):
            loop.call_soon_threadsafe(queue.put_nowait, event)

    unsubscribe = source.subscribe(listener)

    async def frames():
        try:
            yield format_sse("connected", {"timestamp": now_iso()})
            while not await request.is_disconnected():
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=keepalive)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield format_sse(ORDER_EVENT, event)
        finally:
            unsubscribe()

    stream = frames()
    weakref.finalize(stream, unsubscribe)
    return stream, unsubscribe
