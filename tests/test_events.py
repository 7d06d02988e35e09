"""Tests for the in-process order event relay and its SSE stream."""

import asyncio
import gc
import json
import threading

import pytest

from errors import ListenerLimitError
from events import OrderEventRelay, format_sse, open_order_stream, order_event


class FakeRequest:
    def __init__(self):
        self.disconnected = False

    async def is_disconnected(self):
        return self.disconnected


class TestRelay:
    def test_emit_reaches_every_listener(self):
        relay = OrderEventRelay()
        seen_a, seen_b = [], []
        relay.subscribe(seen_a.append)
        relay.subscribe(seen_b.append)
        event = order_event("order.created", {"id": "o1"})
        relay.emit(event)
        assert seen_a == [event]
        assert seen_b == [event]

    def test_unsubscribe_stops_delivery(self):
        relay = OrderEventRelay()
        seen = []
        unsubscribe = relay.subscribe(seen.append)
        unsubscribe()
        unsubscribe()
        relay.emit(order_event("order.updated", {"id": "o1"}))
        assert seen == []
        assert len(relay) == 0

    def test_listener_limit(self):
        relay = OrderEventRelay(max_listeners=2)
        relay.subscribe(lambda e: None)
        relay.subscribe(lambda e: None)
        with pytest.raises(ListenerLimitError):
            relay.subscribe(lambda e: None)

    def test_failing_listener_does_not_block_others(self):
        relay = OrderEventRelay()
        seen = []

        def broken(event):
            raise RuntimeError("boom")

        relay.subscribe(broken)
        relay.subscribe(seen.append)
        relay.emit(order_event("order.created", {"id": "o1"}))
        assert len(seen) == 1

    def test_concurrent_subscribe_and_unsubscribe(self):
        relay = OrderEventRelay(max_listeners=1000)

        def churn():
            for _ in range(100):
                relay.subscribe(lambda e: None)()

        threads = [threading.Thread(target=churn) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(relay) == 0

    def test_event_payload_shape(self):
        event = order_event("order.created", {"id": "o1"})
        assert set(event) == {"type", "order", "timestamp"}
        assert event["type"] == "order.created"


class TestFormatSse:
    def test_frame_layout(self):
        frame = format_sse("order-event", {"type": "order.created"})
        assert frame == 'event: order-event\ndata: {"type": "order.created"}\n\n'


class TestOrderStream:
    def test_stream_filters_and_unsubscribes(self):
        relay = OrderEventRelay()
        request = FakeRequest()

        async def scenario():
            frames, _ = open_order_stream(request, lambda order: order["sellerId"] == "s1",
                                       source=relay, keepalive=5)
            connected = await frames.__anext__()
            relay.emit(order_event("order.created", {"id": "hidden", "sellerId": "s2"}))
            relay.emit(order_event("order.created", {"id": "shown", "sellerId": "s1"}))
            frame = await frames.__anext__()
            listeners_while_open = len(relay)
            await frames.aclose()
            return connected, frame, listeners_while_open

        connected, frame, listeners_while_open = asyncio.run(scenario())
        assert connected.startswith("event: connected\n")
        assert frame.startswith("event: order-event\n")
        payload = json.loads(frame.split("data: ", 1)[1])
        assert payload["order"]["id"] == "shown"
        assert listeners_while_open == 1
        assert len(relay) == 0

    def test_keepalive_comment_when_idle(self):
        relay = OrderEventRelay()

        async def scenario():
            frames, _ = open_order_stream(FakeRequest(), lambda order: True, source=relay, keepalive=0.01)
            await frames.__anext__()
            frame = await frames.__anext__()
            await frames.aclose()
            return frame

        assert asyncio.run(scenario()) == ": keep-alive\n\n"

    def test_stream_ends_on_disconnect(self):
        relay = OrderEventRelay()
        request = FakeRequest()

        async def scenario():
            frames, _ = open_order_stream(request, lambda order: True, source=relay, keepalive=0.01)
            await frames.__anext__()
            request.disconnected = True
            with pytest.raises(StopAsyncIteration):
                await frames.__anext__()

        asyncio.run(scenario())
        assert len(relay) == 0

    def test_unsubscribe_without_iterating(self):
        relay = OrderEventRelay()

        async def scenario():
            frames, unsubscribe = open_order_stream(FakeRequest(), lambda order: True, source=relay)
            subscribed = len(relay)
            unsubscribe()
            unsubscribe()
            return subscribed

        assert asyncio.run(scenario()) == 1
        assert len(relay) == 0

    def test_unstarted_stream_released_when_collected(self):
        relay = OrderEventRelay()

        async def scenario():
            frames, _ = open_order_stream(FakeRequest(), lambda order: True, source=relay)
            subscribed = len(relay)
            del frames
            gc.collect()
            return subscribed

        assert asyncio.run(scenario()) == 1
        assert len(relay) == 0

    def test_full_relay_fails_before_streaming(self):
        relay = OrderEventRelay(max_listeners=0)

        async def scenario():
            open_order_stream(FakeRequest(), lambda order: True, source=relay)

        with pytest.raises(ListenerLimitError):
            asyncio.run(scenario())


class TestOrderEventsRoute:
    def test_unauthenticated(self, client):
        response = client.get("/api/events/orders")
        assert response.status_code == 401
        assert response.json()["success"] is False

    def test_full_relay_is_503(self, login_as, accounts, relay):
        relay.max_listeners = 0
        response = login_as("seller@shop.com").get("/api/events/orders")
        assert response.status_code == 503
        assert "limit 0" in response.json()["error"]
