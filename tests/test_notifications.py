"""
Tests for the notification outbox and WebSocket fan-out.
"""

import asyncio
import json
import unittest

from fastapi import WebSocketDisconnect

from src.notifications.emitter import NotificationOutbox, emit_safely
from src.notifications.schemas import BookingEvent, BookingEventKind
from src.notifications.websocket import BookingWebSocketManager, websocket_endpoint, ws_manager

from tests.support import FailingEmitter


class FakeWebSocket:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def send_text(self, text):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(text))


class ScriptedWebSocket(FakeWebSocket):
    """Replays client frames, then disconnects"""

    def __init__(self, frames):
        super().__init__()
        self.frames = list(frames)

    async def accept(self):
        pass

    async def receive_text(self):
        if not self.frames:
            raise WebSocketDisconnect()
        return self.frames.pop(0)


def event(kind=BookingEventKind.BOOKING_CREATED, booking_id="b-1", user_id="u-1", station_id="s-1"):
    return BookingEvent(kind=kind, booking_id=booking_id, user_id=user_id, station_id=station_id)


class TestNotificationOutbox(unittest.TestCase):

    def test_drain_in_order(self):
        outbox = NotificationOutbox()
        outbox.notify(event(booking_id="b-1"))
        outbox.notify(event(booking_id="b-2"))

        self.assertEqual(len(outbox), 2)
        self.assertEqual([e.booking_id for e in outbox.drain()], ["b-1", "b-2"])
        self.assertEqual(len(outbox), 0)

    def test_full_outbox_drops_events(self):
        outbox = NotificationOutbox(maxsize=1)
        outbox.notify(event(booking_id="b-1"))
        outbox.notify(event(booking_id="b-2"))

        self.assertEqual([e.booking_id for e in outbox.drain()], ["b-1"])

    def test_drain_limit(self):
        outbox = NotificationOutbox()
        for i in range(5):
            outbox.notify(event(booking_id=f"b-{i}"))

        self.assertEqual(len(outbox.drain(limit=3)), 3)
        self.assertEqual(len(outbox), 2)

    def test_emit_safely_swallows_failures(self):
        emit_safely(FailingEmitter(), event())

    def test_message_shape(self):
        message = event(kind=BookingEventKind.BOOKING_STATUS_CHANGED).to_message()
        self.assertEqual(message["type"], "booking_status_changed")
        self.assertEqual(message["booking_id"], "b-1")
        self.assertIsInstance(message["timestamp"], str)


class TestBookingWebSocketManager(unittest.TestCase):

    def setUp(self):
        self.outbox = NotificationOutbox()
        self.manager = BookingWebSocketManager(self.outbox)

    def test_dispatch_routes_by_subscription(self):
        watcher = FakeWebSocket()
        owner = FakeWebSocket()
        other_user = FakeWebSocket()
        operator = FakeWebSocket()

        self.manager.active_connections.extend([watcher, owner, other_user, operator])
        self.manager.user_subscriptions["u-1"] = {owner}
        self.manager.user_subscriptions["u-2"] = {other_user}
        self.manager.station_subscriptions["s-1"] = {operator}

        self.outbox.notify(event())
        delivered = asyncio.run(self.manager.dispatch_pending())

        self.assertEqual(delivered, 1)
        self.assertEqual(len(watcher.sent), 1)
        self.assertEqual(len(owner.sent), 1)
        self.assertEqual(len(operator.sent), 1)
        self.assertEqual(other_user.sent, [])
        self.assertEqual(owner.sent[0]["type"], "booking_created")

    def test_broken_connection_is_dropped(self):
        healthy = FakeWebSocket()
        broken = FakeWebSocket(fail=True)
        self.manager.active_connections.extend([healthy, broken])

        asyncio.run(self.manager.publish(event()))

        self.assertEqual(len(healthy.sent), 1)
        self.assertNotIn(broken, self.manager.active_connections)

    def test_disconnect_clears_subscriptions(self):
        socket = FakeWebSocket()
        self.manager.active_connections.append(socket)
        self.manager.user_subscriptions["u-1"] = {socket}
        self.manager.station_subscriptions["s-1"] = {socket}

        self.manager.disconnect(socket)

        self.assertEqual(self.manager.active_connections, [])
        self.assertEqual(self.manager.user_subscriptions["u-1"], set())
        self.assertEqual(self.manager.station_subscriptions["s-1"], set())


class TestWebSocketEndpoint(unittest.TestCase):

    def test_non_object_frames_are_ignored(self):
        socket = ScriptedWebSocket(["[1]", "\"hello\"", "not json", json.dumps({"type": "ping"})])

        asyncio.run(websocket_endpoint(socket))

        self.assertEqual([m["type"] for m in socket.sent], ["pong"])
        self.assertNotIn(socket, ws_manager.active_connections)

    def test_subscribe_user(self):
        socket = ScriptedWebSocket([json.dumps({"type": "subscribe_user", "user_id": "u-9"})])

        asyncio.run(websocket_endpoint(socket))

        self.assertEqual(socket.sent[0]["user_id"], "u-9")
        self.assertNotIn(socket, ws_manager.user_subscriptions["u-9"])


if __name__ == "__main__":
    unittest.main()
