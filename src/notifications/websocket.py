from fastapi import WebSocket, WebSocketDisconnect
from typing import Dict, List, Optional, Set
import asyncio
import json
import logging

from src.bookings.clock import utc_now
from src.notifications.emitter import NotificationOutbox, notification_outbox
from src.notifications.schemas import BookingEvent

logger = logging.getLogger(__name__)

class BookingWebSocketManager:
    """Manager for WebSocket connections receiving booking notifications"""

    def __init__(self, outbox: NotificationOutbox):
        self.outbox = outbox
        self.active_connections: List[WebSocket] = []
        self.station_subscriptions: Dict[str, Set[WebSocket]] = {}
        self.user_subscriptions: Dict[str, Set[WebSocket]] = {}
        self._dispatch_task: Optional[asyncio.Task] = None

    async def connect(self, websocket: WebSocket):
        """Accept new WebSocket connection"""
        await websocket.accept()
        self.active_connections.append(websocket)

    def disconnect(self, websocket: WebSocket):
        """Remove WebSocket connection"""
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)

        for station_subs in self.station_subscriptions.values():
            station_subs.discard(websocket)

        for user_subs in self.user_subscriptions.values():
            user_subs.discard(websocket)

    async def subscribe_to_station(self, websocket: WebSocket, station_id: str):
        """Operator console feed for one station"""
        self.station_subscriptions.setdefault(station_id, set()).add(websocket)

        await self.send_personal_message(websocket, {
            "type": "subscription_confirmed",
            "station_id": station_id,
            "timestamp": utc_now().isoformat()
        })

    async def subscribe_to_user(self, websocket: WebSocket, user_id: str):
        """EV owner feed for their own bookings"""
        self.user_subscriptions.setdefault(user_id, set()).add(websocket)

        await self.send_personal_message(websocket, {
            "type": "subscription_confirmed",
            "user_id": user_id,
            "timestamp": utc_now().isoformat()
        })

    async def send_personal_message(self, websocket: WebSocket, message: dict):
        """Send message to specific WebSocket"""
        try:
            await websocket.send_text(json.dumps(message))
        except Exception:
            # Connection might be closed
            self.disconnect(websocket)

    async def publish(self, event: BookingEvent):
        """Send an event once to every connection that should see it.

        Connections without any subscription see every event; subscribed
        connections only see events for their users and stations.
        """
        subscribed = set()
        for subs in self.user_subscriptions.values():
            subscribed |= subs
        for subs in self.station_subscriptions.values():
            subscribed |= subs

        targets = {c for c in self.active_connections if c not in subscribed}
        if event.user_id:
            targets |= self.user_subscriptions.get(event.user_id, set())
        if event.station_id:
            targets |= self.station_subscriptions.get(event.station_id, set())

        await self._broadcast(list(targets), event.to_message())

    async def dispatch_pending(self) -> int:
        """Deliver everything currently queued in the outbox"""
        events = self.outbox.drain()
        for event in events:
            await self.publish(event)
        return len(events)

    def start_dispatcher(self, interval_seconds: float = 0.5):
        if not self._dispatch_task or self._dispatch_task.done():
            self._dispatch_task = asyncio.create_task(self._dispatch_loop(interval_seconds))

    async def stop_dispatcher(self):
        if self._dispatch_task and not self._dispatch_task.done():
            self._dispatch_task.cancel()
            try:
                await self._dispatch_task
            except asyncio.CancelledError:
                pass

    async def _broadcast(self, connections: List[WebSocket], message: dict):
        if not connections:
            return

        message_text = json.dumps(message)
        disconnected = []

        for connection in connections:
            try:
                await connection.send_text(message_text)
            except Exception:
                disconnected.append(connection)

        # Clean up disconnected clients
        for connection in disconnected:
            self.disconnect(connection)

    async def _dispatch_loop(self, interval_seconds: float):
        """Background task draining the outbox"""
        while True:
            try:
                await self.dispatch_pending()
                await asyncio.sleep(interval_seconds)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning("Error dispatching booking notifications", exc_info=True)
                await asyncio.sleep(5)

# Global WebSocket manager instance
ws_manager = BookingWebSocketManager(notification_outbox)

async def websocket_endpoint(websocket: WebSocket):
    """Main WebSocket endpoint for booking notifications"""
    await ws_manager.connect(websocket)

    try:
        while True:
            data = await websocket.receive_text()

            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                # Invalid JSON, ignore
                continue

            if not isinstance(message, dict):
                continue

            if message.get("type") == "subscribe_station":
                station_id = message.get("station_id")
                if station_id:
                    await ws_manager.subscribe_to_station(websocket, str(station_id))

            elif message.get("type") == "subscribe_user":
                user_id = message.get("user_id")
                if user_id:
                    await ws_manager.subscribe_to_user(websocket, str(user_id))

            elif message.get("type") == "ping":
                await ws_manager.send_personal_message(websocket, {
                    "type": "pong",
                    "timestamp": utc_now().isoformat()
                })

    except WebSocketDisconnect:
        ws_manager.disconnect(websocket)
