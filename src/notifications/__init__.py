"""
Booking Notifications Module

Lifecycle events raised by the booking services are written to an outbox and
pushed to WebSocket subscribers (all clients, the booking's owner and the
station's operator feed). Delivery is best-effort and never affects the
outcome of the booking operation that raised the event.
"""

from .router import router
from .emitter import (
    NotificationEmitter, LoggingNotificationEmitter, NotificationOutbox,
    notification_outbox, get_notification_emitter, emit_safely
)
from .schemas import BookingEvent, BookingEventKind
from .websocket import BookingWebSocketManager, ws_manager

__all__ = [
    "router",
    "NotificationEmitter",
    "LoggingNotificationEmitter",
    "NotificationOutbox",
    "notification_outbox",
    "get_notification_emitter",
    "emit_safely",
    "BookingEvent",
    "BookingEventKind",
    "BookingWebSocketManager",
    "ws_manager"
]
