import logging
import queue
from typing import List

from src.notifications.schemas import BookingEvent

logger = logging.getLogger(__name__)


class NotificationEmitter:
    """Outbound port for booking lifecycle events; delivery is best-effort"""

    def notify(self, event: BookingEvent) -> None:
        raise NotImplementedError


class LoggingNotificationEmitter(NotificationEmitter):
    def notify(self, event: BookingEvent) -> None:
        logger.info("Booking event %s for booking %s", event.kind.value, event.booking_id)


class NotificationOutbox(NotificationEmitter):
    """Thread-safe queue written by request handlers and drained by the WebSocket dispatcher"""

    def __init__(self, maxsize: int = 1000):
        self._queue: "queue.Queue[BookingEvent]" = queue.Queue(maxsize=maxsize)

    def notify(self, event: BookingEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            logger.warning("Notification outbox full, dropping %s for booking %s",
                           event.kind.value, event.booking_id)

    def drain(self, limit: int = 100) -> List[BookingEvent]:
        events = []
        while len(events) < limit:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                break
        return events

    def __len__(self) -> int:
        return self._queue.qsize()


# Global outbox instance
notification_outbox = NotificationOutbox()

def get_notification_emitter() -> NotificationEmitter:
    return notification_outbox

def emit_safely(emitter: NotificationEmitter, event: BookingEvent) -> None:
    """Deliver an event; failures are logged and never reach the caller"""
    try:
        emitter.notify(event)
    except Exception:
        logger.warning("Failed to deliver %s notification for booking %s",
                       event.kind.value, event.booking_id, exc_info=True)
