from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
from datetime import datetime
from enum import Enum

from src.bookings.clock import utc_now

class BookingEventKind(str, Enum):
    """Lifecycle notifications pushed to operators and EV owners"""
    BOOKING_CREATED = "booking_created"
    BOOKING_UPDATED = "booking_updated"
    BOOKING_STATUS_CHANGED = "booking_status_changed"
    BOOKING_DELETED = "booking_deleted"
    QR_CODE_GENERATED = "qr_code_generated"

class BookingEvent(BaseModel):
    kind: BookingEventKind
    booking_id: str
    user_id: Optional[str] = None
    station_id: Optional[str] = None
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    message: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)

    def to_message(self) -> Dict[str, Any]:
        """JSON-safe dict for WebSocket delivery"""
        return {"type": self.kind.value, **self.model_dump(mode="json", exclude={"kind"})}
