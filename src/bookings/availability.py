import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.models import Booking
from src.bookings.exceptions import StoreFailure
from src.bookings.lifecycle import ACTIVE_STATUSES
from src.bookings.schemas import ConflictingBooking, TimeSlotAvailability

logger = logging.getLogger(__name__)


class AvailabilityChecker:
    """Finds active bookings at a station whose interval overlaps a request"""

    def __init__(self, db: Session):
        self.db = db

    def find_conflicts(
        self,
        station_id: str,
        start_time: datetime,
        end_time: datetime,
        exclude_booking_id: Optional[str] = None
    ) -> List[Booking]:
        """Active bookings overlapping [start_time, end_time) at the station"""

        query = self.db.query(Booking).filter(
            Booking.station_id == station_id,
            Booking.status.in_([status.value for status in ACTIVE_STATUSES]),
            Booking.start_time < end_time,
            Booking.end_time > start_time,
        )

        if exclude_booking_id:
            query = query.filter(Booking.id != exclude_booking_id)

        try:
            return query.order_by(Booking.start_time.asc()).all()
        except SQLAlchemyError as exc:
            logger.exception("Availability query failed for station %s", station_id)
            raise StoreFailure("Error checking availability") from exc

    def check_availability(
        self,
        station_id: str,
        start_time: datetime,
        end_time: datetime,
        exclude_booking_id: Optional[str] = None
    ) -> TimeSlotAvailability:
        conflicts = self.find_conflicts(station_id, start_time, end_time, exclude_booking_id)

        if conflicts:
            return TimeSlotAvailability(
                is_available=False,
                message="Time slot is not available due to existing bookings",
                conflicting_bookings=[to_conflicting_booking(b) for b in conflicts]
            )

        return TimeSlotAvailability(is_available=True, message="Time slot is available")

    def has_conflict(
        self,
        station_id: str,
        start_time: datetime,
        end_time: datetime,
        exclude_booking_id: Optional[str] = None
    ) -> bool:
        return bool(self.find_conflicts(station_id, start_time, end_time, exclude_booking_id))


def to_conflicting_booking(booking: Booking) -> ConflictingBooking:
    return ConflictingBooking(
        booking_id=booking.id,
        booking_number=booking.booking_number,
        user_id=booking.user_id,
        start_time=booking.start_time,
        end_time=booking.end_time,
        status=booking.status,
    )
