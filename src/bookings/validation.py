from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from src.config import settings
from src.models import Booking
from src.bookings.availability import AvailabilityChecker, to_conflicting_booking
from src.bookings.clock import Clock, utc_now
from src.bookings.exceptions import NotFoundError, ValidationRejection
from src.bookings.schemas import BookingCreateRequest
from src.stations.service import StationService


class BookingValidator:
    """Creation and modification business rules, evaluated in a fixed order"""

    def __init__(self, db: Session, clock: Clock = utc_now):
        self.db = db
        self.clock = clock
        self.availability = AvailabilityChecker(db)

    def validate_create(self, request: BookingCreateRequest):
        """Raise on the first failing rule; return None when the request may be persisted"""
        now = self.clock()

        self._check_booking_date(request.booking_date, now)
        self._check_times(request.start_time, request.end_time, now)
        self._check_slot(request.station_id, request.start_time, request.end_time)
        self._check_station(request.station_id)

    def validate_modification(
        self,
        booking: Booking,
        booking_date: date,
        start_time: datetime,
        end_time: datetime
    ):
        """Re-check a pending booking's merged schedule, ignoring the booking itself"""
        now = self.clock()

        if booking_date != booking.booking_date:
            self._check_booking_date(booking_date, now)

        times_changed = start_time != booking.start_time or end_time != booking.end_time
        if times_changed:
            self._check_times(start_time, end_time, now)
            self._check_slot(booking.station_id, start_time, end_time, exclude_booking_id=booking.id)

    def _check_booking_date(self, booking_date: date, now: datetime):
        today = now.date()

        if booking_date < today:
            raise ValidationRejection("Cannot book for past dates")

        if booking_date > today + timedelta(days=settings.BOOKING_WINDOW_DAYS):
            raise ValidationRejection(
                f"Booking is only allowed within {settings.BOOKING_WINDOW_DAYS} days from today"
            )

    def _check_times(self, start_time: datetime, end_time: datetime, now: datetime):
        if start_time >= end_time:
            raise ValidationRejection("End time must be after start time")

        if start_time <= now:
            raise ValidationRejection("Start time must be in the future")

    def _check_slot(
        self,
        station_id: str,
        start_time: datetime,
        end_time: datetime,
        exclude_booking_id: Optional[str] = None
    ):
        conflicts = self.availability.find_conflicts(station_id, start_time, end_time, exclude_booking_id)
        if conflicts:
            raise ValidationRejection(
                "The selected time slot conflicts with an existing booking. Please choose a different time.",
                conflicts=[to_conflicting_booking(b) for b in conflicts]
            )

    def _check_station(self, station_id: str):
        station = StationService.lookup(self.db, station_id)

        if not station.exists:
            raise NotFoundError("Charging station not found")

        if not station.is_available:
            raise ValidationRejection("Charging station is not available for booking")
