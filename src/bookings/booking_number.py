import logging
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from src.models import Booking, BookingSequence
from src.bookings.clock import Clock, day_bounds, utc_now

logger = logging.getLogger(__name__)


class BookingNumberGenerator:
    """
    Generates human-readable booking numbers: BK-YYYYMMDD-NNNN.

    The per-day sequence is a row in ``booking_sequences`` incremented with a
    single UPDATE in its own short transaction, so two concurrent creations
    never draw the same value. A day's counter starts from the number of
    bookings already created that day.
    """

    PREFIX = "BK"

    def __init__(self, db: Session, clock: Clock = utc_now):
        self.db = db
        self.clock = clock

    def generate(self) -> str:
        now = self.clock()
        day = now.strftime("%Y%m%d")

        try:
            booking_number = self._format(day, self._next_sequence(day, now))

            # Second line of defence for numbers written outside the counter
            if self._exists(booking_number):
                booking_number = self._format(day, self._next_sequence(day, now))

            logger.info("Generated booking number: %s", booking_number)
            return booking_number
        except SQLAlchemyError:
            logger.warning("Error generating booking number, using timestamp fallback", exc_info=True)
            return self.fallback(now)

    def fallback(self, now: datetime) -> str:
        return f"{self.PREFIX}-{now.strftime('%Y%m%d%H%M%S')}"

    def _format(self, day: str, sequence: int) -> str:
        return f"{self.PREFIX}-{day}-{sequence:04d}"

    def _exists(self, booking_number: str) -> bool:
        return self.db.query(Booking.id).filter(
            Booking.booking_number == booking_number
        ).first() is not None

    def _next_sequence(self, day: str, now: datetime) -> int:
        with Session(bind=self.db.get_bind()) as counter_db:
            self._ensure_counter(counter_db, day, now)

            counter_db.execute(
                update(BookingSequence)
                .where(BookingSequence.day == day)
                .values(last_value=BookingSequence.last_value + 1)
            )
            value = counter_db.execute(
                select(BookingSequence.last_value).where(BookingSequence.day == day)
            ).scalar_one()
            counter_db.commit()

        return value

    def _ensure_counter(self, counter_db: Session, day: str, now: datetime):
        exists = counter_db.execute(
            select(BookingSequence.day).where(BookingSequence.day == day)
        ).first()
        if exists:
            return

        start, end = day_bounds(now)
        created_today = counter_db.execute(
            select(func.count(Booking.id)).where(Booking.created_at >= start, Booking.created_at < end)
        ).scalar_one()

        values = {"day": day, "last_value": created_today}
        dialect = counter_db.get_bind().dialect.name

        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
            counter_db.execute(insert(BookingSequence).values(**values).on_conflict_do_nothing())
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
            counter_db.execute(insert(BookingSequence).values(**values).on_conflict_do_nothing())
        else:
            try:
                counter_db.add(BookingSequence(**values))
                counter_db.flush()
            except IntegrityError:
                # Another request created the row first
                counter_db.rollback()
