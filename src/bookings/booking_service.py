from typing import Dict, List, Optional, Tuple
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from collections import defaultdict
import logging
import math

from sqlalchemy import case, func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.config import settings
from src.models import Booking
from src.bookings import lifecycle
from src.bookings.availability import AvailabilityChecker
from src.bookings.booking_number import BookingNumberGenerator
from src.bookings.clock import Clock, utc_now
from src.bookings.exceptions import (
    BookingError, NotFoundError, StateConflictError, StoreFailure
)
from src.bookings.lifecycle import LifecycleEvent
from src.bookings.locks import StationLockRegistry, station_locks
from src.bookings.qr_service import QRCodeService
from src.bookings.schemas import (
    BookingCreateRequest, BookingUpdateRequest, BookingStatusUpdateRequest,
    BookingStatus, BookingSortField, BookingSearchFilters, BookingPage,
    BookingResponse, BookingStatistics, DailyBookingStats, TimeSlotAvailability
)
from src.bookings.validation import BookingValidator
from src.notifications.emitter import NotificationEmitter, LoggingNotificationEmitter, emit_safely
from src.notifications.schemas import BookingEvent, BookingEventKind
from src.stations.service import StationService

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

# Lifecycle order used when sorting by status
_STATUS_ORDER = {
    BookingStatus.PENDING.value: 0,
    BookingStatus.APPROVED.value: 1,
    BookingStatus.COMPLETED.value: 2,
    BookingStatus.CANCELLED.value: 3,
    BookingStatus.REJECTED.value: 4,
}


class BookingService:
    """Service owning booking creation, modification and lifecycle transitions"""

    def __init__(
        self,
        db: Session,
        clock: Clock = utc_now,
        emitter: Optional[NotificationEmitter] = None,
        locks: StationLockRegistry = station_locks
    ):
        self.db = db
        self.clock = clock
        self.emitter = emitter or LoggingNotificationEmitter()
        self.locks = locks
        self.validator = BookingValidator(db, clock)
        self.availability = AvailabilityChecker(db)
        self.number_generator = BookingNumberGenerator(db, clock)
        self.qr_service = QRCodeService(db, clock, self.emitter)

    # ------------------------------------------------------------------
    # Create / modify
    # ------------------------------------------------------------------

    def create_booking(self, request: BookingCreateRequest) -> Booking:
        """Validate and persist a new pending booking.

        The station lock is held from the availability check until the insert
        is committed, so two requests for overlapping slots at one station can
        never both pass validation. Unknown stations are rejected without
        registering a lock.
        """

        if StationService.get_station_by_id(self.db, request.station_id) is None:
            try:
                # Reports the first failing rule; the station check always fails here
                self.validator.validate_create(request)
            finally:
                self.db.rollback()
            raise NotFoundError("Charging station not found")

        with self.locks.hold(request.station_id):
            try:
                StationService.lock_station(self.db, request.station_id)
                self.validator.validate_create(request)

                station = StationService.get_station_by_id(self.db, request.station_id)
                booking = Booking(
                    booking_number=self.number_generator.generate(),
                    user_id=request.user_id,
                    station_id=request.station_id,
                    booking_date=request.booking_date,
                    start_time=request.start_time,
                    end_time=request.end_time,
                    vehicle_number=request.vehicle_number,
                    vehicle_type=request.vehicle_type,
                    estimated_charging_minutes=request.estimated_charging_minutes,
                    notes=request.notes,
                    status=BookingStatus.PENDING.value,
                    total_cost=self._estimate_cost(station, request.start_time, request.end_time),
                    created_at=self.clock(),
                )

                self.db.add(booking)
                self.db.commit()
            except BookingError:
                self.db.rollback()
                raise
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.exception("Error creating booking for user %s", request.user_id)
                raise StoreFailure("An error occurred while creating the booking") from exc

        self.db.refresh(booking)
        logger.info("Booking %s created for user %s", booking.booking_number, booking.user_id)

        self._emit(BookingEvent(
            kind=BookingEventKind.BOOKING_CREATED,
            booking_id=booking.id,
            user_id=booking.user_id,
            station_id=booking.station_id,
            new_status=booking.status,
            message=f"New booking {booking.booking_number}",
            payload={"booking_number": booking.booking_number}
        ))
        return booking

    def update_booking(self, booking_id: str, request: BookingUpdateRequest) -> Booking:
        """Apply the supplied fields to a pending booking outside the 12-hour cutoff"""

        booking = self.get_booking(booking_id)

        with self.locks.hold(booking.station_id):
            try:
                StationService.lock_station(self.db, booking.station_id)
                # Reload under the lock; a concurrent change may have landed
                self.db.refresh(booking)
                now = self.clock()

                if not lifecycle.can_be_modified(booking, now):
                    raise StateConflictError(
                        "Booking cannot be modified. Either it's not in pending status or the "
                        f"modification window has passed ({settings.MODIFICATION_CUTOFF_HOURS} hours before start time)"
                    )

                changes = {
                    field: value
                    for field, value in request.model_dump(exclude_unset=True).items()
                    if value is not None
                }

                self.validator.validate_modification(
                    booking,
                    booking_date=changes.get("booking_date", booking.booking_date),
                    start_time=changes.get("start_time", booking.start_time),
                    end_time=changes.get("end_time", booking.end_time),
                )

                if "start_time" in changes or "end_time" in changes:
                    station = StationService.get_station_by_id(self.db, booking.station_id)
                    changes["total_cost"] = self._estimate_cost(
                        station,
                        changes.get("start_time", booking.start_time),
                        changes.get("end_time", booking.end_time),
                    )

                changes["modified_at"] = now
                self._conditional_update(booking, BookingStatus.PENDING, changes)
                self.db.commit()
            except BookingError:
                self.db.rollback()
                raise
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.exception("Error updating booking %s", booking_id)
                raise StoreFailure("An error occurred while updating the booking") from exc

        self.db.refresh(booking)
        logger.info("Booking %s updated", booking.booking_number)

        self._emit(BookingEvent(
            kind=BookingEventKind.BOOKING_UPDATED,
            booking_id=booking.id,
            user_id=booking.user_id,
            station_id=booking.station_id,
            new_status=booking.status,
            message=f"Booking {booking.booking_number} updated",
            payload={"changed_fields": sorted(f for f in changes if f != "modified_at")}
        ))
        return booking

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def update_status(self, booking_id: str, request: BookingStatusUpdateRequest) -> Booking:
        """Move a booking along the lifecycle; approval issues the check-in QR code"""

        event = lifecycle.event_for_target(request.status)
        return self._transition(
            booking_id,
            event,
            actor=request.updated_by,
            reason=request.reason,
            actual_start_time=request.actual_start_time,
            actual_end_time=request.actual_end_time,
            total_cost=request.total_cost,
            energy_consumed_kwh=request.energy_consumed_kwh,
        )

    def approve_booking(self, booking_id: str, approved_by: str) -> Booking:
        return self._transition(booking_id, LifecycleEvent.APPROVE, actor=approved_by)

    def reject_booking(self, booking_id: str, rejected_by: str, reason: str = "") -> Booking:
        return self._transition(booking_id, LifecycleEvent.REJECT, actor=rejected_by, reason=reason)

    def cancel_booking(self, booking_id: str, cancelled_by: str, reason: str) -> Booking:
        return self._transition(booking_id, LifecycleEvent.CANCEL, actor=cancelled_by, reason=reason)

    def complete_booking(
        self,
        booking_id: str,
        completed_by: str,
        energy_consumed_kwh: Optional[Decimal] = None
    ) -> Booking:
        return self._transition(
            booking_id, LifecycleEvent.COMPLETE, actor=completed_by, energy_consumed_kwh=energy_consumed_kwh
        )

    def review_booking(
        self,
        booking_id: str,
        is_approved: bool,
        reviewed_by: str,
        reason: Optional[str] = None
    ) -> Tuple[Booking, Optional[str]]:
        """Approve or reject in one call; returns the QR token on approval"""

        if is_approved:
            booking = self.approve_booking(booking_id, reviewed_by)
            return booking, booking.qr_code or None

        return self.reject_booking(booking_id, reviewed_by, reason or ""), None

    def delete_booking(self, booking_id: str, deleted_by: str) -> Booking:
        """Soft delete: cancel with a fixed reason, never remove the row"""

        booking = self.get_booking(booking_id)
        if not lifecycle.can_be_cancelled(booking):
            raise StateConflictError("Booking cannot be cancelled")

        return self._transition(
            booking_id,
            LifecycleEvent.CANCEL,
            actor=deleted_by,
            reason="Booking deleted",
            event_kind=BookingEventKind.BOOKING_DELETED,
        )

    def _transition(
        self,
        booking_id: str,
        event: LifecycleEvent,
        actor: Optional[str] = None,
        reason: Optional[str] = None,
        actual_start_time: Optional[datetime] = None,
        actual_end_time: Optional[datetime] = None,
        total_cost: Optional[Decimal] = None,
        energy_consumed_kwh: Optional[Decimal] = None,
        event_kind: BookingEventKind = BookingEventKind.BOOKING_STATUS_CHANGED
    ) -> Booking:
        booking = self.get_booking(booking_id)
        old_status = BookingStatus(booking.status)
        new_status = lifecycle.next_status(old_status, event)

        now = self.clock()
        actor = actor or ""
        reason = reason or ""
        values = {"status": new_status.value, "modified_at": now}

        if new_status == BookingStatus.APPROVED:
            values.update(approved_at=now, approved_by=actor)

        elif new_status == BookingStatus.REJECTED:
            values.update(rejected_at=now, rejected_by=actor, rejection_reason=reason)

        elif new_status == BookingStatus.CANCELLED:
            values.update(
                cancelled_at=now,
                cancelled_by=actor,
                cancellation_reason=reason,
                qr_code="",
                qr_code_generated_at=None,
            )

        elif new_status == BookingStatus.COMPLETED:
            values["completed_at"] = now
            if actual_start_time is not None:
                values["actual_start_time"] = actual_start_time
            if actual_end_time is not None:
                values["actual_end_time"] = actual_end_time
            if energy_consumed_kwh is not None:
                values["energy_consumed_kwh"] = energy_consumed_kwh
            if total_cost is not None:
                values["total_cost"] = total_cost
            elif energy_consumed_kwh is not None:
                station = StationService.get_station_by_id(self.db, booking.station_id)
                if station is not None and station.price_per_kwh is not None:
                    values["total_cost"] = (
                        Decimal(energy_consumed_kwh) * Decimal(station.price_per_kwh)
                    ).quantize(CENT, rounding=ROUND_HALF_UP)

        try:
            self._conditional_update(booking, old_status, values)
            self.db.commit()
        except BookingError:
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Error updating booking status %s", booking_id)
            raise StoreFailure("An error occurred while updating the booking status") from exc

        self.db.refresh(booking)
        logger.info("Booking %s moved %s -> %s by %s",
                    booking.booking_number, old_status.value, new_status.value, actor or "system")

        self._emit(BookingEvent(
            kind=event_kind,
            booking_id=booking.id,
            user_id=booking.user_id,
            station_id=booking.station_id,
            old_status=old_status.value,
            new_status=new_status.value,
            message=reason or f"Booking {new_status.value}",
        ))

        if new_status == BookingStatus.APPROVED:
            try:
                self.qr_service.issue(booking.id)
            except BookingError as e:
                # Approval stands; the token can be issued again through the QR endpoint
                logger.warning("QR issuance failed for approved booking %s: %s", booking.id, e.message)
            self.db.refresh(booking)

        return booking

    def _conditional_update(self, booking: Booking, expected_status: BookingStatus, values: Dict):
        """Single-row UPDATE guarded by the status the decision was made on"""

        result = self.db.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.status == expected_status.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise StateConflictError("Booking was changed by another request; reload and try again")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.db.query(Booking).filter(Booking.id == booking_id).first()
        if not booking:
            raise NotFoundError("Booking not found")
        return booking

    def get_booking_by_number(self, booking_number: str) -> Booking:
        booking = self.db.query(Booking).filter(Booking.booking_number == booking_number).first()
        if not booking:
            raise NotFoundError("Booking not found")
        return booking

    def check_availability(
        self,
        station_id: str,
        start_time: datetime,
        end_time: datetime,
        exclude_booking_id: Optional[str] = None
    ) -> TimeSlotAvailability:
        return self.availability.check_availability(station_id, start_time, end_time, exclude_booking_id)

    def has_conflict(
        self,
        station_id: str,
        start_time: datetime,
        end_time: datetime,
        exclude_booking_id: Optional[str] = None
    ) -> bool:
        return self.availability.has_conflict(station_id, start_time, end_time, exclude_booking_id)

    def search_bookings(self, filters: BookingSearchFilters) -> BookingPage:
        """Filtered, sorted, paginated booking listing"""

        query = self.db.query(Booking)

        if filters.user_id:
            query = query.filter(Booking.user_id == filters.user_id)

        if filters.station_id:
            query = query.filter(Booking.station_id == filters.station_id)

        if filters.status:
            query = query.filter(Booking.status == filters.status.value)

        if filters.booking_date_from:
            query = query.filter(Booking.booking_date >= filters.booking_date_from)

        if filters.booking_date_to:
            query = query.filter(Booking.booking_date <= filters.booking_date_to)

        if filters.created_from:
            query = query.filter(Booking.created_at >= filters.created_from)

        if filters.created_to:
            query = query.filter(Booking.created_at <= filters.created_to)

        if filters.vehicle_number:
            query = query.filter(
                func.lower(Booking.vehicle_number).contains(filters.vehicle_number.lower(), autoescape=True)
            )

        if filters.sort_by == BookingSortField.BOOKING_DATE:
            sort_column = Booking.booking_date
        elif filters.sort_by == BookingSortField.STATUS:
            sort_column = case(_STATUS_ORDER, value=Booking.status, else_=len(_STATUS_ORDER))
        else:
            sort_column = Booking.created_at

        order = sort_column.desc() if filters.sort_descending else sort_column.asc()

        try:
            total_count = query.count()
            bookings = (
                query.order_by(order, Booking.created_at.desc(), Booking.id)
                .offset((filters.page - 1) * filters.page_size)
                .limit(filters.page_size)
                .all()
            )
        except SQLAlchemyError as exc:
            logger.exception("Error retrieving bookings")
            raise StoreFailure("An error occurred while retrieving bookings") from exc

        total_pages = math.ceil(total_count / filters.page_size)
        now = self.clock()

        return BookingPage(
            bookings=[to_booking_response(b, now) for b in bookings],
            total_count=total_count,
            page=filters.page,
            page_size=filters.page_size,
            total_pages=total_pages,
            has_next_page=filters.page < total_pages,
            has_previous_page=filters.page > 1,
        )

    def get_user_booking_history(self, user_id: str, limit: int = None) -> List[Booking]:
        """Get a user's bookings, newest first"""
        return (
            self.db.query(Booking)
            .filter(Booking.user_id == user_id)
            .order_by(Booking.created_at.desc())
            .limit(limit or settings.USER_HISTORY_LIMIT)
            .all()
        )

    def get_bookings_by_date_range(
        self,
        start_date: date,
        end_date: date,
        station_id: Optional[str] = None
    ) -> List[Booking]:
        query = self.db.query(Booking).filter(
            Booking.booking_date >= start_date,
            Booking.booking_date <= end_date,
        )
        if station_id:
            query = query.filter(Booking.station_id == station_id)

        return query.order_by(Booking.created_at.desc()).all()

    def get_station_bookings(
        self,
        station_id: str,
        status: Optional[BookingStatus] = None,
        limit: int = 100
    ) -> List[Booking]:
        query = self.db.query(Booking).filter(Booking.station_id == station_id)
        if status:
            query = query.filter(Booking.status == status.value)

        return query.order_by(Booking.start_time.asc()).limit(limit).all()

    def get_booking_statistics(
        self,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None
    ) -> BookingStatistics:
        """Counts by status, revenue and average duration over a created-at range"""

        query = self.db.query(Booking)
        if date_from:
            query = query.filter(Booking.created_at >= date_from)
        if date_to:
            query = query.filter(Booking.created_at <= date_to)

        try:
            bookings = query.all()
        except SQLAlchemyError as exc:
            logger.exception("Error retrieving booking statistics")
            raise StoreFailure("An error occurred while retrieving booking statistics") from exc

        status_counts = defaultdict(int)
        daily_counts = defaultdict(int)
        daily_revenue = defaultdict(Decimal)
        total_revenue = Decimal("0")

        for booking in bookings:
            status_counts[booking.status] += 1
            day = booking.created_at.date()
            daily_counts[day] += 1
            if booking.total_cost is not None:
                total_revenue += Decimal(booking.total_cost)
                daily_revenue[day] += Decimal(booking.total_cost)

        average_duration = (
            sum(lifecycle.duration_minutes(b) for b in bookings) / len(bookings)
            if bookings else 0.0
        )

        return BookingStatistics(
            total_bookings=len(bookings),
            pending_bookings=status_counts[BookingStatus.PENDING.value],
            approved_bookings=status_counts[BookingStatus.APPROVED.value],
            completed_bookings=status_counts[BookingStatus.COMPLETED.value],
            cancelled_bookings=status_counts[BookingStatus.CANCELLED.value],
            rejected_bookings=status_counts[BookingStatus.REJECTED.value],
            total_revenue=total_revenue,
            average_duration_minutes=round(average_duration, 2),
            daily_stats=[
                DailyBookingStats(day=day, booking_count=daily_counts[day], revenue=daily_revenue[day])
                for day in sorted(daily_counts)
            ],
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _estimate_cost(self, station, start_time: datetime, end_time: datetime) -> Optional[Decimal]:
        """hours * rated power * charging efficiency * unit price"""

        if station is None or station.power_rating_kw is None or station.price_per_kwh is None:
            return None

        hours = Decimal((end_time - start_time).total_seconds()) / Decimal(3600)
        energy_kwh = hours * Decimal(station.power_rating_kw) * Decimal(str(settings.CHARGING_EFFICIENCY))
        return (energy_kwh * Decimal(station.price_per_kwh)).quantize(CENT, rounding=ROUND_HALF_UP)

    def _emit(self, event: BookingEvent):
        emit_safely(self.emitter, event)


def to_booking_response(booking: Booking, now: datetime) -> BookingResponse:
    """Map a stored booking plus its derived state at ``now``"""

    return BookingResponse(
        id=booking.id,
        booking_number=booking.booking_number,
        user_id=booking.user_id,
        station_id=booking.station_id,
        booking_date=booking.booking_date,
        start_time=booking.start_time,
        end_time=booking.end_time,
        status=booking.status,
        vehicle_number=booking.vehicle_number,
        vehicle_type=booking.vehicle_type or "",
        estimated_charging_minutes=booking.estimated_charging_minutes,
        notes=booking.notes or "",
        qr_code=booking.qr_code or "",
        qr_code_generated_at=booking.qr_code_generated_at,
        created_at=booking.created_at,
        modified_at=booking.modified_at,
        approved_at=booking.approved_at,
        approved_by=booking.approved_by or "",
        rejected_at=booking.rejected_at,
        rejected_by=booking.rejected_by or "",
        rejection_reason=booking.rejection_reason or "",
        cancelled_at=booking.cancelled_at,
        cancelled_by=booking.cancelled_by or "",
        cancellation_reason=booking.cancellation_reason or "",
        completed_at=booking.completed_at,
        actual_start_time=booking.actual_start_time,
        actual_end_time=booking.actual_end_time,
        total_cost=booking.total_cost,
        energy_consumed_kwh=booking.energy_consumed_kwh,
        is_within_booking_window=lifecycle.is_within_booking_window(booking, now),
        can_be_modified=lifecycle.can_be_modified(booking, now),
        can_be_cancelled=lifecycle.can_be_cancelled(booking),
        is_active=lifecycle.is_active(booking, now),
        duration_minutes=lifecycle.duration_minutes(booking),
    )
