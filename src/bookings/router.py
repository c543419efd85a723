from fastapi import APIRouter, Depends, HTTPException, status, Query, Response
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import datetime, date

from src.config import settings
from src.database import get_db
from src.bookings.booking_service import BookingService, to_booking_response
from src.bookings.clock import to_naive_utc
from src.bookings.exceptions import (
    BookingError, NotFoundError, StateConflictError, ValidationRejection
)
from src.bookings.qr_service import QRCodeService
from src.bookings.schemas import (
    BookingCreateRequest, BookingUpdateRequest, BookingStatusUpdateRequest,
    BookingReviewRequest, BookingCancelRequest, BookingCompleteRequest,
    BookingResponse, BookingActionResponse, BookingPage, BookingSearchFilters,
    BookingSortField, BookingStatistics, BookingStatus, TimeSlotCheckRequest,
    TimeSlotAvailability, QRCodeResponse, QRValidationRequest, QRValidationResponse,
    QRBulkRequest, QRBulkResult
)
from src.notifications.emitter import get_notification_emitter

router = APIRouter()

def get_booking_service(db: Session = Depends(get_db)) -> BookingService:
    return BookingService(db, emitter=get_notification_emitter())

def get_qr_service(db: Session = Depends(get_db)) -> QRCodeService:
    return QRCodeService(db, emitter=get_notification_emitter())

def _http_error(error: BookingError) -> HTTPException:
    """Map a booking failure onto its HTTP status"""
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error.message)

    if isinstance(error, StateConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=error.message)

    if isinstance(error, ValidationRejection):
        if error.conflicts:
            return HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={
                    "message": error.message,
                    "conflicting_bookings": [c.model_dump(mode="json") for c in error.conflicts]
                }
            )
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error.message)

    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=error.message)

# Booking Endpoints
@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    request: BookingCreateRequest,
    booking_service: BookingService = Depends(get_booking_service)
):
    """Reserve a charging slot; the booking starts out pending"""
    try:
        booking = booking_service.create_booking(request)
    except BookingError as e:
        raise _http_error(e)

    return to_booking_response(booking, booking_service.clock())

@router.get("/", response_model=BookingPage)
def search_bookings(
    user_id: Optional[str] = Query(None, description="Filter by user"),
    station_id: Optional[str] = Query(None, description="Filter by station"),
    booking_status: Optional[BookingStatus] = Query(None, alias="status", description="Filter by status"),
    booking_date_from: Optional[date] = Query(None, description="Booking date from"),
    booking_date_to: Optional[date] = Query(None, description="Booking date to"),
    created_from: Optional[datetime] = Query(None, description="Created at from"),
    created_to: Optional[datetime] = Query(None, description="Created at to"),
    vehicle_number: Optional[str] = Query(None, description="Vehicle number contains"),
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    sort_by: BookingSortField = Query(BookingSortField.CREATED_AT),
    sort_descending: bool = Query(True),
    booking_service: BookingService = Depends(get_booking_service)
):
    """Search bookings with filters and pagination"""
    filters = BookingSearchFilters(
        user_id=user_id,
        station_id=station_id,
        status=booking_status,
        booking_date_from=booking_date_from,
        booking_date_to=booking_date_to,
        created_from=created_from,
        created_to=created_to,
        vehicle_number=vehicle_number,
        page=page,
        page_size=page_size,
        sort_by=sort_by,
        sort_descending=sort_descending
    )

    try:
        return booking_service.search_bookings(filters)
    except BookingError as e:
        raise _http_error(e)

@router.get("/statistics", response_model=BookingStatistics)
def get_booking_statistics(
    date_from: Optional[datetime] = Query(None, description="Created at from"),
    date_to: Optional[datetime] = Query(None, description="Created at to"),
    booking_service: BookingService = Depends(get_booking_service)
):
    """Booking counts, revenue and daily breakdown"""
    try:
        return booking_service.get_booking_statistics(to_naive_utc(date_from), to_naive_utc(date_to))
    except BookingError as e:
        raise _http_error(e)

@router.post("/check-availability", response_model=TimeSlotAvailability)
def check_availability(
    request: TimeSlotCheckRequest,
    booking_service: BookingService = Depends(get_booking_service)
):
    """Check whether a station interval is free"""
    try:
        return booking_service.check_availability(
            request.station_id, request.start_time, request.end_time, request.exclude_booking_id
        )
    except BookingError as e:
        raise _http_error(e)

@router.get("/check-conflict")
def check_conflict(
    station_id: str = Query(..., description="Station ID"),
    start_time: datetime = Query(..., description="Interval start"),
    end_time: datetime = Query(..., description="Interval end"),
    exclude_booking_id: Optional[str] = Query(None, description="Booking to ignore"),
    booking_service: BookingService = Depends(get_booking_service)
):
    """Boolean conflict check for a station interval"""
    try:
        has_conflict = booking_service.has_conflict(
            station_id, to_naive_utc(start_time), to_naive_utc(end_time), exclude_booking_id
        )
    except BookingError as e:
        raise _http_error(e)

    return {"has_conflict": has_conflict}

@router.get("/date-range", response_model=List[BookingResponse])
def get_bookings_by_date_range(
    start_date: date = Query(..., description="First booking date"),
    end_date: date = Query(..., description="Last booking date"),
    station_id: Optional[str] = Query(None, description="Filter by station"),
    booking_service: BookingService = Depends(get_booking_service)
):
    """Bookings whose booking date falls in the inclusive range"""
    if end_date < start_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="End date must not be before start date"
        )

    bookings = booking_service.get_bookings_by_date_range(start_date, end_date, station_id)
    now = booking_service.clock()
    return [to_booking_response(b, now) for b in bookings]

@router.get("/history/{user_id}", response_model=List[BookingResponse])
def get_user_booking_history(
    user_id: str,
    limit: int = Query(settings.USER_HISTORY_LIMIT, ge=1, le=100, description="Maximum results"),
    booking_service: BookingService = Depends(get_booking_service)
):
    """A user's most recent bookings"""
    bookings = booking_service.get_user_booking_history(user_id, limit)
    now = booking_service.clock()
    return [to_booking_response(b, now) for b in bookings]

@router.get("/station/{station_id}", response_model=List[BookingResponse])
def get_station_bookings(
    station_id: str,
    booking_status: Optional[BookingStatus] = Query(None, alias="status", description="Filter by status"),
    limit: int = Query(100, ge=1, le=500, description="Maximum results"),
    booking_service: BookingService = Depends(get_booking_service)
):
    """Bookings at a station ordered by start time"""
    bookings = booking_service.get_station_bookings(station_id, booking_status, limit)
    now = booking_service.clock()
    return [to_booking_response(b, now) for b in bookings]

@router.get("/number/{booking_number}", response_model=BookingResponse)
def get_booking_by_number(
    booking_number: str,
    booking_service: BookingService = Depends(get_booking_service)
):
    """Get booking by its booking number"""
    try:
        booking = booking_service.get_booking_by_number(booking_number)
    except BookingError as e:
        raise _http_error(e)

    return to_booking_response(booking, booking_service.clock())

# QR Code Endpoints
@router.post("/qrcode/bulk", response_model=List[QRBulkResult])
def generate_bulk_qr_codes(
    request: QRBulkRequest,
    qr_service: QRCodeService = Depends(get_qr_service)
):
    """Issue QR codes for several bookings; failures are reported per booking"""
    return qr_service.issue_many(request.booking_ids)

@router.post("/validate-qr", response_model=QRValidationResponse)
def validate_qr_code(
    request: QRValidationRequest,
    qr_service: QRCodeService = Depends(get_qr_service)
):
    """Validate a scanned QR code at the charger"""
    try:
        booking = qr_service.validate(request.qr_code_data)
    except BookingError as e:
        return QRValidationResponse(is_valid=False, message=e.message)

    return QRValidationResponse(
        is_valid=True,
        message="QR code is valid",
        booking=to_booking_response(booking, qr_service.clock())
    )

@router.get("/{booking_id}", response_model=BookingResponse)
def get_booking(
    booking_id: str,
    booking_service: BookingService = Depends(get_booking_service)
):
    """Get booking details by ID"""
    try:
        booking = booking_service.get_booking(booking_id)
    except BookingError as e:
        raise _http_error(e)

    return to_booking_response(booking, booking_service.clock())

@router.put("/{booking_id}", response_model=BookingResponse)
def update_booking(
    booking_id: str,
    request: BookingUpdateRequest,
    booking_service: BookingService = Depends(get_booking_service)
):
    """Modify a pending booking at least 12 hours before it starts"""
    try:
        booking = booking_service.update_booking(booking_id, request)
    except BookingError as e:
        raise _http_error(e)

    return to_booking_response(booking, booking_service.clock())

@router.patch("/{booking_id}/status", response_model=BookingActionResponse)
def update_booking_status(
    booking_id: str,
    request: BookingStatusUpdateRequest,
    booking_service: BookingService = Depends(get_booking_service)
):
    """Move a booking to another lifecycle status"""
    try:
        booking = booking_service.update_status(booking_id, request)
    except BookingError as e:
        raise _http_error(e)

    return BookingActionResponse(
        message=f"Booking status updated to {booking.status}",
        booking=to_booking_response(booking, booking_service.clock()),
        qr_code=booking.qr_code or None
    )

@router.post("/{booking_id}/approve", response_model=BookingActionResponse)
def review_booking(
    booking_id: str,
    request: BookingReviewRequest,
    booking_service: BookingService = Depends(get_booking_service)
):
    """Approve or reject a pending booking"""
    try:
        booking, qr_code = booking_service.review_booking(
            booking_id, request.is_approved, request.approved_by, request.reason
        )
    except BookingError as e:
        raise _http_error(e)

    return BookingActionResponse(
        message="Booking approved successfully" if request.is_approved else "Booking rejected",
        booking=to_booking_response(booking, booking_service.clock()),
        qr_code=qr_code
    )

@router.post("/{booking_id}/cancel", response_model=BookingActionResponse)
def cancel_booking(
    booking_id: str,
    request: BookingCancelRequest,
    booking_service: BookingService = Depends(get_booking_service)
):
    """Cancel a pending or approved booking"""
    try:
        booking = booking_service.cancel_booking(booking_id, request.cancelled_by, request.reason)
    except BookingError as e:
        raise _http_error(e)

    return BookingActionResponse(
        message="Booking cancelled successfully",
        booking=to_booking_response(booking, booking_service.clock())
    )

@router.post("/{booking_id}/complete", response_model=BookingActionResponse)
def complete_booking(
    booking_id: str,
    request: BookingCompleteRequest,
    booking_service: BookingService = Depends(get_booking_service)
):
    """Mark an approved booking as completed"""
    try:
        booking = booking_service.complete_booking(
            booking_id, request.completed_by, request.energy_consumed_kwh
        )
    except BookingError as e:
        raise _http_error(e)

    return BookingActionResponse(
        message="Booking completed successfully",
        booking=to_booking_response(booking, booking_service.clock())
    )

@router.delete("/{booking_id}")
def delete_booking(
    booking_id: str,
    deleted_by: str = Query(..., min_length=1, description="Who is deleting the booking"),
    booking_service: BookingService = Depends(get_booking_service)
):
    """Soft delete: the booking is cancelled and kept for history"""
    try:
        booking = booking_service.delete_booking(booking_id, deleted_by)
    except BookingError as e:
        raise _http_error(e)

    return {
        "message": "Booking deleted successfully",
        "booking_id": booking.id,
        "booking_number": booking.booking_number
    }

@router.post("/{booking_id}/qrcode", response_model=QRCodeResponse)
def generate_qr_code(
    booking_id: str,
    qr_service: QRCodeService = Depends(get_qr_service)
):
    """Issue the check-in QR code for an approved booking"""
    try:
        token = qr_service.issue(booking_id)
        booking = qr_service.get_token(booking_id)
    except BookingError as e:
        raise _http_error(e)

    return QRCodeResponse(
        booking_id=booking_id,
        qr_code=token,
        generated_at=booking.qr_code_generated_at,
        message="QR code generated successfully"
    )

@router.get("/{booking_id}/qrcode", response_model=QRCodeResponse)
def get_qr_code(
    booking_id: str,
    qr_service: QRCodeService = Depends(get_qr_service)
):
    """Get the issued QR code payload"""
    try:
        booking = qr_service.get_token(booking_id)
    except BookingError as e:
        raise _http_error(e)

    return QRCodeResponse(
        booking_id=booking_id,
        qr_code=booking.qr_code,
        generated_at=booking.qr_code_generated_at,
        message="QR code retrieved successfully"
    )

@router.get("/{booking_id}/qrcode/image")
def get_qr_code_image(
    booking_id: str,
    qr_service: QRCodeService = Depends(get_qr_service)
):
    """Get the QR code as a PNG image"""
    try:
        image = qr_service.render_image(booking_id)
    except BookingError as e:
        raise _http_error(e)

    return Response(
        content=image,
        media_type="image/png",
        headers={"Content-Disposition": f"inline; filename=booking_{booking_id}_qr.png"}
    )

@router.delete("/{booking_id}/qrcode")
def invalidate_qr_code(
    booking_id: str,
    qr_service: QRCodeService = Depends(get_qr_service)
):
    """Invalidate a booking's QR code"""
    try:
        invalidated = qr_service.invalidate(booking_id)
    except BookingError as e:
        raise _http_error(e)

    return {
        "booking_id": booking_id,
        "invalidated": invalidated,
        "message": "QR code invalidated successfully" if invalidated else "No QR code to invalidate"
    }
