"""
EV Charging Booking Module

This module provides the booking core of the EV Charging Station Booking
System. It includes:

- Time-slot reservation with overlap detection per station
- Booking lifecycle management (pending, approved, completed, cancelled, rejected)
- Sequential booking numbers (BK-YYYYMMDD-NNNN)
- Check-in QR codes for approved bookings
- Booking search, history and statistics

Key Components:
- booking_service.py: Lifecycle manager for create, modify and status changes
- validation.py: Creation and modification business rules
- availability.py: Station interval conflict detection
- lifecycle.py: Transition table and derived booking properties
- booking_number.py: Atomic per-day booking number sequence
- qr_service.py: QR token issuance, validation and invalidation
- router.py: FastAPI endpoints for bookings and QR codes
- schemas.py: Pydantic models for booking data structures
"""

from .router import router
from .booking_service import BookingService, to_booking_response
from .qr_service import QRCodeService
from .exceptions import (
    BookingError, ValidationRejection, NotFoundError, StateConflictError, StoreFailure
)
from .schemas import (
    BookingStatus, BookingCreateRequest, BookingUpdateRequest, BookingStatusUpdateRequest,
    BookingResponse, BookingPage, BookingSearchFilters, BookingStatistics, TimeSlotAvailability
)

__all__ = [
    "router",
    "BookingService",
    "to_booking_response",
    "QRCodeService",
    "BookingError",
    "ValidationRejection",
    "NotFoundError",
    "StateConflictError",
    "StoreFailure",
    "BookingStatus",
    "BookingCreateRequest",
    "BookingUpdateRequest",
    "BookingStatusUpdateRequest",
    "BookingResponse",
    "BookingPage",
    "BookingSearchFilters",
    "BookingStatistics",
    "TimeSlotAvailability"
]
