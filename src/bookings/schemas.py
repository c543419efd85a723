from pydantic import BaseModel, Field, validator
from typing import List, Optional
from datetime import datetime, date
from decimal import Decimal
from enum import Enum

from src.bookings.clock import to_naive_utc

class BookingStatus(str, Enum):
    """Booking lifecycle status"""
    PENDING = "pending"
    APPROVED = "approved"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"

class BookingSortField(str, Enum):
    CREATED_AT = "created_at"
    BOOKING_DATE = "booking_date"
    STATUS = "status"

# Booking Request Models
class BookingCreateRequest(BaseModel):
    """Request to reserve a charging slot"""
    user_id: str = Field(..., min_length=1)
    station_id: str = Field(..., min_length=1)
    booking_date: date
    start_time: datetime
    end_time: datetime
    vehicle_number: str = Field(..., min_length=2, max_length=20)
    vehicle_type: str = Field("", max_length=50)
    estimated_charging_minutes: int = Field(..., ge=1, le=1440)
    notes: str = Field("", max_length=500)

    @validator('start_time', 'end_time')
    def normalize_to_utc(cls, v):
        return to_naive_utc(v)

    @validator('vehicle_number')
    def strip_vehicle_number(cls, v):
        v = v.strip()
        if len(v) < 2:
            raise ValueError('Vehicle number must be at least 2 characters')
        return v

class BookingUpdateRequest(BaseModel):
    """Partial update of a pending booking; only supplied fields are applied"""
    booking_date: Optional[date] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    vehicle_number: Optional[str] = Field(None, min_length=2, max_length=20)
    vehicle_type: Optional[str] = Field(None, max_length=50)
    estimated_charging_minutes: Optional[int] = Field(None, ge=1, le=1440)
    notes: Optional[str] = Field(None, max_length=500)

    @validator('start_time', 'end_time')
    def normalize_to_utc(cls, v):
        return to_naive_utc(v)

class BookingStatusUpdateRequest(BaseModel):
    """Request to move a booking to another lifecycle status"""
    status: BookingStatus
    updated_by: str = ""
    reason: Optional[str] = Field(None, max_length=500)
    actual_start_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None
    total_cost: Optional[Decimal] = Field(None, ge=0)
    energy_consumed_kwh: Optional[Decimal] = Field(None, ge=0)

    @validator('actual_start_time', 'actual_end_time')
    def normalize_to_utc(cls, v):
        return to_naive_utc(v)

class BookingReviewRequest(BaseModel):
    """Operator decision on a pending booking"""
    is_approved: bool
    approved_by: str = Field(..., min_length=1)
    reason: Optional[str] = Field(None, max_length=500)

class BookingCancelRequest(BaseModel):
    cancelled_by: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=5, max_length=500)

class BookingCompleteRequest(BaseModel):
    completed_by: str = Field(..., min_length=1)
    energy_consumed_kwh: Optional[Decimal] = Field(None, ge=0)

class TimeSlotCheckRequest(BaseModel):
    """Availability query for a station interval"""
    station_id: str
    start_time: datetime
    end_time: datetime
    exclude_booking_id: Optional[str] = None

    @validator('start_time', 'end_time')
    def normalize_to_utc(cls, v):
        return to_naive_utc(v)

    @validator('end_time')
    def validate_end_after_start(cls, v, values):
        if 'start_time' in values and values['start_time'] and v <= values['start_time']:
            raise ValueError('End time must be after start time')
        return v

# Booking Response Models
class ConflictingBooking(BaseModel):
    booking_id: str
    booking_number: str
    user_id: str
    start_time: datetime
    end_time: datetime
    status: BookingStatus

    class Config:
        from_attributes = True

class TimeSlotAvailability(BaseModel):
    is_available: bool
    message: str
    conflicting_bookings: List[ConflictingBooking] = []

class BookingResponse(BaseModel):
    """Booking with derived state evaluated at response time"""
    id: str
    booking_number: str
    user_id: str
    station_id: str
    booking_date: date
    start_time: datetime
    end_time: datetime
    status: BookingStatus
    vehicle_number: str
    vehicle_type: str
    estimated_charging_minutes: int
    notes: str
    qr_code: str = ""
    qr_code_generated_at: Optional[datetime] = None
    created_at: datetime
    modified_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    approved_by: str = ""
    rejected_at: Optional[datetime] = None
    rejected_by: str = ""
    rejection_reason: str = ""
    cancelled_at: Optional[datetime] = None
    cancelled_by: str = ""
    cancellation_reason: str = ""
    completed_at: Optional[datetime] = None
    actual_start_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None
    total_cost: Optional[Decimal] = None
    energy_consumed_kwh: Optional[Decimal] = None

    # Derived
    is_within_booking_window: bool
    can_be_modified: bool
    can_be_cancelled: bool
    is_active: bool
    duration_minutes: int

class BookingActionResponse(BaseModel):
    message: str
    booking: BookingResponse
    qr_code: Optional[str] = None

class BookingSearchFilters(BaseModel):
    """Filters, sorting and paging for booking listings"""
    user_id: Optional[str] = None
    station_id: Optional[str] = None
    status: Optional[BookingStatus] = None
    booking_date_from: Optional[date] = None
    booking_date_to: Optional[date] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    vehicle_number: Optional[str] = None
    page: int = Field(1, ge=1)
    page_size: int = Field(20, ge=1, le=100)
    sort_by: BookingSortField = BookingSortField.CREATED_AT
    sort_descending: bool = True

    @validator('created_from', 'created_to')
    def normalize_to_utc(cls, v):
        return to_naive_utc(v)

class BookingPage(BaseModel):
    bookings: List[BookingResponse]
    total_count: int
    page: int
    page_size: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool

class DailyBookingStats(BaseModel):
    day: date
    booking_count: int
    revenue: Decimal

class BookingStatistics(BaseModel):
    """Aggregates over bookings created in an optional range"""
    total_bookings: int
    pending_bookings: int
    approved_bookings: int
    completed_bookings: int
    cancelled_bookings: int
    rejected_bookings: int
    total_revenue: Decimal
    average_duration_minutes: float
    daily_stats: List[DailyBookingStats] = []

# QR Models
class QRCodeResponse(BaseModel):
    booking_id: str
    qr_code: str
    generated_at: Optional[datetime] = None
    message: str

class QRValidationRequest(BaseModel):
    qr_code_data: str = Field(..., min_length=1)

class QRValidationResponse(BaseModel):
    is_valid: bool
    message: str
    booking: Optional[BookingResponse] = None

class QRBulkRequest(BaseModel):
    booking_ids: List[str] = Field(..., min_length=1, max_length=100)

class QRBulkResult(BaseModel):
    booking_id: str
    success: bool
    message: str
    qr_code: Optional[str] = None
