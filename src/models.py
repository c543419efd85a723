import uuid
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Date, Text, ForeignKey, Numeric, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from src.database import Base

def _new_id() -> str:
    return str(uuid.uuid4())

# ================================
# Charging Stations
# ================================
class ChargingStation(Base):
    __tablename__ = "charging_stations"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False, index=True)
    location = Column(String(255))
    address = Column(String(500))
    connector_type = Column(String(50))
    power_rating_kw = Column(Numeric(8, 2))
    price_per_kwh = Column(Numeric(8, 2))
    status = Column(String(50), nullable=False, default="active")
    is_available = Column(Boolean, nullable=False, default=True)
    operator_id = Column(String(64))
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    bookings = relationship("Booking", back_populates="station")

    @property
    def is_booking_available(self) -> bool:
        return self.status == "active" and bool(self.is_available)

# ================================
# Bookings
# ================================
class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_station_status_start", "station_id", "status", "start_time"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    booking_number = Column(String(32), nullable=False, unique=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    station_id = Column(String(36), ForeignKey("charging_stations.id"), nullable=False, index=True)

    # Reservation (naive UTC timestamps)
    booking_date = Column(Date, nullable=False, index=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = Column(String(20), nullable=False, default="pending", index=True)

    # Vehicle
    vehicle_number = Column(String(20), nullable=False)
    vehicle_type = Column(String(50), nullable=False, default="")
    estimated_charging_minutes = Column(Integer, nullable=False)
    notes = Column(String(500), nullable=False, default="")

    # Check-in token
    qr_code = Column(Text, nullable=False, default="")
    qr_code_generated_at = Column(DateTime)

    # Lifecycle stamps
    created_at = Column(DateTime, nullable=False, index=True)
    modified_at = Column(DateTime)
    approved_at = Column(DateTime)
    approved_by = Column(String(100), nullable=False, default="")
    rejected_at = Column(DateTime)
    rejected_by = Column(String(100), nullable=False, default="")
    rejection_reason = Column(String(500), nullable=False, default="")
    cancelled_at = Column(DateTime)
    cancelled_by = Column(String(100), nullable=False, default="")
    cancellation_reason = Column(String(500), nullable=False, default="")
    completed_at = Column(DateTime)

    # Charging session outcome
    actual_start_time = Column(DateTime)
    actual_end_time = Column(DateTime)
    total_cost = Column(Numeric(10, 2))
    energy_consumed_kwh = Column(Numeric(10, 3))

    # Relationships
    station = relationship("ChargingStation", back_populates="bookings")

# ================================
# Booking Number Sequences
# ================================
class BookingSequence(Base):
    """Per-UTC-day counter backing booking numbers"""
    __tablename__ = "booking_sequences"

    day = Column(String(8), primary_key=True)
    last_value = Column(Integer, nullable=False, default=0)
