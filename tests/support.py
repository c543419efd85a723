"""Shared fixtures for booking tests: a throwaway SQLite file, a fixed clock
and an emitter that records every event."""
import os
import tempfile
import unittest
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.orm import sessionmaker

from src.database import make_engine, init_db
from src.models import ChargingStation
from src.bookings.booking_service import BookingService
from src.bookings.locks import StationLockRegistry
from src.bookings.qr_service import QRCodeService
from src.bookings.schemas import BookingCreateRequest
from src.notifications.emitter import NotificationEmitter


class RecordingEmitter(NotificationEmitter):
    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)

    def kinds(self):
        return [event.kind for event in self.events]


class FailingEmitter(NotificationEmitter):
    def notify(self, event):
        raise RuntimeError("notification channel down")


class BookingTestCase(unittest.TestCase):
    """Each test gets its own database file and a clock frozen at NOW"""

    NOW = datetime(2025, 6, 1, 8, 0, 0)

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "bookings.db")
        self.engine = make_engine(f"sqlite:///{db_path}")
        init_db(self.engine)

        self.SessionFactory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        self.db = self.SessionFactory()

        self.now = self.NOW
        self.clock = lambda: self.now
        self.emitter = RecordingEmitter()
        self.locks = StationLockRegistry()
        self.station = self.add_station()

    def tearDown(self):
        self.db.close()
        self.engine.dispose()
        self.tmpdir.cleanup()

    def service(self, db=None, emitter=None):
        return BookingService(
            db or self.db,
            clock=self.clock,
            emitter=emitter or self.emitter,
            locks=self.locks
        )

    def qr_service(self, db=None):
        return QRCodeService(db or self.db, clock=self.clock, emitter=self.emitter)

    def add_station(self, **overrides):
        values = dict(
            name="Central Plaza DC Fast",
            location="Central Plaza",
            connector_type="CCS2",
            power_rating_kw=Decimal("50.00"),
            price_per_kwh=Decimal("0.50"),
            status="active",
            is_available=True,
        )
        values.update(overrides)
        station = ChargingStation(**values)
        self.db.add(station)
        self.db.commit()
        self.db.refresh(station)
        return station

    def make_request(self, start, minutes=60, **overrides):
        """Create request for a slot starting at ``start`` (a datetime or hours after NOW)"""
        if not isinstance(start, datetime):
            start = self.NOW + timedelta(hours=start)

        values = dict(
            user_id="user-1",
            station_id=self.station.id,
            booking_date=start.date(),
            start_time=start,
            end_time=start + timedelta(minutes=minutes),
            vehicle_number="ABC-1234",
            vehicle_type="Sedan",
            estimated_charging_minutes=minutes,
            notes="",
        )
        values.update(overrides)
        return BookingCreateRequest(**values)

    def create_booking(self, start, minutes=60, **overrides):
        return self.service().create_booking(self.make_request(start, minutes, **overrides))
