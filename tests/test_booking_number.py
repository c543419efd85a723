"""
Tests for booking number generation.
"""

import re
import unittest
from datetime import datetime, timedelta

from src.models import Booking
from src.bookings.booking_number import BookingNumberGenerator

from tests.support import BookingTestCase

BOOKING_NUMBER = re.compile(r"^BK-\d{8}-\d{4}$")


class TestBookingNumberGenerator(BookingTestCase):

    def generator(self):
        return BookingNumberGenerator(self.db, self.clock)

    def insert_raw_booking(self, booking_number, created_at):
        start = self.NOW + timedelta(days=3)
        self.db.add(Booking(
            booking_number=booking_number,
            user_id="legacy",
            station_id=self.station.id,
            booking_date=start.date(),
            start_time=start,
            end_time=start + timedelta(hours=1),
            vehicle_number="OLD-1",
            estimated_charging_minutes=60,
            created_at=created_at,
        ))
        self.db.commit()

    def test_sequential_numbers(self):
        numbers = [self.create_booking(hour).booking_number for hour in (2, 3, 4)]

        self.assertEqual(numbers, ["BK-20250601-0001", "BK-20250601-0002", "BK-20250601-0003"])
        for number in numbers:
            self.assertRegex(number, BOOKING_NUMBER)

    def test_sequence_restarts_each_day(self):
        self.create_booking(2)
        self.now = datetime(2025, 6, 2, 8, 0)

        booking = self.create_booking(datetime(2025, 6, 2, 10, 0))
        self.assertEqual(booking.booking_number, "BK-20250602-0001")

    def test_counter_starts_after_existing_bookings(self):
        self.insert_raw_booking("BK-20250601-0001", created_at=self.NOW)
        self.assertEqual(self.generator().generate(), "BK-20250601-0002")

    def test_skips_number_already_taken(self):
        # Taken number recorded under another day, so the counter does not see it
        self.insert_raw_booking("BK-20250601-0001", created_at=self.NOW - timedelta(days=1))
        self.assertEqual(self.generator().generate(), "BK-20250601-0002")

    def test_fallback_format(self):
        self.assertEqual(self.generator().fallback(self.NOW), "BK-20250601080000")


if __name__ == "__main__":
    unittest.main()
