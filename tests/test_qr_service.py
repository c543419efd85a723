"""
Tests for QR code issuance, check-in validation and invalidation.
"""

import base64
import json
import unittest
from datetime import datetime, timedelta

from src.bookings.exceptions import NotFoundError, StateConflictError, ValidationRejection
from src.bookings.qr_service import QRCodeService
from src.notifications.schemas import BookingEventKind

from tests.support import BookingTestCase

START = datetime(2025, 6, 1, 10, 0)
END = datetime(2025, 6, 1, 11, 0)


def rewrite_token(token, **changes):
    payload = json.loads(base64.b64decode(token))
    payload.update(changes)
    return base64.b64encode(json.dumps(payload).encode()).decode()


class TestQRIssuance(BookingTestCase):

    def test_pending_booking_cannot_get_qr(self):
        booking = self.create_booking(START)

        with self.assertRaises(StateConflictError) as ctx:
            self.qr_service().issue(booking.id)
        self.assertEqual(ctx.exception.message, "QR code can only be generated for approved bookings")

    def test_unknown_booking(self):
        with self.assertRaises(NotFoundError):
            self.qr_service().issue("missing")

    def test_issue_is_idempotent(self):
        booking = self.create_booking(START)
        approved = self.service().approve_booking(booking.id, "operator-1")
        token = approved.qr_code

        self.now = self.NOW + timedelta(minutes=10)
        self.assertEqual(self.qr_service().issue(booking.id), token)
        self.assertEqual(self.qr_service().issue(booking.id), token)
        self.assertEqual(self.emitter.kinds().count(BookingEventKind.QR_CODE_GENERATED), 1)

    def test_token_carries_booking_reference(self):
        booking = self.create_booking(START)
        token = self.service().approve_booking(booking.id, "operator-1").qr_code

        payload = QRCodeService.parse_token(token)
        self.assertEqual(payload["bid"], booking.id)
        self.assertEqual(payload["uid"], booking.user_id)
        self.assertEqual(payload["sid"], booking.station_id)
        self.assertEqual(payload["start"], "2025-06-01T10:00:00Z")

    def test_render_image(self):
        booking = self.create_booking(START)
        self.service().approve_booking(booking.id, "operator-1")

        image = self.qr_service().render_image(booking.id)
        self.assertTrue(image.startswith(b"\x89PNG"))

    def test_get_token_without_qr(self):
        booking = self.create_booking(START)
        with self.assertRaises(NotFoundError) as ctx:
            self.qr_service().get_token(booking.id)
        self.assertEqual(ctx.exception.message, "QR code not found for this booking")

    def test_issue_many_reports_each_booking(self):
        approved = self.create_booking(START)
        pending = self.create_booking(datetime(2025, 6, 1, 12, 0))
        self.service().approve_booking(approved.id, "operator-1")

        results = self.qr_service().issue_many([approved.id, pending.id, "missing"])

        self.assertEqual([r.success for r in results], [True, False, False])
        self.assertEqual(results[1].message, "QR code can only be generated for approved bookings")
        self.assertEqual(results[2].message, "Booking not found")


class TestQRValidation(BookingTestCase):

    def setUp(self):
        super().setUp()
        booking = self.create_booking(START)
        self.booking_id = booking.id
        self.token = self.service().approve_booking(booking.id, "operator-1").qr_code

    def validate(self, token=None):
        return self.qr_service().validate(token or self.token)

    def test_too_early(self):
        self.now = START - timedelta(minutes=20)
        with self.assertRaises(ValidationRejection) as ctx:
            self.validate()
        self.assertEqual(ctx.exception.message, "Booking time has not started yet")

    def test_grace_period_boundaries(self):
        for moment in (START - timedelta(minutes=15), START, END, END + timedelta(minutes=15)):
            self.now = moment
            self.assertEqual(self.validate().id, self.booking_id)

    def test_expired(self):
        self.now = END + timedelta(minutes=16)
        with self.assertRaises(ValidationRejection) as ctx:
            self.validate()
        self.assertEqual(ctx.exception.message, "Booking time has expired")

    def test_cancelled_booking_token_is_refused(self):
        self.service().cancel_booking(self.booking_id, "user-1", "Change of plans")
        self.now = START

        with self.assertRaises(StateConflictError) as ctx:
            self.validate()
        self.assertEqual(ctx.exception.message, "Booking is not approved. Current status: cancelled")

    def test_malformed_token(self):
        for token in ("not a token", base64.b64encode(b"[1, 2]").decode(), base64.b64encode(b"{}").decode()):
            with self.assertRaises(ValidationRejection) as ctx:
                self.validate(token)
            self.assertEqual(ctx.exception.message, "Invalid QR code format")

    def test_unknown_booking(self):
        self.now = START
        with self.assertRaises(NotFoundError):
            self.validate(rewrite_token(self.token, bid="missing"))

    def test_tampered_signature(self):
        self.now = START
        with self.assertRaises(ValidationRejection) as ctx:
            self.validate(rewrite_token(self.token, sig="AAAAAAAAAAAAAAAA"))
        self.assertEqual(ctx.exception.message, "QR code signature does not match booking")


class TestQRInvalidation(BookingTestCase):

    def test_invalidate(self):
        booking = self.create_booking(START)
        self.service().approve_booking(booking.id, "operator-1")

        self.assertTrue(self.qr_service().invalidate(booking.id))
        self.assertFalse(self.qr_service().invalidate(booking.id))

        with self.assertRaises(NotFoundError):
            self.qr_service().get_token(booking.id)

    def test_reissue_after_invalidation(self):
        booking = self.create_booking(START)
        self.service().approve_booking(booking.id, "operator-1")
        self.qr_service().invalidate(booking.id)

        token = self.qr_service().issue(booking.id)
        self.assertTrue(token)

    def test_invalidated_token_no_longer_checks_in(self):
        booking = self.create_booking(START)
        token = self.service().approve_booking(booking.id, "operator-1").qr_code
        self.qr_service().invalidate(booking.id)
        self.now = START

        with self.assertRaises(ValidationRejection) as ctx:
            self.qr_service().validate(token)
        self.assertEqual(ctx.exception.message, "QR code has been invalidated")

    def test_only_reissued_token_checks_in(self):
        booking = self.create_booking(START)
        old_token = self.service().approve_booking(booking.id, "operator-1").qr_code
        self.qr_service().invalidate(booking.id)

        self.now = self.NOW + timedelta(minutes=5)
        new_token = self.qr_service().issue(booking.id)
        self.assertNotEqual(new_token, old_token)

        self.now = START
        with self.assertRaises(ValidationRejection) as ctx:
            self.qr_service().validate(old_token)
        self.assertEqual(ctx.exception.message, "QR code has been invalidated")
        self.assertEqual(self.qr_service().validate(new_token).id, booking.id)


if __name__ == "__main__":
    unittest.main()
