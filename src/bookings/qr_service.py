from typing import Any, Dict, List, Optional
from datetime import datetime, timedelta
from io import BytesIO
import base64
import binascii
import hashlib
import hmac
import json
import logging

import qrcode
from qrcode import constants
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.config import settings
from src.models import Booking
from src.bookings.clock import Clock, utc_now
from src.bookings.exceptions import (
    BookingError, NotFoundError, StateConflictError, StoreFailure, ValidationRejection
)
from src.bookings.schemas import BookingStatus, QRBulkResult
from src.notifications.emitter import NotificationEmitter, LoggingNotificationEmitter, emit_safely
from src.notifications.schemas import BookingEvent, BookingEventKind

logger = logging.getLogger(__name__)

TOKEN_VERSION = "1.0"


class QRCodeRenderer:
    """Renders a token payload to PNG bytes"""

    def __init__(self, box_size: int = 10, border: int = 4, error_correction=constants.ERROR_CORRECT_Q):
        self.box_size = box_size
        self.border = border
        self.error_correction = error_correction

    def render(self, data: str) -> bytes:
        qr = qrcode.QRCode(
            version=None,
            error_correction=self.error_correction,
            box_size=self.box_size,
            border=self.border,
        )
        qr.add_data(data)
        qr.make(fit=True)

        qr_image = qr.make_image(fill_color="black", back_color="white")

        buffer = BytesIO()
        qr_image.save(buffer, format="PNG")
        return buffer.getvalue()


class QRCodeService:
    """Issues, validates and invalidates check-in QR tokens for approved bookings"""

    def __init__(
        self,
        db: Session,
        clock: Clock = utc_now,
        emitter: Optional[NotificationEmitter] = None,
        renderer: Optional[QRCodeRenderer] = None
    ):
        self.db = db
        self.clock = clock
        self.emitter = emitter or LoggingNotificationEmitter()
        self.renderer = renderer or QRCodeRenderer()

    def issue(self, booking_id: str) -> str:
        """Return the booking's token, generating it on first call"""

        booking = self._get_booking(booking_id)

        if BookingStatus(booking.status) != BookingStatus.APPROVED:
            raise StateConflictError("QR code can only be generated for approved bookings")

        if booking.qr_code:
            return booking.qr_code

        now = self.clock()
        token = self.generate_token(booking, now)

        try:
            # Only the first issuer writes; a concurrent issuer re-reads the winner's token
            result = self.db.execute(
                update(Booking)
                .where(Booking.id == booking_id, Booking.qr_code == "")
                .values(qr_code=token, qr_code_generated_at=now, modified_at=now)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Error generating QR code for booking %s", booking_id)
            raise StoreFailure("An error occurred while generating the QR code") from exc

        self.db.refresh(booking)
        if result.rowcount == 0:
            return booking.qr_code

        logger.info("QR code generated for booking %s", booking_id)
        self._emit(BookingEvent(
            kind=BookingEventKind.QR_CODE_GENERATED,
            booking_id=booking.id,
            user_id=booking.user_id,
            station_id=booking.station_id,
            message="Your booking QR code is ready"
        ))
        return booking.qr_code

    def issue_many(self, booking_ids: List[str]) -> List[QRBulkResult]:
        results = []
        for booking_id in booking_ids:
            try:
                token = self.issue(booking_id)
                results.append(QRBulkResult(
                    booking_id=booking_id, success=True, message="QR code generated successfully", qr_code=token
                ))
            except BookingError as e:
                results.append(QRBulkResult(booking_id=booking_id, success=False, message=e.message))
        return results

    def get_token(self, booking_id: str) -> Booking:
        booking = self._get_booking(booking_id)
        if not booking.qr_code:
            raise NotFoundError("QR code not found for this booking")
        return booking

    def render_image(self, booking_id: str) -> bytes:
        booking = self.get_token(booking_id)
        return self.renderer.render(booking.qr_code)

    def validate(self, token: str) -> Booking:
        """Check a scanned token against the booking's state and the check-in window"""

        payload = self.parse_token(token)
        if payload is None:
            raise ValidationRejection("Invalid QR code format")

        booking = self.db.query(Booking).filter(Booking.id == payload["bid"]).first()
        if not booking:
            raise NotFoundError("Booking not found")

        if not hmac.compare_digest(str(payload.get("sig", "")).encode(), self.sign(booking).encode()):
            raise ValidationRejection("QR code signature does not match booking")

        status = BookingStatus(booking.status)
        if status != BookingStatus.APPROVED:
            raise StateConflictError(f"Booking is not approved. Current status: {status.value}")

        # Only the token currently stored on the booking checks in
        if not booking.qr_code or not hmac.compare_digest(token.strip().encode(), booking.qr_code.encode()):
            raise ValidationRejection("QR code has been invalidated")

        now = self.clock()
        grace = timedelta(minutes=settings.QR_GRACE_MINUTES)

        if now < booking.start_time - grace:
            raise ValidationRejection("Booking time has not started yet")

        if now > booking.end_time + grace:
            raise ValidationRejection("Booking time has expired")

        return booking

    def invalidate(self, booking_id: str, commit: bool = True) -> bool:
        """Clear the token; returns False when there was nothing to clear"""

        booking = self._get_booking(booking_id)
        if not booking.qr_code and booking.qr_code_generated_at is None:
            return False

        booking.qr_code = ""
        booking.qr_code_generated_at = None
        booking.modified_at = self.clock()

        if commit:
            try:
                self.db.commit()
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.exception("Error invalidating QR code for booking %s", booking_id)
                raise StoreFailure("Error invalidating QR code") from exc

        logger.info("QR code invalidated for booking %s", booking_id)
        return True

    def generate_token(self, booking: Booking, issued_at: datetime) -> str:
        """Build the base64 JSON payload carried by the QR image"""

        qr_data = {
            "v": TOKEN_VERSION,
            "bid": booking.id,
            "uid": booking.user_id,
            "sid": booking.station_id,
            "start": booking.start_time.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "end": booking.end_time.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "veh": booking.vehicle_number,
            "iat": issued_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "sig": self.sign(booking)
        }

        json_data = json.dumps(qr_data, separators=(',', ':'))
        return base64.b64encode(json_data.encode()).decode()

    @staticmethod
    def parse_token(token: str) -> Optional[Dict[str, Any]]:
        """Decode a token; None when it is not one of ours"""
        try:
            decoded = base64.b64decode(token.strip(), validate=True)
            payload = json.loads(decoded.decode("utf-8"))
        except (binascii.Error, ValueError, UnicodeDecodeError):
            return None

        if not isinstance(payload, dict) or not isinstance(payload.get("bid"), str) or not payload["bid"]:
            return None
        return payload

    @staticmethod
    def sign(booking: Booking) -> str:
        canonical = (
            f"{booking.id}:{booking.user_id}:{booking.station_id}:"
            f"{booking.start_time.strftime('%Y%m%d%H%M%S')}"
        )
        digest = hmac.new(settings.SECRET_KEY.encode(), canonical.encode(), hashlib.sha256).digest()
        return base64.b64encode(digest).decode()[:settings.QR_SIGNATURE_LENGTH]

    def _get_booking(self, booking_id: str) -> Booking:
        booking = self.db.query(Booking).filter(Booking.id == booking_id).first()
        if not booking:
            raise NotFoundError("Booking not found")
        return booking

    def _emit(self, event: BookingEvent):
        emit_safely(self.emitter, event)
