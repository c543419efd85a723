from typing import List, Optional


class BookingError(Exception):
    """Base for every recoverable booking failure; message is caller-facing"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationRejection(BookingError):
    """A business rule rejected the request (dates, conflicts, station state)"""

    def __init__(self, message: str, conflicts: Optional[List] = None):
        super().__init__(message)
        self.conflicts = conflicts or []


class NotFoundError(BookingError):
    """A booking or station id does not resolve"""


class StateConflictError(BookingError):
    """Operation not permitted in the booking's current lifecycle state"""


class StoreFailure(BookingError):
    """Underlying persistence error"""
