"""Domain error codes for the timetable module."""

from dataclasses import dataclass
from datetime import date
from enum import Enum


class ErrorCode(Enum):
    """Domain error codes."""

    INVALID_RANGE = "INVALID_RANGE"
    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"
    EXCEPTION_NOT_FOUND = "EXCEPTION_NOT_FOUND"
    NOT_RECURRING = "NOT_RECURRING"
    INVALID_OCCURRENCE_DATE = "INVALID_OCCURRENCE_DATE"


class Anomaly(Enum):
    """Data anomalies that are logged and degraded around, never raised."""

    MALFORMED_PATTERN = "MALFORMED_PATTERN"
    DANGLING_EXCEPTION = "DANGLING_EXCEPTION"
    DANGLING_PATTERN = "DANGLING_PATTERN"
    ACADEMY_RESOLUTION_FAILURE = "ACADEMY_RESOLUTION_FAILURE"


@dataclass(frozen=True)
class DomainError(Exception):
    """Base domain error with code and user-safe message."""

    code: ErrorCode
    message: str

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class InvalidRangeError(DomainError):
    """Raised when a query range starts after it ends."""

    def __init__(self, start_date: date, end_date: date) -> None:
        super().__init__(
            code=ErrorCode.INVALID_RANGE,
            message="Could not load schedule for this range.",
        )
        self.start_date = start_date
        self.end_date = end_date


class EventNotFoundError(DomainError):
    """Raised when an event is not found."""

    def __init__(self, event_id: int) -> None:
        super().__init__(
            code=ErrorCode.EVENT_NOT_FOUND,
            message="Event not found",
        )
        self.event_id = event_id


class ExceptionNotFoundError(DomainError):
    """Raised when there is no exception to restore on a date."""

    def __init__(self, event_id: int, exception_date: date) -> None:
        super().__init__(
            code=ErrorCode.EXCEPTION_NOT_FOUND,
            message="No exception to restore for this occurrence",
        )
        self.event_id = event_id
        self.exception_date = exception_date


class NotRecurringError(DomainError):
    """Raised when a per-occurrence operation targets a one-off event."""

    def __init__(self, event_id: int) -> None:
        super().__init__(
            code=ErrorCode.NOT_RECURRING,
            message="Event is not recurring",
        )
        self.event_id = event_id


class InvalidOccurrenceDateError(DomainError):
    """Raised when the event's pattern does not occur on the given date."""

    def __init__(self, event_id: int, occurrence_date: date) -> None:
        super().__init__(
            code=ErrorCode.INVALID_OCCURRENCE_DATE,
            message="Event does not occur on this date",
        )
        self.event_id = event_id
        self.occurrence_date = occurrence_date
