"""
Error taxonomy shared by the ticketing client and the orchestrators.

Every failure that leaves the ticketing client is a TicketingError carrying
one of the ErrorCode values below. The retry orchestrator decides whether to
try again purely from that code.
"""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    BAD_REQUEST = "BAD_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMITED = "RATE_LIMITED"
    SERVER_ERROR = "SERVER_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    EVENT_NOT_AVAILABLE = "EVENT_NOT_AVAILABLE"
    ITEM_NOT_FOUND = "ITEM_NOT_FOUND"
    ITEM_NOT_AVAILABLE = "ITEM_NOT_AVAILABLE"
    ALREADY_REGISTERED = "ALREADY_REGISTERED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    RETRY_ATTEMPT_ERROR = "RETRY_ATTEMPT_ERROR"
    CREATE_REGISTRATION_ERROR = "CREATE_REGISTRATION_ERROR"


ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.BAD_REQUEST: "The ticketing service rejected the request",
    ErrorCode.UNAUTHORIZED: "Ticketing API authentication failed, check the API token",
    ErrorCode.FORBIDDEN: "Not permitted to perform this operation",
    ErrorCode.NOT_FOUND: "The requested resource was not found",
    ErrorCode.RATE_LIMITED: "Too many requests to the ticketing service, try again later",
    ErrorCode.SERVER_ERROR: "The ticketing service is temporarily unavailable",
    ErrorCode.NETWORK_ERROR: "Could not reach the ticketing service",
    ErrorCode.TIMEOUT_ERROR: "The ticketing service did not respond in time",
    ErrorCode.EVENT_NOT_AVAILABLE: "The event is not open for registration",
    ErrorCode.ITEM_NOT_FOUND: "No registration item matches this identity",
    ErrorCode.ITEM_NOT_AVAILABLE: "The registration item is fully booked",
    ErrorCode.ALREADY_REGISTERED: "Already registered for this event",
    ErrorCode.VALIDATION_ERROR: "The registration data is invalid",
    ErrorCode.EXTERNAL_SERVICE_ERROR: "The ticketing service returned an unexpected response",
    ErrorCode.RETRY_ATTEMPT_ERROR: "The registration attempt failed unexpectedly",
    ErrorCode.CREATE_REGISTRATION_ERROR: "Failed to create registration",
}


class TicketingError(Exception):
    """A classified failure talking to (or reasoning about) the ticketing backend."""

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = ErrorCode(code)
        self.status_code = status_code

    @property
    def is_client_error(self) -> bool:
        return self.status_code is not None and 400 <= self.status_code < 500

    def __repr__(self) -> str:
        return f"<TicketingError(code={self.code.value}, status={self.status_code}, message={self.message!r})>"


class RetryRecordNotFound(LookupError):
    def __init__(self, retry_id: str) -> None:
        super().__init__(f"Retry record not found: {retry_id}")
        self.retry_id = retry_id


class ConcurrentUpdateError(RuntimeError):
    """Raised when an optimistic update keeps losing to concurrent writers."""
