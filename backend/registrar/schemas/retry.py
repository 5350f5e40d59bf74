"""
Pydantic schemas for retry records and the registration rows they produce.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field

from registrar.core.errors import ErrorCode
from registrar.schemas.registration import Identity, OrderResult, PersonalInfo, RegistrationIntent, TransportSelection


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RetryStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self is not RetryStatus.PENDING


class RetryAttempt(BaseModel):
    attempt_number: int = Field(..., ge=1)
    timestamp: datetime = Field(default_factory=utcnow)
    success: bool
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None


class RetryRecord(BaseModel):
    """
    Tracks every attempt made to fulfil one registration intent.

    Attempts are append-only and numbered 1..n without gaps. Status only ever
    leaves PENDING; a terminal record is never reopened.
    """

    id: str
    user_id: str
    intent: RegistrationIntent
    attempts: list[RetryAttempt] = Field(default_factory=list)
    status: RetryStatus = RetryStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    final_order_code: Optional[str] = None

    @property
    def last_attempt(self) -> Optional[RetryAttempt]:
        return self.attempts[-1] if self.attempts else None

    @property
    def last_error(self) -> Optional[str]:
        attempt = self.last_attempt
        return attempt.error if attempt else None

    @property
    def last_error_code(self) -> Optional[ErrorCode]:
        attempt = self.last_attempt
        return attempt.error_code if attempt else None


class RegistrationStatus(str, Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class RegistrationRecord(BaseModel):
    """A registration the ticketing backend has accepted. Keyed by order code."""

    id: str
    user_id: str
    event_slug: str
    identity: Identity
    personal_info: PersonalInfo
    transport: Optional[TransportSelection] = None
    order_code: str
    retry_id: str
    status: RegistrationStatus = RegistrationStatus.CONFIRMED
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Submission(BaseModel):
    retry_id: str
    status: RetryStatus
    result: Optional[OrderResult] = None


class RetryStatusResponse(BaseModel):
    retry_id: str
    user_id: str
    event_slug: str
    status: RetryStatus
    attempts: list[RetryAttempt]
    order_code: Optional[str] = None
    message: Optional[str] = None
    error_code: Optional[ErrorCode] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: RetryRecord) -> "RetryStatusResponse":
        return cls(
            retry_id=record.id,
            user_id=record.user_id,
            event_slug=record.intent.event_slug,
            status=record.status,
            attempts=record.attempts,
            order_code=record.final_order_code,
            message=record.last_error if record.status is not RetryStatus.SUCCESS else None,
            error_code=record.last_error_code if record.status is not RetryStatus.SUCCESS else None,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
