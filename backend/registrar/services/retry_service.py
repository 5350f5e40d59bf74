"""
Retry orchestrator: durable, resumable registration attempts.

RETRY STRATEGY: Exponential Backoff over a Persisted Record
===========================================================

Lifecycle of a retry record:

    pending --success--> success
       |----exhausted / non-retryable--> failed
       |----abandon / expiry cleanup---> abandoned

  - Attempt #1 runs inline with the submission; later attempts run on the
    RetryScheduler after `base * multiplier^(n-1)` ms, capped at max_delay
  - Each attempt result is committed with the store's atomic
    read-modify-write. The commit re-checks the status, so an attempt that
    fires after the record went terminal changes nothing
  - A success that arrives after the record was abandoned leaves an order
    in the ticketing backend that no local record points to; it is
    cancelled upstream right away. So is a success whose commit keeps
    losing to concurrent writers; that record stays pending and is retried
  - The confirmed registration row is written only after the backend
    accepted the order

Retry policy (error code -> try again?):
  - Never: ALREADY_REGISTERED, EVENT_NOT_AVAILABLE, ITEM_NOT_FOUND,
    VALIDATION_ERROR, UNAUTHORIZED, FORBIDDEN
  - Always: NETWORK_ERROR, SERVER_ERROR, TIMEOUT_ERROR, ITEM_NOT_AVAILABLE,
    EXTERNAL_SERVICE_ERROR
  - Anything else, or no code at all: try again
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from registrar.core.config import Settings
from registrar.core.errors import ERROR_MESSAGES, ConcurrentUpdateError, ErrorCode, RetryRecordNotFound, TicketingError
from registrar.core.logging import get_logger
from registrar.core.metrics import (
    record_reconciliation,
    record_registration_attempt,
    record_terminal_transition,
)
from registrar.schemas.registration import OrderFailure, OrderResult, OrderSuccess, RegistrationIntent
from registrar.schemas.retry import (
    RegistrationRecord,
    RetryAttempt,
    RetryRecord,
    RetryStatus,
    Submission,
    utcnow,
)
from registrar.services.interfaces.record_store import DuplicateRecordError, RecordStore
from registrar.services.registration_service import RegistrationOrchestrator
from registrar.services.retry_scheduler import RetryScheduler

logger = get_logger(__name__)

RETRY_KIND = "retry"
REGISTRATION_KIND = "registration"

NON_RETRYABLE_CODES = frozenset({
    ErrorCode.ALREADY_REGISTERED,
    ErrorCode.EVENT_NOT_AVAILABLE,
    ErrorCode.ITEM_NOT_FOUND,
    ErrorCode.VALIDATION_ERROR,
    ErrorCode.UNAUTHORIZED,
    ErrorCode.FORBIDDEN,
})

RETRYABLE_CODES = frozenset({
    ErrorCode.NETWORK_ERROR,
    ErrorCode.SERVER_ERROR,
    ErrorCode.TIMEOUT_ERROR,
    ErrorCode.ITEM_NOT_AVAILABLE,
    ErrorCode.EXTERNAL_SERVICE_ERROR,
})


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    backoff_multiplier: float = 2.0
    max_age_hours: int = 24

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryConfig":
        return cls(
            max_retries=settings.RETRY_MAX_RETRIES,
            base_delay_ms=settings.RETRY_BASE_DELAY_MS,
            max_delay_ms=settings.RETRY_MAX_DELAY_MS,
            backoff_multiplier=settings.RETRY_BACKOFF_MULTIPLIER,
            max_age_hours=settings.RETRY_MAX_AGE_HOURS,
        )


def should_retry(error_code: Optional[ErrorCode]) -> bool:
    if error_code in NON_RETRYABLE_CODES:
        return False
    if error_code is not None and error_code not in RETRYABLE_CODES:
        logger.info("retry_policy_default", error_code=ErrorCode(error_code).value)
    return True


def _new_retry_id() -> str:
    return f"retry_{uuid.uuid4().hex}"


class RetryOrchestrator:
    def __init__(
        self,
        registration: RegistrationOrchestrator,
        store: RecordStore,
        config: Optional[RetryConfig] = None,
        scheduler: Optional[RetryScheduler] = None,
        *,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = _new_retry_id,
    ):
        self.registration = registration
        self.store = store
        self.config = config or RetryConfig()
        self.scheduler = scheduler or RetryScheduler()
        self.clock = clock
        self._new_id = id_factory

    def calculate_delay(self, attempt_number: int) -> int:
        """Milliseconds to wait after attempt `attempt_number` failed."""
        delay = self.config.base_delay_ms * self.config.backoff_multiplier ** (attempt_number - 1)
        return int(min(delay, self.config.max_delay_ms))

    def should_retry(self, error_code: Optional[ErrorCode]) -> bool:
        return should_retry(error_code)

    async def submit(self, user_id: str, intent: RegistrationIntent) -> Submission:
        now = self.clock()
        record = RetryRecord(id=self._new_id(), user_id=user_id, intent=intent, created_at=now, updated_at=now)
        await self.store.create_record(RETRY_KIND, record.model_dump(mode="json"))
        logger.info(
            "retry_record_created",
            retry_id=record.id,
            user_id=user_id,
            event_slug=intent.event_slug,
        )

        result = await self.attempt(record.id)
        stored = await self.get_retry_record(record.id)
        status = stored.status if stored is not None else RetryStatus.PENDING
        return Submission(
            retry_id=record.id,
            status=status,
            result=result if status.is_terminal else None,
        )

    async def attempt(self, retry_id: str) -> Optional[OrderResult]:
        """
        Run one registration attempt for a record and commit its outcome.

        Returns None when the record was already terminal, either before the
        attempt started or by the time its result was committed, and when
        the commit could not be applied.

        Raises:
            RetryRecordNotFound: no record with this id
        """
        record = await self.get_retry_record(retry_id)
        if record is None:
            raise RetryRecordNotFound(retry_id)
        if record.status.is_terminal:
            logger.info("retry_attempt_skipped", retry_id=retry_id, status=record.status.value)
            return None

        attempt_number = len(record.attempts) + 1
        logger.info(
            "retry_attempt_started",
            retry_id=retry_id,
            attempt=attempt_number,
            user_id=record.user_id,
            event_slug=record.intent.event_slug,
        )

        try:
            result = await self.registration.create_registration(record.intent)
        except Exception as exc:
            logger.exception("retry_attempt_error", retry_id=retry_id, attempt=attempt_number)
            result = OrderFailure(
                message=str(exc) or ERROR_MESSAGES[ErrorCode.RETRY_ATTEMPT_ERROR],
                error_code=ErrorCode.RETRY_ATTEMPT_ERROR,
            )

        if isinstance(result, OrderSuccess):
            record_registration_attempt(success=True)
        else:
            record_registration_attempt(success=False, error_code=result.error_code.value)

        try:
            committed = await self._commit_attempt(retry_id, result)
        except ConcurrentUpdateError:
            # Nothing was recorded for this attempt; an order it created must not outlive it
            logger.error(
                "retry_commit_failed",
                retry_id=retry_id,
                attempt=attempt_number,
                order_code=result.order_code if isinstance(result, OrderSuccess) else None,
            )
            if isinstance(result, OrderSuccess):
                await self._reconcile_orphan(record, result, reason="commit_conflict")
            self.scheduler.schedule(retry_id, self.calculate_delay(attempt_number) / 1000, self.attempt)
            return None

        if committed is None:
            if isinstance(result, OrderSuccess):
                await self._reconcile_orphan(record, result, reason="record_terminal")
            return None

        if committed.status is RetryStatus.SUCCESS:
            await self._confirm_registration(committed)
        elif committed.status is RetryStatus.FAILED:
            record_terminal_transition(RetryStatus.FAILED.value)
            logger.warning(
                "retry_failed",
                retry_id=retry_id,
                attempts=len(committed.attempts),
                user_id=committed.user_id,
                error=committed.last_error,
                error_code=committed.last_error_code.value if committed.last_error_code else None,
            )
        else:
            number = len(committed.attempts)
            delay_ms = self.calculate_delay(number)
            logger.info("retry_scheduled", retry_id=retry_id, next_attempt=number + 1, delay_ms=delay_ms)
            self.scheduler.schedule(retry_id, delay_ms / 1000, self.attempt)

        return result

    async def _commit_attempt(self, retry_id: str, result: OrderResult) -> Optional[RetryRecord]:
        """Append the attempt and settle the status; None if the record went terminal meanwhile."""
        success = isinstance(result, OrderSuccess)
        error_code = None if success else result.error_code
        retryable = success or should_retry(error_code)
        outcome: dict = {}

        def mutate(data: dict) -> Optional[dict]:
            outcome.clear()
            current = RetryRecord.model_validate(data)
            if current.status.is_terminal:
                return None

            now = self.clock()
            number = len(current.attempts) + 1
            current.attempts.append(
                RetryAttempt(
                    attempt_number=number,
                    timestamp=now,
                    success=success,
                    error=None if success else result.message,
                    error_code=error_code,
                )
            )
            if success:
                current.status = RetryStatus.SUCCESS
                current.final_order_code = result.order_code
            elif not retryable or number >= self.config.max_retries:
                current.status = RetryStatus.FAILED
            current.updated_at = now
            outcome["record"] = current
            return current.model_dump(mode="json")

        stored = await self.store.update_record(RETRY_KIND, retry_id, mutate)
        if stored is None:
            logger.warning("retry_record_vanished", retry_id=retry_id)
            return None
        if "record" not in outcome:
            logger.info("retry_result_discarded", retry_id=retry_id, status=stored["status"])
            return None
        return outcome["record"]

    async def _confirm_registration(self, record: RetryRecord) -> None:
        record_terminal_transition(RetryStatus.SUCCESS.value)
        intent = record.intent
        registration = RegistrationRecord(
            id=record.final_order_code,
            user_id=record.user_id,
            event_slug=intent.event_slug,
            identity=intent.identity,
            personal_info=intent.personal_info,
            transport=intent.transport,
            order_code=record.final_order_code,
            retry_id=record.id,
        )
        try:
            await self.store.create_record(REGISTRATION_KIND, registration.model_dump(mode="json"))
        except DuplicateRecordError:
            logger.warning("registration_already_recorded", order_code=record.final_order_code)
        logger.info(
            "retry_succeeded",
            retry_id=record.id,
            attempts=len(record.attempts),
            user_id=record.user_id,
            order_code=record.final_order_code,
        )

    async def _reconcile_orphan(self, record: RetryRecord, result: OrderSuccess, reason: str) -> None:
        event_slug = record.intent.event_slug
        logger.warning(
            "orphan_order_detected",
            retry_id=record.id,
            event_slug=event_slug,
            order_code=result.order_code,
            reason=reason,
        )
        try:
            await self.registration.cancel_registration(event_slug, result.order_code)
        except TicketingError as exc:
            record_reconciliation(cancelled=False)
            logger.error(
                "orphan_order_cancel_failed",
                retry_id=record.id,
                order_code=result.order_code,
                error_code=exc.code.value,
                message=exc.message,
            )
            return
        record_reconciliation(cancelled=True)
        logger.info("orphan_order_cancelled", retry_id=record.id, order_code=result.order_code)

    async def abandon_retry(self, retry_id: str) -> bool:
        """Mark a record abandoned. False only if the id is unknown."""
        self.scheduler.cancel(retry_id)
        transitioned = await self._mark_abandoned(retry_id)
        if transitioned is None:
            return False
        if transitioned:
            logger.info("retry_abandoned", retry_id=retry_id)
        return True

    async def cleanup_expired_retries(self, max_age_hours: Optional[float] = None) -> int:
        """Abandon pending records created more than `max_age_hours` ago."""
        hours = self.config.max_age_hours if max_age_hours is None else max_age_hours
        cutoff = self.clock() - timedelta(hours=hours)

        cleaned = 0
        for data in await self.store.query_by_status(RETRY_KIND, [RetryStatus.PENDING.value]):
            record = RetryRecord.model_validate(data)
            if record.created_at >= cutoff:
                continue
            self.scheduler.cancel(record.id)
            if await self._mark_abandoned(record.id):
                cleaned += 1

        if cleaned:
            logger.info("expired_retries_cleaned", cleaned_count=cleaned, max_age_hours=hours)
        return cleaned

    async def _mark_abandoned(self, retry_id: str) -> Optional[bool]:
        """True if this call moved the record to abandoned, False if it was already terminal."""
        transitioned = False

        def mutate(data: dict) -> Optional[dict]:
            nonlocal transitioned
            transitioned = False
            current = RetryRecord.model_validate(data)
            if current.status.is_terminal:
                return None
            current.status = RetryStatus.ABANDONED
            current.updated_at = self.clock()
            transitioned = True
            return current.model_dump(mode="json")

        stored = await self.store.update_record(RETRY_KIND, retry_id, mutate)
        if stored is None:
            return None
        if transitioned:
            record_terminal_transition(RetryStatus.ABANDONED.value)
        return transitioned

    async def resume_pending(self) -> int:
        """Reschedule every pending record, e.g. after a restart."""
        resumed = 0
        for data in await self.store.query_by_status(RETRY_KIND, [RetryStatus.PENDING.value]):
            record = RetryRecord.model_validate(data)
            if self.scheduler.is_scheduled(record.id):
                continue
            done = len(record.attempts)
            delay_ms = self.calculate_delay(done) if done else 0
            self.scheduler.schedule(record.id, delay_ms / 1000, self.attempt)
            resumed += 1
        if resumed:
            logger.info("pending_retries_resumed", count=resumed)
        return resumed

    async def get_retry_record(self, retry_id: str) -> Optional[RetryRecord]:
        data = await self.store.get_record(RETRY_KIND, retry_id)
        return RetryRecord.model_validate(data) if data is not None else None

    async def get_user_retry_records(self, user_id: str) -> list[RetryRecord]:
        records = [RetryRecord.model_validate(data) for data in await self.store.query_by_user(RETRY_KIND, user_id)]
        return sorted(records, key=lambda record: record.created_at)

    async def shutdown(self, drain_timeout: float = 30.0) -> None:
        await self.scheduler.shutdown(drain_timeout)
