"""
Application-facing registration surface.

Composes the registration and retry orchestrators into the calls the HTTP
routes (or any other front end) make. Holds no state of its own.
"""

from typing import Optional

from registrar.core.errors import RetryRecordNotFound
from registrar.core.logging import get_logger
from registrar.schemas.registration import CancellationResult, EventAvailability, RegistrationIntent
from registrar.schemas.retry import (
    RegistrationRecord,
    RegistrationStatus,
    RetryStatusResponse,
    Submission,
    utcnow,
)
from registrar.services.registration_service import RegistrationOrchestrator
from registrar.services.retry_service import REGISTRATION_KIND, RetryOrchestrator

logger = get_logger(__name__)


class RegistrationApi:
    def __init__(self, registration: RegistrationOrchestrator, retries: RetryOrchestrator):
        self.registration = registration
        self.retries = retries

    async def submit_registration(self, user_id: str, intent: RegistrationIntent) -> Submission:
        submission = await self.retries.submit(user_id, intent)
        logger.info(
            "registration_submitted",
            retry_id=submission.retry_id,
            user_id=user_id,
            event_slug=intent.event_slug,
            status=submission.status.value,
        )
        return submission

    async def get_retry_status(self, retry_id: str) -> RetryStatusResponse:
        record = await self.retries.get_retry_record(retry_id)
        if record is None:
            raise RetryRecordNotFound(retry_id)
        return RetryStatusResponse.from_record(record)

    async def get_user_registration_attempts(self, user_id: str) -> list[RetryStatusResponse]:
        records = await self.retries.get_user_retry_records(user_id)
        return [RetryStatusResponse.from_record(record) for record in records]

    async def cancel_registration(self, event_slug: str, order_code: str) -> CancellationResult:
        """Cancel the order upstream, then mark the local registration row cancelled if there is one."""
        order = await self.registration.cancel_registration(event_slug, order_code)

        def mutate(data: dict) -> Optional[dict]:
            row = RegistrationRecord.model_validate(data)
            if row.event_slug != event_slug or row.status is RegistrationStatus.CANCELLED:
                return None
            row.status = RegistrationStatus.CANCELLED
            row.updated_at = utcnow()
            return row.model_dump(mode="json")

        stored = await self.retries.store.update_record(REGISTRATION_KIND, order_code, mutate)
        updated = stored is not None and stored.get("status") == RegistrationStatus.CANCELLED.value
        if stored is None:
            logger.info("registration_row_missing", event_slug=event_slug, order_code=order_code)

        return CancellationResult(
            event_slug=event_slug,
            order_code=order.code,
            external_status=order.status.label,
            registration_updated=updated,
        )

    async def check_availability(self, event_slug: str) -> EventAvailability:
        return await self.registration.check_event_availability(event_slug)

    async def abandon_retry(self, retry_id: str) -> RetryStatusResponse:
        if not await self.retries.abandon_retry(retry_id):
            raise RetryRecordNotFound(retry_id)
        return await self.get_retry_status(retry_id)

    async def cleanup_expired_retries(self, max_age_hours: Optional[float] = None) -> int:
        return await self.retries.cleanup_expired_retries(max_age_hours)

    async def get_health(self) -> dict:
        ticketing = await self.registration.get_health_status()
        return {
            "ticketing": ticketing.model_dump(),
            "cache": self.registration.get_cache_stats(),
            "scheduled_retries": self.retries.scheduler.pending_count,
        }
