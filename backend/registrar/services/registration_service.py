"""
Registration orchestrator: one validated registration attempt per call.

Each call re-reads live state from the ticketing service (through its
cache) and short-circuits on the first failed check:

  1. Event presale window is open
  2. An item matches the registrant's identity
  3. That item still has capacity
  4. The order is accepted by the backend

Nothing is persisted here. The retry orchestrator decides what to record
once it knows whether the attempt succeeded.
"""

import asyncio
from datetime import datetime, timezone
from typing import Callable, Optional

from registrar.core.errors import ERROR_MESSAGES, ErrorCode, TicketingError
from registrar.core.logging import get_logger
from registrar.schemas.registration import (
    EventAvailability,
    HealthStatus,
    LocalizedEvent,
    OrderFailure,
    OrderResult,
    OrderSuccess,
    RegistrationIntent,
)
from registrar.schemas.ticketing import (
    DEFAULT_LOCALE,
    InventoryItem,
    Order,
    OrderPositionRequest,
    OrderRequest,
    Quota,
    TicketingEvent,
    localized_text,
)
from registrar.services.inventory_resolver import InventoryResolver
from registrar.services.ticketing_client import TicketingClient

logger = get_logger(__name__)

NOT_YET_OPEN_MESSAGE = "Registration has not opened yet"
CLOSED_MESSAGE = "Registration has closed"
FULLY_BOOKED_MESSAGE = "All registration items are fully booked"
REGISTRATION_SOURCE = "registration_api"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # The backend may send naive timestamps; they are UTC.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def window_closed_reason(event: TicketingEvent, now: datetime) -> Optional[str]:
    """Why the presale window is closed at `now`, or None when it is open."""
    if event.presale_start is not None and now < _as_utc(event.presale_start):
        return NOT_YET_OPEN_MESSAGE
    if event.presale_end is not None and now > _as_utc(event.presale_end):
        return CLOSED_MESSAGE
    return None


def _drop_empty(values: dict) -> dict:
    return {key: value for key, value in values.items() if value is not None}


class RegistrationOrchestrator:
    def __init__(
        self,
        client: TicketingClient,
        resolver: Optional[InventoryResolver] = None,
        *,
        locale: str = DEFAULT_LOCALE,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.client = client
        self.resolver = resolver or InventoryResolver(locale=locale)
        self.locale = locale
        self._clock = clock

    async def check_event_availability(self, event_slug: str) -> EventAvailability:
        try:
            event = await self.client.get_event(event_slug)
            reason = window_closed_reason(event, self._clock())
            if reason:
                return EventAvailability(event_slug=event_slug, is_available=False, message=reason)

            items, quotas = await self._catalog(event_slug)
            summary = self.resolver.summarize(items, quotas)
            is_available = any(item.available for item in summary)
            return EventAvailability(
                event_slug=event_slug,
                is_available=is_available,
                items=summary,
                message=None if is_available else FULLY_BOOKED_MESSAGE,
            )
        except TicketingError:
            raise
        except Exception as exc:
            logger.exception("availability_check_failed", event_slug=event_slug)
            raise TicketingError(
                ERROR_MESSAGES[ErrorCode.EXTERNAL_SERVICE_ERROR], ErrorCode.EXTERNAL_SERVICE_ERROR
            ) from exc

    async def create_registration(self, intent: RegistrationIntent) -> OrderResult:
        event_slug = intent.event_slug
        try:
            event = await self.client.get_event(event_slug)
            reason = window_closed_reason(event, self._clock())
            if reason:
                return OrderFailure(message=reason, error_code=ErrorCode.EVENT_NOT_AVAILABLE)

            items, quotas = await self._catalog(event_slug)
            item = self.resolver.resolve_item(items, intent.identity)
            if item is None:
                return OrderFailure(
                    message=ERROR_MESSAGES[ErrorCode.ITEM_NOT_FOUND],
                    error_code=ErrorCode.ITEM_NOT_FOUND,
                )

            availability = self.resolver.compute_availability(item, quotas)
            if not availability.available:
                return OrderFailure(
                    message=ERROR_MESSAGES[ErrorCode.ITEM_NOT_AVAILABLE],
                    error_code=ErrorCode.ITEM_NOT_AVAILABLE,
                )

            order_request = self.build_order_request(intent, item)
            order = await self.client.create_order(event_slug, order_request)
        except TicketingError as exc:
            logger.warning(
                "registration_rejected",
                event_slug=event_slug,
                user_id=intent.user_id,
                error_code=exc.code.value,
                message=exc.message,
            )
            return OrderFailure(message=exc.message, error_code=exc.code)
        except Exception:
            logger.exception("registration_failed_unexpectedly", event_slug=event_slug, user_id=intent.user_id)
            return OrderFailure(
                message=ERROR_MESSAGES[ErrorCode.CREATE_REGISTRATION_ERROR],
                error_code=ErrorCode.CREATE_REGISTRATION_ERROR,
            )

        logger.info(
            "registration_created",
            event_slug=event_slug,
            user_id=intent.user_id,
            item_id=item.id,
            order_code=order.code,
        )
        return OrderSuccess(order=order)

    def build_order_request(self, intent: RegistrationIntent, item: InventoryItem) -> OrderRequest:
        info = intent.personal_info
        transport = intent.transport
        position_meta = _drop_empty({
            "user_id": intent.user_id,
            "identity": intent.identity.value,
            "temple_name": info.temple_name,
            "emergency_contact": info.emergency_contact,
            "special_requirements": info.special_requirements,
            "transport_required": transport.required if transport else None,
            "transport_location_id": transport.location_id if transport else None,
            "transport_pickup_time": transport.pickup_time if transport else None,
        })
        position_meta.update(intent.metadata_dict())

        return OrderRequest(
            email=info.email,
            phone=info.phone,
            locale=self.locale,
            positions=[
                OrderPositionRequest(
                    item=item.id,
                    attendee_name=info.name,
                    attendee_email=info.email,
                    meta_data=position_meta,
                )
            ],
            meta_data={
                "user_id": intent.user_id,
                "registration_source": REGISTRATION_SOURCE,
                "created_at": self._clock().isoformat(),
            },
            comment=build_order_comment(intent),
        )

    async def get_registration_status(self, event_slug: str, order_code: str) -> Order:
        try:
            return await self.client.get_order(event_slug, order_code)
        except TicketingError:
            raise
        except Exception as exc:
            raise TicketingError(
                ERROR_MESSAGES[ErrorCode.EXTERNAL_SERVICE_ERROR], ErrorCode.EXTERNAL_SERVICE_ERROR
            ) from exc

    async def cancel_registration(self, event_slug: str, order_code: str) -> Order:
        try:
            order = await self.client.cancel_order(event_slug, order_code)
        except TicketingError:
            raise
        except Exception as exc:
            raise TicketingError(
                ERROR_MESSAGES[ErrorCode.EXTERNAL_SERVICE_ERROR], ErrorCode.EXTERNAL_SERVICE_ERROR
            ) from exc
        logger.info("registration_cancelled", event_slug=event_slug, order_code=order_code)
        return order

    async def get_health_status(self) -> HealthStatus:
        try:
            healthy = await self.client.health_check()
        except Exception as exc:
            return HealthStatus(healthy=False, message=f"Ticketing health check failed: {exc}")
        message = "Ticketing service is healthy" if healthy else "Ticketing service is unavailable"
        return HealthStatus(healthy=healthy, message=message)

    async def list_events(self, locale: Optional[str] = None) -> list[LocalizedEvent]:
        """Public, live events with item availability, soonest first."""
        locale = locale or self.locale
        events = [event for event in await self.client.list_events() if event.is_public and event.live]
        catalogs = await asyncio.gather(*(self._catalog(event.slug) for event in events))
        localized = [
            self._localize_event(event, items, quotas, locale)
            for event, (items, quotas) in zip(events, catalogs)
        ]
        earliest = datetime.min.replace(tzinfo=timezone.utc)
        return sorted(
            localized,
            key=lambda e: (e.date_from is None, _as_utc(e.date_from) if e.date_from else earliest),
        )

    async def get_event_details(self, event_slug: str, locale: Optional[str] = None) -> LocalizedEvent:
        event, (items, quotas) = await asyncio.gather(
            self.client.get_event(event_slug),
            self._catalog(event_slug),
        )
        return self._localize_event(event, items, quotas, locale or self.locale)

    def get_cache_stats(self) -> dict:
        return self.client.get_cache_stats()

    async def clear_cache(self) -> None:
        await self.client.clear_cache()

    async def _catalog(self, event_slug: str) -> tuple[list[InventoryItem], list[Quota]]:
        items, quotas = await asyncio.gather(
            self.client.list_items(event_slug),
            self.client.list_quotas(event_slug),
        )
        return items, quotas

    def _localize_event(
        self,
        event: TicketingEvent,
        items: list[InventoryItem],
        quotas: list[Quota],
        locale: str,
    ) -> LocalizedEvent:
        total_seats = sum(quota.total_size or 0 for quota in quotas)
        available_seats = sum(quota.available_number or 0 for quota in quotas)
        return LocalizedEvent(
            slug=event.slug,
            name=localized_text(event.name, locale),
            location=localized_text(event.location, locale) if event.location else None,
            date_from=event.date_from,
            date_to=event.date_to,
            presale_start=event.presale_start,
            presale_end=event.presale_end,
            is_live=event.live,
            is_public=event.is_public,
            currency=event.currency,
            items=self.resolver.summarize(items, quotas, locale),
            total_seats=total_seats or None,
            available_seats=available_seats or None,
        )


def build_order_comment(intent: RegistrationIntent) -> str:
    info = intent.personal_info
    transport = intent.transport
    lines = [
        f"Identity: {intent.identity.value}",
        f"Name: {info.name}",
        f"Phone: {info.phone}",
    ]
    if info.temple_name:
        lines.append(f"Temple: {info.temple_name}")
    if info.emergency_contact:
        lines.append(f"Emergency contact: {info.emergency_contact}")
    if transport and transport.required:
        lines.append("Transport required: yes")
        if transport.location_id:
            lines.append(f"Pickup location: {transport.location_id}")
    else:
        lines.append("Transport required: no")
    if info.special_requirements:
        lines.append(f"Special requirements: {info.special_requirements}")
    return "\n".join(lines)
