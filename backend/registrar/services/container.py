"""
Explicit wiring of the service graph.

Built once per application in the lifespan and stored on `app.state`.
"""

from dataclasses import dataclass
from typing import Optional

import httpx

from registrar.core.config import Settings
from registrar.core.logging import get_logger
from registrar.services.interfaces.record_store import RecordStore
from registrar.services.inventory_resolver import InventoryResolver
from registrar.services.registration_api import RegistrationApi
from registrar.services.registration_service import RegistrationOrchestrator
from registrar.services.retry_scheduler import RetryScheduler
from registrar.services.retry_service import RetryConfig, RetryOrchestrator
from registrar.services.ticketing_client import TicketingClient

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    client: TicketingClient
    store: RecordStore
    registration: RegistrationOrchestrator
    retries: RetryOrchestrator
    api: RegistrationApi

    async def aclose(self) -> None:
        await self.retries.shutdown()
        await self.client.aclose()


def build_container(
    settings: Settings,
    store: RecordStore,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ServiceContainer:
    client = TicketingClient.from_settings(settings, transport=transport)
    registration = RegistrationOrchestrator(
        client,
        InventoryResolver(locale=settings.TICKETING_LOCALE),
        locale=settings.TICKETING_LOCALE,
    )
    retries = RetryOrchestrator(
        registration,
        store,
        RetryConfig.from_settings(settings),
        RetryScheduler(),
    )
    logger.info(
        "services_built",
        record_store=type(store).__name__,
        max_retries=settings.RETRY_MAX_RETRIES,
    )
    return ServiceContainer(
        client=client,
        store=store,
        registration=registration,
        retries=retries,
        api=RegistrationApi(registration, retries),
    )
