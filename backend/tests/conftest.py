"""
Pytest fixtures: an in-process fake ticketing backend, wired services, and an
HTTP client against the app.

The fake backend sits behind httpx.MockTransport, so the real TicketingClient
(cache, retries, error classification) runs unmodified in every test.
"""

import json
from datetime import datetime, timezone, timedelta
from typing import AsyncGenerator, Optional

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from registrar.main import app
from registrar.schemas.registration import Identity, PersonalInfo, RegistrationIntent, TransportSelection
from registrar.services.container import ServiceContainer
from registrar.services.interfaces.memory_store import InMemoryRecordStore
from registrar.services.inventory_resolver import InventoryResolver
from registrar.services.registration_api import RegistrationApi
from registrar.services.registration_service import RegistrationOrchestrator
from registrar.services.retry_scheduler import RetryScheduler
from registrar.services.retry_service import RetryConfig, RetryOrchestrator
from registrar.services.ticketing_client import TicketingClient

BASE_URL = "https://tickets.test/api/v1"
ORGANIZER = "temple"
EVENT_SLUG = "summer-retreat"
MONK_ITEM_ID = 1
VOLUNTEER_ITEM_ID = 2


class FakeTicketingBackend:
    """
    Minimal stand-in for the ticketing REST API of one organizer.

    `fail_orders` queues outcomes for the next order creations: an int is
    answered as that HTTP status, an exception instance is raised as a
    transport error.
    """

    def __init__(self):
        now = datetime.now(timezone.utc)
        self.events: dict[str, dict] = {
            EVENT_SLUG: {
                "slug": EVENT_SLUG,
                "name": {"zh-tw": "夏季禪修", "en": "Summer Retreat"},
                "live": True,
                "is_public": True,
                "currency": "TWD",
                "date_from": (now + timedelta(days=30)).isoformat(),
                "date_to": (now + timedelta(days=32)).isoformat(),
                "presale_start": (now - timedelta(days=1)).isoformat(),
                "presale_end": (now + timedelta(days=20)).isoformat(),
                "location": {"zh-tw": "山上道場", "en": "Mountain Temple"},
            },
        }
        self.items: dict[str, list[dict]] = {
            EVENT_SLUG: [
                {"id": MONK_ITEM_ID, "name": {"zh-tw": "法師報名", "en": "Monastic"}, "active": True},
                {"id": VOLUNTEER_ITEM_ID, "name": {"zh-tw": "志工報名", "en": "Volunteer"}, "active": True},
            ],
        }
        self.quotas: dict[str, list[dict]] = {
            EVENT_SLUG: [
                {"id": 10, "name": "Monastics", "size": 20, "total_size": 20,
                 "items": [MONK_ITEM_ID], "available": True, "available_number": 5},
                {"id": 11, "name": "Volunteers", "size": 50, "total_size": 50,
                 "items": [VOLUNTEER_ITEM_ID], "available": True, "available_number": 3},
            ],
        }
        self.orders: dict[str, dict] = {}
        self.fail_orders: list = []
        self.fail_reads: list = []
        self.calls: list[tuple[str, str]] = []
        self._order_seq = 0

    def count(self, method: str, suffix: str) -> int:
        return sum(1 for m, path in self.calls if m == method and path.endswith(suffix))

    def order_posts(self) -> int:
        return self.count("POST", "/orders/")

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        prefix = f"/api/v1/organizers/{ORGANIZER}"
        self.calls.append((request.method, path))

        if not path.startswith(prefix):
            return httpx.Response(404, json={"detail": "Not found."})
        parts = [part for part in path[len(prefix):].split("/") if part]

        if request.method == "GET" and self.fail_reads:
            outcome = self.fail_reads.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return httpx.Response(outcome, json={"detail": "backend trouble"})

        if not parts:
            return httpx.Response(200, json={"slug": ORGANIZER, "name": "Temple"})
        if parts == ["events"]:
            return self._page(list(self.events.values()))

        slug = parts[1]
        if slug not in self.events:
            return httpx.Response(404, json={"detail": "Not found."})
        rest = parts[2:]

        if not rest:
            return httpx.Response(200, json=self.events[slug])
        if rest == ["items"]:
            return self._page(self.items.get(slug, []))
        if rest == ["quotas"]:
            return self._page(self.quotas.get(slug, []))
        if rest == ["orders"] and request.method == "POST":
            return self._create_order(request)
        if rest[0] == "orders" and len(rest) == 2:
            order = self.orders.get(rest[1])
            if order is None:
                return httpx.Response(404, json={"detail": "Not found."})
            if request.method == "PATCH":
                order["status"] = json.loads(request.content)["status"]
            return httpx.Response(200, json=order)
        return httpx.Response(405, json={"detail": "Method not allowed."})

    def _page(self, results: list) -> httpx.Response:
        return httpx.Response(200, json={"count": len(results), "next": None, "previous": None, "results": results})

    def _create_order(self, request: httpx.Request) -> httpx.Response:
        if self.fail_orders:
            outcome = self.fail_orders.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return httpx.Response(outcome, json={"detail": "order rejected"})

        payload = json.loads(request.content)
        self._order_seq += 1
        code = f"ORD{self._order_seq:02d}"
        order = {
            "code": code,
            "status": "n",
            "email": payload.get("email"),
            "phone": payload.get("phone"),
            "locale": payload.get("locale"),
            "datetime": datetime.now(timezone.utc).isoformat(),
            "total": "0.00",
            "comment": payload.get("comment", ""),
            "positions": payload.get("positions", []),
            "meta_data": payload.get("meta_data", {}),
        }
        self.orders[code] = order
        return httpx.Response(201, json=order)


def make_intent(
    identity: Identity = Identity.MONK,
    user_id: str = "user-1",
    event_slug: str = EVENT_SLUG,
    transport: Optional[TransportSelection] = None,
) -> RegistrationIntent:
    return RegistrationIntent(
        event_slug=event_slug,
        identity=identity,
        personal_info=PersonalInfo(
            name="釋明心",
            phone="0912345678",
            email="mingxin@example.org",
            temple_name="普光寺",
        ),
        transport=transport,
        user_id=user_id,
    )


@pytest.fixture
def fake_backend() -> FakeTicketingBackend:
    return FakeTicketingBackend()


@pytest_asyncio.fixture
async def ticketing_client(fake_backend: FakeTicketingBackend) -> AsyncGenerator[TicketingClient, None]:
    client = TicketingClient(
        BASE_URL,
        "test-token",
        ORGANIZER,
        read_retry_delay=0,
        transport=httpx.MockTransport(fake_backend.handler),
    )
    yield client
    await client.aclose()


@pytest.fixture
def registration_orchestrator(ticketing_client: TicketingClient) -> RegistrationOrchestrator:
    return RegistrationOrchestrator(ticketing_client, InventoryResolver())


@pytest.fixture
def record_store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def retry_config() -> RetryConfig:
    """Real backoff shape, millisecond scale."""
    return RetryConfig(max_retries=3, base_delay_ms=5, max_delay_ms=50, backoff_multiplier=2.0)


@pytest_asyncio.fixture
async def retry_orchestrator(
    registration_orchestrator: RegistrationOrchestrator,
    record_store: InMemoryRecordStore,
    retry_config: RetryConfig,
) -> AsyncGenerator[RetryOrchestrator, None]:
    orchestrator = RetryOrchestrator(registration_orchestrator, record_store, retry_config, RetryScheduler())
    yield orchestrator
    await orchestrator.shutdown()


@pytest_asyncio.fixture
async def client(
    ticketing_client: TicketingClient,
    record_store: InMemoryRecordStore,
    registration_orchestrator: RegistrationOrchestrator,
    retry_orchestrator: RetryOrchestrator,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app, with the container pointing at the fake backend."""
    app.state.container = ServiceContainer(
        client=ticketing_client,
        store=record_store,
        registration=registration_orchestrator,
        retries=retry_orchestrator,
        api=RegistrationApi(registration_orchestrator, retry_orchestrator),
    )

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    del app.state.container
