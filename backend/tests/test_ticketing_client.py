"""
Tests for the ticketing client: parsing, caching, read retries and error
classification, all against the fake backend.
"""

import asyncio
import json

import httpx
import pytest

from registrar.core.errors import ErrorCode, TicketingError
from registrar.schemas.ticketing import OrderPositionRequest, OrderRequest, OrderStatus
from registrar.services.ticketing_client import TicketingClient, classify_response

from conftest import BASE_URL, EVENT_SLUG, MONK_ITEM_ID, ORGANIZER


def _order_request() -> OrderRequest:
    return OrderRequest(
        email="a@example.org",
        positions=[OrderPositionRequest(item=MONK_ITEM_ID, attendee_name="A")],
    )


@pytest.mark.asyncio
async def test_get_event_sends_token_and_parses(fake_backend, ticketing_client):
    event = await ticketing_client.get_event(EVENT_SLUG)
    assert event.slug == EVENT_SLUG
    assert event.name["en"] == "Summer Retreat"
    assert event.presale_start is not None


@pytest.mark.asyncio
async def test_reads_are_cached(fake_backend, ticketing_client):
    """A second read inside the TTL does not reach the backend."""
    await ticketing_client.list_items(EVENT_SLUG)
    items = await ticketing_client.list_items(EVENT_SLUG)

    assert [item.id for item in items] == [1, 2]
    assert fake_backend.count("GET", "/items/") == 1
    assert ticketing_client.get_cache_stats()["hits"] == 1


@pytest.mark.asyncio
async def test_create_order_invalidates_event_cache(fake_backend, ticketing_client):
    await ticketing_client.list_quotas(EVENT_SLUG)
    await ticketing_client.list_events()

    order = await ticketing_client.create_order(EVENT_SLUG, _order_request())
    assert order.code == "ORD01"
    assert order.status is OrderStatus.NEW

    await ticketing_client.list_quotas(EVENT_SLUG)
    await ticketing_client.list_events()
    assert fake_backend.count("GET", "/quotas/") == 2
    assert fake_backend.count("GET", "/events/") == 2


@pytest.mark.asyncio
async def test_quota_read_overlapping_an_order_is_not_cached(fake_backend):
    """A quota snapshot taken before an order must not be cached after it."""
    held = asyncio.Event()
    release = asyncio.Event()

    async def handler(request: httpx.Request) -> httpx.Response:
        response = fake_backend.handler(request)
        if request.url.path.endswith("/quotas/") and not held.is_set():
            held.set()
            await release.wait()
        return response

    async with TicketingClient(
        BASE_URL, "test-token", ORGANIZER, read_retry_delay=0, transport=httpx.MockTransport(handler)
    ) as client:
        reading = asyncio.create_task(client.list_quotas(EVENT_SLUG))
        await asyncio.wait_for(held.wait(), timeout=1)

        await client.create_order(EVENT_SLUG, _order_request())
        release.set()
        await reading

        await client.list_quotas(EVENT_SLUG)

    assert fake_backend.count("GET", "/quotas/") == 2


@pytest.mark.asyncio
async def test_single_read_attempt_raises_first_error(fake_backend):
    fake_backend.fail_reads = [502]
    async with TicketingClient(
        BASE_URL,
        "test-token",
        ORGANIZER,
        read_attempts=1,
        transport=httpx.MockTransport(fake_backend.handler),
    ) as client:
        with pytest.raises(TicketingError) as exc_info:
            await client.get_event(EVENT_SLUG)
    assert exc_info.value.code is ErrorCode.SERVER_ERROR
    assert exc_info.value.status_code == 502
    assert fake_backend.count("GET", f"/events/{EVENT_SLUG}/") == 1


def test_read_attempts_must_be_positive():
    with pytest.raises(ValueError):
        TicketingClient(BASE_URL, "test-token", ORGANIZER, read_attempts=0)

@pytest.mark.asyncio
async def test_create_order_payload_omits_empty_fields(fake_backend, ticketing_client):
    await ticketing_client.create_order(EVENT_SLUG, _order_request())
    sent = fake_backend.orders["ORD01"]
    assert sent["phone"] is None  # echoed back as absent
    assert sent["positions"][0]["item"] == MONK_ITEM_ID
    assert "attendee_email" not in sent["positions"][0]


@pytest.mark.asyncio
async def test_reads_retry_on_server_error(fake_backend, ticketing_client):
    fake_backend.fail_reads = [503, 502]
    event = await ticketing_client.get_event(EVENT_SLUG)
    assert event.slug == EVENT_SLUG
    assert fake_backend.count("GET", f"/events/{EVENT_SLUG}/") == 3


@pytest.mark.asyncio
async def test_reads_give_up_after_attempt_budget(fake_backend, ticketing_client):
    fake_backend.fail_reads = [500, 500, 500]
    with pytest.raises(TicketingError) as exc_info:
        await ticketing_client.get_event(EVENT_SLUG)
    assert exc_info.value.code is ErrorCode.SERVER_ERROR
    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
async def test_client_errors_are_not_retried(fake_backend, ticketing_client):
    with pytest.raises(TicketingError) as exc_info:
        await ticketing_client.get_event("no-such-event")
    assert exc_info.value.code is ErrorCode.NOT_FOUND
    assert fake_backend.count("GET", "/events/no-such-event/") == 1


@pytest.mark.asyncio
async def test_network_failure_is_classified(fake_backend, ticketing_client):
    fake_backend.fail_reads = [httpx.ConnectError("refused")] * 3
    with pytest.raises(TicketingError) as exc_info:
        await ticketing_client.list_events()
    assert exc_info.value.code is ErrorCode.NETWORK_ERROR


@pytest.mark.asyncio
async def test_timeout_is_classified(fake_backend, ticketing_client):
    fake_backend.fail_orders = [httpx.ReadTimeout("slow")]
    with pytest.raises(TicketingError) as exc_info:
        await ticketing_client.create_order(EVENT_SLUG, _order_request())
    assert exc_info.value.code is ErrorCode.TIMEOUT_ERROR


@pytest.mark.asyncio
async def test_writes_are_not_retried(fake_backend, ticketing_client):
    fake_backend.fail_orders = [503]
    with pytest.raises(TicketingError) as exc_info:
        await ticketing_client.create_order(EVENT_SLUG, _order_request())
    assert exc_info.value.code is ErrorCode.SERVER_ERROR
    assert fake_backend.order_posts() == 1


@pytest.mark.asyncio
async def test_conflict_maps_to_already_registered(fake_backend, ticketing_client):
    fake_backend.fail_orders = [409]
    with pytest.raises(TicketingError) as exc_info:
        await ticketing_client.create_order(EVENT_SLUG, _order_request())
    assert exc_info.value.code is ErrorCode.ALREADY_REGISTERED
    assert exc_info.value.message == "order rejected"


@pytest.mark.asyncio
async def test_cancel_order_patches_status(fake_backend, ticketing_client):
    order = await ticketing_client.create_order(EVENT_SLUG, _order_request())
    cancelled = await ticketing_client.cancel_order(EVENT_SLUG, order.code)

    assert cancelled.status is OrderStatus.CANCELLED
    assert fake_backend.orders[order.code]["status"] == "c"


@pytest.mark.asyncio
async def test_health_check(fake_backend, ticketing_client):
    assert await ticketing_client.health_check() is True
    fake_backend.fail_reads = [503, 503, 503]
    assert await ticketing_client.health_check() is False


@pytest.mark.asyncio
async def test_malformed_payload_is_external_service_error(fake_backend, ticketing_client):
    fake_backend.items[EVENT_SLUG] = [{"name": {"en": "missing id"}}]
    with pytest.raises(TicketingError) as exc_info:
        await ticketing_client.list_items(EVENT_SLUG)
    assert exc_info.value.code is ErrorCode.EXTERNAL_SERVICE_ERROR


@pytest.mark.asyncio
async def test_follows_pagination():
    pages = {
        "/api/v1/organizers/temple/events/": {"next": f"{BASE_URL}/organizers/temple/events/?page=2",
                                             "results": [{"slug": "a"}]},
    }

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params.get("page") == "2":
            return httpx.Response(200, json={"next": None, "results": [{"slug": "b"}]})
        return httpx.Response(200, json=pages[request.url.path])

    async with TicketingClient(BASE_URL, "t", ORGANIZER, transport=httpx.MockTransport(handler)) as client:
        events = await client.list_events()
    assert [event.slug for event in events] == ["a", "b"]


@pytest.mark.parametrize(
    "status,code",
    [
        (400, ErrorCode.BAD_REQUEST),
        (401, ErrorCode.UNAUTHORIZED),
        (403, ErrorCode.FORBIDDEN),
        (404, ErrorCode.NOT_FOUND),
        (418, ErrorCode.BAD_REQUEST),
        (422, ErrorCode.VALIDATION_ERROR),
        (429, ErrorCode.RATE_LIMITED),
        (504, ErrorCode.SERVER_ERROR),
    ],
)
def test_classify_response(status, code):
    response = httpx.Response(status, content=json.dumps({"detail": "nope"}).encode())
    assert classify_response(response).code is code
