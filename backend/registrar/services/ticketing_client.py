"""
HTTP client for the external ticketing service.

RESILIENCE STRATEGY
===================

Reads (events, items, quotas, orders, health):
  - Served from the TTL cache when fresh
  - Otherwise retried up to `read_attempts` times with linear backoff
    (attempt x read_retry_delay); a 4xx answer is final and never retried

Writes (order creation, order status change):
  - Never retried here. Creating an order is not idempotent on the backend,
    so retrying is the retry orchestrator's call, with its own record keeping
  - A successful write invalidates the event's cache namespace so later
    reads in this process see the change

Errors:
  - Every failure leaves this module as a TicketingError with an ErrorCode;
    transport problems become NETWORK_ERROR / TIMEOUT_ERROR, HTTP answers are
    classified by status code with the backend's `detail` as message
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx
from pydantic import TypeAdapter, ValidationError

from registrar.core.config import Settings
from registrar.core.errors import ERROR_MESSAGES, ErrorCode, TicketingError
from registrar.core.logging import get_logger
from registrar.core.metrics import record_ticketing_request
from registrar.schemas.ticketing import (
    InventoryItem,
    Order,
    OrderRequest,
    OrderStatus,
    Quota,
    TicketingEvent,
)
from registrar.services.cache_service import GLOBAL_NAMESPACE, TTLCache, make_cache_key

logger = get_logger(__name__)

T = TypeVar("T")

_STATUS_CODES: dict[int, ErrorCode] = {
    400: ErrorCode.BAD_REQUEST,
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    409: ErrorCode.ALREADY_REGISTERED,
    422: ErrorCode.VALIDATION_ERROR,
    429: ErrorCode.RATE_LIMITED,
}

# The backend's detail text is not shown for these; ours is more useful to the user.
_FIXED_MESSAGE_CODES = {ErrorCode.UNAUTHORIZED, ErrorCode.RATE_LIMITED, ErrorCode.SERVER_ERROR}

_events_adapter = TypeAdapter(list[TicketingEvent])
_items_adapter = TypeAdapter(list[InventoryItem])
_quotas_adapter = TypeAdapter(list[Quota])


def classify_response(response: httpx.Response) -> TicketingError:
    status = response.status_code
    detail = None
    try:
        body = response.json()
        if isinstance(body, dict) and isinstance(body.get("detail"), str):
            detail = body["detail"]
    except ValueError:
        pass

    if status in _STATUS_CODES:
        code = _STATUS_CODES[status]
    elif status >= 500:
        code = ErrorCode.SERVER_ERROR
    elif status >= 400:
        code = ErrorCode.BAD_REQUEST
    else:
        code = ErrorCode.EXTERNAL_SERVICE_ERROR

    if code in _FIXED_MESSAGE_CODES or not detail:
        message = ERROR_MESSAGES[code]
    else:
        message = detail
    return TicketingError(message, code, status_code=status)


class TicketingClient:
    """Typed operations against the ticketing backend of one organizer."""

    def __init__(
        self,
        base_url: str,
        api_token: str,
        organizer_slug: str,
        *,
        timeout: float = 30.0,
        cache_ttl_seconds: float = 300,
        read_attempts: int = 3,
        read_retry_delay: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        cache: Optional[TTLCache] = None,
    ):
        if read_attempts < 1:
            raise ValueError("read_attempts must be at least 1")
        self.organizer_slug = organizer_slug
        self.read_attempts = read_attempts
        self.read_retry_delay = read_retry_delay
        self._root = f"/organizers/{organizer_slug}"
        self._cache = cache or TTLCache(ttl_seconds=cache_ttl_seconds)
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"Token {api_token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "TicketingClient":
        return cls(
            settings.TICKETING_API_URL,
            settings.TICKETING_API_TOKEN,
            settings.TICKETING_ORGANIZER_SLUG,
            timeout=settings.TICKETING_TIMEOUT_SECONDS,
            cache_ttl_seconds=settings.TICKETING_CACHE_TTL_SECONDS,
            read_attempts=settings.TICKETING_READ_ATTEMPTS,
            read_retry_delay=settings.TICKETING_READ_RETRY_DELAY_SECONDS,
            transport=transport,
        )

    async def __aenter__(self) -> "TicketingClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(self, operation: str, method: str, url: str, json: Any = None) -> Any:
        start = time.perf_counter()
        outcome = "ok"
        try:
            try:
                response = await self._http.request(method, url, json=json)
            except httpx.TimeoutException as exc:
                raise TicketingError(ERROR_MESSAGES[ErrorCode.TIMEOUT_ERROR], ErrorCode.TIMEOUT_ERROR) from exc
            except httpx.TransportError as exc:
                raise TicketingError(ERROR_MESSAGES[ErrorCode.NETWORK_ERROR], ErrorCode.NETWORK_ERROR) from exc

            if response.is_error:
                raise classify_response(response)
            if not response.content:
                return None
            try:
                return response.json()
            except ValueError as exc:
                raise TicketingError(
                    ERROR_MESSAGES[ErrorCode.EXTERNAL_SERVICE_ERROR],
                    ErrorCode.EXTERNAL_SERVICE_ERROR,
                    status_code=response.status_code,
                ) from exc
        except TicketingError as exc:
            outcome = exc.code.value
            logger.warning(
                "ticketing_request_failed",
                operation=operation,
                method=method,
                url=url,
                status_code=exc.status_code,
                error_code=exc.code.value,
            )
            raise
        finally:
            record_ticketing_request(operation, outcome, time.perf_counter() - start)

    async def _with_retry(self, operation: str, request_fn: Callable[[], Awaitable[T]]) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await request_fn()
            except TicketingError as exc:
                # 4xx means the request itself is wrong; asking again won't help
                if exc.is_client_error or attempt >= self.read_attempts:
                    raise
                delay = self.read_retry_delay * attempt
                logger.info(
                    "ticketing_read_retry",
                    operation=operation,
                    attempt=attempt,
                    delay_seconds=delay,
                    error_code=exc.code.value,
                )
                await asyncio.sleep(delay)

    async def _get_all(self, operation: str, path: str) -> list:
        """GET a paginated collection, following `next` links."""
        results: list = []
        url: Optional[str] = path
        while url:
            page = await self._request(operation, "GET", url)
            if isinstance(page, list):
                results.extend(page)
                break
            if not isinstance(page, dict):
                raise TicketingError(
                    ERROR_MESSAGES[ErrorCode.EXTERNAL_SERVICE_ERROR], ErrorCode.EXTERNAL_SERVICE_ERROR
                )
            results.extend(page.get("results") or [])
            url = page.get("next")
        return results

    async def _cached_read(
        self,
        operation: str,
        key: str,
        namespace: str,
        fetch: Callable[[], Awaitable[Any]],
        parse: Callable[[Any], T],
    ) -> T:
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        generation = self._cache.generation(namespace)
        data = await self._with_retry(operation, fetch)
        value = _parse(operation, parse, data)
        await self._cache.set(key, value, namespace=namespace, generation=generation)
        return value

    def _event_path(self, event_slug: str) -> str:
        return f"{self._root}/events/{event_slug}"

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_events(self) -> list[TicketingEvent]:
        events = await self._cached_read(
            "list_events",
            make_cache_key("events"),
            GLOBAL_NAMESPACE,
            lambda: self._get_all("list_events", f"{self._root}/events/"),
            _events_adapter.validate_python,
        )
        return list(events)

    async def get_event(self, event_slug: str) -> TicketingEvent:
        return await self._cached_read(
            "get_event",
            make_cache_key("event", {"slug": event_slug}),
            event_slug,
            lambda: self._request("get_event", "GET", f"{self._event_path(event_slug)}/"),
            TicketingEvent.model_validate,
        )

    async def list_items(self, event_slug: str) -> list[InventoryItem]:
        items = await self._cached_read(
            "list_items",
            make_cache_key("items", {"slug": event_slug}),
            event_slug,
            lambda: self._get_all("list_items", f"{self._event_path(event_slug)}/items/"),
            _items_adapter.validate_python,
        )
        return list(items)

    async def list_quotas(self, event_slug: str) -> list[Quota]:
        quotas = await self._cached_read(
            "list_quotas",
            make_cache_key("quotas", {"slug": event_slug}),
            event_slug,
            lambda: self._get_all("list_quotas", f"{self._event_path(event_slug)}/quotas/"),
            _quotas_adapter.validate_python,
        )
        return list(quotas)

    async def get_order(self, event_slug: str, order_code: str) -> Order:
        return await self._cached_read(
            "get_order",
            make_cache_key("order", {"slug": event_slug, "code": order_code}),
            event_slug,
            lambda: self._request("get_order", "GET", f"{self._event_path(event_slug)}/orders/{order_code}/"),
            Order.model_validate,
        )

    async def health_check(self) -> bool:
        try:
            await self._with_retry("health_check", lambda: self._request("health_check", "GET", f"{self._root}/"))
        except TicketingError as exc:
            logger.warning("ticketing_unhealthy", error_code=exc.code.value, message=exc.message)
            return False
        return True

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_order(self, event_slug: str, order_request: OrderRequest) -> Order:
        data = await self._request(
            "create_order",
            "POST",
            f"{self._event_path(event_slug)}/orders/",
            json=order_request.model_dump(mode="json", exclude_none=True),
        )
        await self._cache.invalidate_namespace(event_slug)
        order = _parse("create_order", Order.model_validate, data)
        logger.info("order_created", event_slug=event_slug, order_code=order.code, status=order.status.label)
        return order

    async def set_order_status(self, event_slug: str, order_code: str, status: OrderStatus) -> Order:
        data = await self._request(
            "set_order_status",
            "PATCH",
            f"{self._event_path(event_slug)}/orders/{order_code}/",
            json={"status": OrderStatus(status).value},
        )
        await self._cache.invalidate_namespace(event_slug)
        order = _parse("set_order_status", Order.model_validate, data)
        logger.info("order_status_changed", event_slug=event_slug, order_code=order_code, status=order.status.label)
        return order

    async def cancel_order(self, event_slug: str, order_code: str) -> Order:
        return await self.set_order_status(event_slug, order_code, OrderStatus.CANCELLED)

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    def get_cache_stats(self) -> dict:
        return self._cache.stats()

    async def clear_cache(self) -> None:
        await self._cache.clear()


def _parse(operation: str, parse: Callable[[Any], T], data: Any) -> T:
    try:
        return parse(data)
    except ValidationError as exc:
        logger.error("ticketing_response_invalid", operation=operation, errors=exc.error_count())
        raise TicketingError(
            ERROR_MESSAGES[ErrorCode.EXTERNAL_SERVICE_ERROR], ErrorCode.EXTERNAL_SERVICE_ERROR
        ) from exc
