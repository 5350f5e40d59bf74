from registrar.schemas.ticketing import (
    TicketingEvent, InventoryItem, Quota, Order, OrderStatus, OrderRequest, OrderPositionRequest,
)
from registrar.schemas.registration import (
    Identity, PersonalInfo, TransportSelection, RegistrationIntent,
    OrderSuccess, OrderFailure, OrderResult, ItemAvailability, EventAvailability,
    LocalizedEvent, HealthStatus, CancellationResult,
)
from registrar.schemas.retry import (
    RetryStatus, RetryAttempt, RetryRecord, RegistrationStatus, RegistrationRecord,
    Submission, RetryStatusResponse,
)

__all__ = [
    "TicketingEvent", "InventoryItem", "Quota", "Order", "OrderStatus", "OrderRequest", "OrderPositionRequest",
    "Identity", "PersonalInfo", "TransportSelection", "RegistrationIntent",
    "OrderSuccess", "OrderFailure", "OrderResult", "ItemAvailability", "EventAvailability",
    "LocalizedEvent", "HealthStatus", "CancellationResult",
    "RetryStatus", "RetryAttempt", "RetryRecord", "RegistrationStatus", "RegistrationRecord",
    "Submission", "RetryStatusResponse",
]
