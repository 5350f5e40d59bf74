"""
Event endpoints: live availability and order cancellation.
"""

from fastapi import APIRouter, Depends

from registrar.api.deps import get_registration_api
from registrar.schemas.registration import CancellationResult, EventAvailability
from registrar.services.registration_api import RegistrationApi

router = APIRouter(prefix="/events", tags=["Events"])


@router.get("/{event_slug}/availability", response_model=EventAvailability)
async def check_availability_endpoint(
    event_slug: str,
    api: RegistrationApi = Depends(get_registration_api),
):
    """Per-item availability. Served from the ticketing cache for up to its TTL."""
    return await api.check_availability(event_slug)


@router.post("/{event_slug}/orders/{order_code}/cancel", response_model=CancellationResult)
async def cancel_order_endpoint(
    event_slug: str,
    order_code: str,
    api: RegistrationApi = Depends(get_registration_api),
):
    """Cancel an order upstream and mark the local registration cancelled."""
    return await api.cancel_registration(event_slug, order_code)
