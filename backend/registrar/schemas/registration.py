"""
Pydantic schemas for registration intents and their outcomes.
"""

from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Literal, Mapping, Optional, Union
from pydantic import BaseModel, Field, field_serializer, field_validator

from registrar.core.errors import ErrorCode
from registrar.schemas.ticketing import Order


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [_thaw(item) for item in value]
    return value


class Identity(str, Enum):
    MONK = "monk"
    VOLUNTEER = "volunteer"


class PersonalInfo(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., min_length=1, max_length=30)
    email: Optional[str] = Field(None, max_length=255)
    emergency_contact: Optional[str] = Field(None, max_length=100)
    temple_name: Optional[str] = Field(None, max_length=100)
    special_requirements: Optional[str] = Field(None, max_length=500)

    model_config = {"frozen": True}


class TransportSelection(BaseModel):
    required: bool = False
    location_id: Optional[str] = None
    pickup_time: Optional[str] = None

    model_config = {"frozen": True}


class RegistrationIntent(BaseModel):
    """What a user asked to register for. Corrections produce a new intent."""

    event_slug: str = Field(..., min_length=1)
    identity: Identity
    personal_info: PersonalInfo
    transport: Optional[TransportSelection] = None
    user_id: str = Field(..., min_length=1)
    metadata: Mapping[str, Any] = Field(default_factory=dict, validate_default=True)

    model_config = {"frozen": True}

    @field_validator("metadata", mode="after")
    @classmethod
    def freeze_metadata(cls, value: Mapping[str, Any]) -> Mapping[str, Any]:
        # Read-only snapshot; later changes to the caller's dict do not leak in
        return _freeze(value)

    @field_serializer("metadata")
    def serialize_metadata(self, value: Mapping[str, Any]) -> dict[str, Any]:
        return _thaw(value)

    def metadata_dict(self) -> dict[str, Any]:
        """A mutable copy of the metadata."""
        return _thaw(self.metadata)


class OrderSuccess(BaseModel):
    success: Literal[True] = True
    order: Order

    @property
    def order_code(self) -> str:
        return self.order.code

    @property
    def external_status(self) -> str:
        return self.order.status.label


class OrderFailure(BaseModel):
    success: Literal[False] = False
    message: str
    error_code: ErrorCode


OrderResult = Union[OrderSuccess, OrderFailure]


class ItemAvailability(BaseModel):
    item_id: int
    name: str
    available: bool
    available_count: Optional[int] = None  # None means unbounded


class EventAvailability(BaseModel):
    event_slug: str
    is_available: bool
    items: list[ItemAvailability] = Field(default_factory=list)
    message: Optional[str] = None


class LocalizedEvent(BaseModel):
    slug: str
    name: str
    location: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    presale_start: Optional[datetime] = None
    presale_end: Optional[datetime] = None
    is_live: bool
    is_public: bool
    currency: str
    items: list[ItemAvailability] = Field(default_factory=list)
    total_seats: Optional[int] = None
    available_seats: Optional[int] = None


class HealthStatus(BaseModel):
    healthy: bool
    message: str


class CancellationResult(BaseModel):
    event_slug: str
    order_code: str
    external_status: str
    registration_updated: bool = False
