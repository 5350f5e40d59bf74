"""
Pydantic schemas for payloads exchanged with the external ticketing service.

Only the fields the registration core relies on are declared; anything else
the backend returns is ignored on parse.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, Field

LocalizedText = dict[str, str]

DEFAULT_LOCALE = "zh-tw"


def localized_text(text: Optional[LocalizedText], locale: str = DEFAULT_LOCALE) -> str:
    """Pick the best string for a locale, falling back to zh-tw, en, then anything."""
    if not text:
        return ""
    return (
        text.get(locale)
        or text.get(DEFAULT_LOCALE)
        or text.get("en")
        or next(iter(text.values()), "")
    )


class OrderStatus(str, Enum):
    NEW = "n"
    PENDING = "p"
    EXPIRED = "e"
    CANCELLED = "c"
    REFUNDED = "r"

    @property
    def label(self) -> str:
        return self.name.lower()


class TicketingEvent(BaseModel):
    slug: str
    name: LocalizedText = Field(default_factory=dict)
    live: bool = True
    is_public: bool = True
    currency: str = "TWD"
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    date_admission: Optional[datetime] = None
    presale_start: Optional[datetime] = None
    presale_end: Optional[datetime] = None
    location: Optional[LocalizedText] = None
    meta_data: dict[str, Any] = Field(default_factory=dict)


class InventoryItem(BaseModel):
    id: int
    name: LocalizedText = Field(default_factory=dict)
    internal_name: Optional[str] = None
    default_price: str = "0.00"
    active: bool = True
    description: Optional[LocalizedText] = None
    min_per_order: Optional[int] = None
    max_per_order: Optional[int] = None

    model_config = {"frozen": True}


class Quota(BaseModel):
    id: int
    name: str = ""
    size: Optional[int] = None
    total_size: Optional[int] = None
    items: list[int] = Field(default_factory=list)
    closed: bool = False
    available: bool = True
    available_number: Optional[int] = None

    model_config = {"frozen": True}


class OrderPosition(BaseModel):
    id: Optional[int] = None
    item: int
    attendee_name: Optional[str] = None
    attendee_email: Optional[str] = None
    meta_data: dict[str, Any] = Field(default_factory=dict)


class Order(BaseModel):
    code: str
    status: OrderStatus = OrderStatus.NEW
    email: Optional[str] = None
    phone: Optional[str] = None
    locale: Optional[str] = None
    placed_at: Optional[datetime] = Field(default=None, alias="datetime")
    total: Optional[str] = None
    comment: str = ""
    positions: list[OrderPosition] = Field(default_factory=list)
    meta_data: dict[str, Any] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}


class OrderPositionRequest(BaseModel):
    item: int
    attendee_name: str
    attendee_email: Optional[str] = None
    meta_data: dict[str, Any] = Field(default_factory=dict)


class OrderRequest(BaseModel):
    email: Optional[str] = None
    phone: Optional[str] = None
    locale: str = DEFAULT_LOCALE
    sales_channel: str = "web"
    positions: list[OrderPositionRequest]
    meta_data: dict[str, Any] = Field(default_factory=dict)
    comment: str = ""
