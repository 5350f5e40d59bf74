"""
Maps a registrant's identity onto one purchasable item and works out
whether that item can still be booked.

Item selection is keyword based: the backend has no notion of "monk" or
"volunteer", only item names, so each identity carries an ordered list of
substrings that are matched case-insensitively against the localized and
internal item names.
"""

from typing import Mapping, Optional, Sequence

from registrar.schemas.registration import Identity, ItemAvailability
from registrar.schemas.ticketing import DEFAULT_LOCALE, InventoryItem, Quota, localized_text

IDENTITY_KEYWORDS: dict[Identity, tuple[str, ...]] = {
    Identity.MONK: ("法師", "monk", "師父", "出家"),
    Identity.VOLUNTEER: ("志工", "volunteer", "義工", "在家"),
}


class InventoryResolver:
    def __init__(
        self,
        keywords: Optional[Mapping[Identity, Sequence[str]]] = None,
        locale: str = DEFAULT_LOCALE,
    ):
        source = keywords if keywords is not None else IDENTITY_KEYWORDS
        self.keywords = {Identity(tag): tuple(k.lower() for k in words) for tag, words in source.items()}
        self.locale = locale

    def resolve_item(self, items: Sequence[InventoryItem], identity: Identity) -> Optional[InventoryItem]:
        """Return the first active item whose name mentions one of the identity's keywords."""
        keywords = self.keywords.get(Identity(identity), ())
        for item in items:
            if not item.active:
                continue
            names = (
                localized_text(item.name, self.locale).lower(),
                (item.internal_name or "").lower(),
            )
            if any(keyword in name for keyword in keywords for name in names):
                return item
        return None

    def compute_availability(
        self, item: InventoryItem, quotas: Sequence[Quota], locale: Optional[str] = None
    ) -> ItemAvailability:
        """
        Live availability of one item.

        No referencing quota: available, unbounded. Otherwise every
        referencing quota must be open and available, and the count is the
        smallest bounded available_number among them. A count of zero wins
        over a stale `available` flag.
        """
        name = localized_text(item.name, locale or self.locale)
        item_quotas = [quota for quota in quotas if item.id in quota.items]
        if not item_quotas:
            return ItemAvailability(item_id=item.id, name=name, available=True, available_count=None)

        available = all(quota.available and not quota.closed for quota in item_quotas)
        bounded = [quota.available_number for quota in item_quotas if quota.available_number is not None]
        available_count = max(0, min(bounded)) if bounded else None
        if available_count == 0:
            available = False

        return ItemAvailability(
            item_id=item.id,
            name=name,
            available=available,
            available_count=available_count,
        )

    def summarize(
        self, items: Sequence[InventoryItem], quotas: Sequence[Quota], locale: Optional[str] = None
    ) -> list[ItemAvailability]:
        return [self.compute_availability(item, quotas, locale) for item in items if item.active]
