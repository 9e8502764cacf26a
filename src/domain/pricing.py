# src/domain/pricing.py

from datetime import datetime, timezone
from typing import Callable, Optional

from src.domain.catalog import QUANTITY_PRICED_CATEGORIES, ServiceCategory


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalizes a datetime to aware UTC. Naive values are taken to be UTC
    already (SQLite hands timestamps back without tzinfo).
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def discount_is_active(
    discount_percent: Optional[float],
    discount_expiry: Optional[datetime],
    now: datetime,
) -> bool:
    if not discount_percent or discount_percent <= 0:
        return False
    return discount_expiry is None or as_utc(discount_expiry) > as_utc(now)


def clear_expired_discount(resource, now: Optional[datetime] = None) -> bool:
    """
    Resets an expired discount to zero/None on a service or card.
    Returns True if anything was cleared.
    """
    now = now or utc_now()
    expiry = as_utc(resource.discount_expiry)
    if expiry is not None and expiry < as_utc(now):
        resource.discount_percent = 0
        resource.discount_expiry = None
        return True
    return False


class PricingEngine:
    """
    Computes booking prices from live resource state.

    Cards are priced per card. Services are priced per package, and only
    the "Wedding Venues" category multiplies by quantity. An active
    discount is applied last.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self.clock = clock

    def price_card(self, card, quantity: int) -> float:
        amount = card.price_per_card * quantity
        return self._apply_discount(amount, card)

    def price_service(self, service, package, quantity: int) -> float:
        amount = package.price
        if ServiceCategory(service.category) in QUANTITY_PRICED_CATEGORIES:
            amount = amount * quantity
        return self._apply_discount(amount, service)

    def _apply_discount(self, amount: float, resource) -> float:
        if discount_is_active(
            resource.discount_percent,
            resource.discount_expiry,
            self.clock(),
        ):
            amount = amount * (1 - resource.discount_percent / 100)
        return round(amount, 2)
