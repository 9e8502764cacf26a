from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from src.domain.catalog import ServiceCategory
from src.domain.pricing import (
    PricingEngine,
    as_utc,
    clear_expired_discount,
    discount_is_active,
)


NOW = datetime(2026, 6, 1, 10, 0, tzinfo=timezone.utc)
TOMORROW = NOW + timedelta(days=1)
YESTERDAY = NOW - timedelta(days=1)


@pytest.fixture
def engine():
    return PricingEngine(clock=lambda: NOW)


def _card(price_per_card=100, discount_percent=0, discount_expiry=None):
    return SimpleNamespace(
        price_per_card=price_per_card,
        discount_percent=discount_percent,
        discount_expiry=discount_expiry,
    )


def _service(category, discount_percent=0, discount_expiry=None):
    return SimpleNamespace(
        category=category,
        discount_percent=discount_percent,
        discount_expiry=discount_expiry,
    )


# ---------------------
# CARDS
# ---------------------

def test_card_price_with_active_discount(engine):
    card = _card(discount_percent=20, discount_expiry=TOMORROW)

    assert engine.price_card(card, 2) == 160


def test_card_price_ignores_expired_discount(engine):
    card = _card(discount_percent=20, discount_expiry=YESTERDAY)

    assert engine.price_card(card, 2) == 200


def test_discount_without_expiry_stays_active(engine):
    card = _card(discount_percent=10)

    assert engine.price_card(card, 3) == 270


# ---------------------
# SERVICES
# ---------------------

def test_venue_price_scales_with_quantity(engine):
    venue = _service(ServiceCategory.WEDDING_VENUES)
    package = SimpleNamespace(price=1000)

    assert engine.price_service(venue, package, 3) == 3000


def test_other_categories_ignore_quantity(engine):
    photographer = _service(ServiceCategory.PHOTOGRAPHERS)
    package = SimpleNamespace(price=1000)

    assert engine.price_service(photographer, package, 3) == 1000


def test_service_discount_applied_after_quantity(engine):
    venue = _service(ServiceCategory.WEDDING_VENUES, discount_percent=50, discount_expiry=TOMORROW)
    package = SimpleNamespace(price=999.99)

    assert engine.price_service(venue, package, 2) == 999.99


# ---------------------
# DISCOUNT HELPERS
# ---------------------

def test_zero_percent_is_never_active():
    assert not discount_is_active(0, TOMORROW, NOW)


def test_naive_expiry_is_treated_as_utc():
    naive_tomorrow = TOMORROW.replace(tzinfo=None)

    assert discount_is_active(15, naive_tomorrow, NOW)
    assert as_utc(naive_tomorrow) == TOMORROW


def test_clear_expired_discount_resets_fields():
    card = _card(discount_percent=20, discount_expiry=YESTERDAY)

    assert clear_expired_discount(card, NOW) is True
    assert card.discount_percent == 0
    assert card.discount_expiry is None


def test_clear_expired_discount_keeps_live_discount():
    card = _card(discount_percent=20, discount_expiry=TOMORROW)

    assert clear_expired_discount(card, NOW) is False
    assert card.discount_percent == 20
