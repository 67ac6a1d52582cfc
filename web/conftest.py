import datetime as dt
from decimal import Decimal
from itertools import count

import pytest
from django.core.cache import cache

from apps.inventory.ledger import StockLedger
from apps.inventory.models import Product
from apps.orders.adapters import BasicAddressValidator, ZeroPricingPolicy
from apps.orders.builder import OrderBuilder
from apps.orders.domain import LineRequest, ShippingAddress
from apps.orders.state_machine import OrderStateMachine

T0 = dt.datetime(2024, 1, 15, 10, 0, tzinfo=dt.timezone.utc)

ADDRESS = {
    "name": "Li Wei",
    "phone": "+86 138 0013 8000",
    "country": "CN",
    "province": "Guangdong",
    "city": "Shenzhen",
    "district": "Nanshan",
    "postal_code": "518000",
    "address_line_1": "1 Keyuan Road",
}


class FrozenClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now: dt.datetime = T0):
        self.now = now

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs) -> dt.datetime:
        self.now += dt.timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def use_in_process_collaborators(settings):
    settings.USE_HTTP_ADAPTERS = False
    # throttle counters live in the cache
    cache.clear()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def address():
    return ShippingAddress(**ADDRESS)


@pytest.fixture
def make_product(db):
    seq = count(1)

    def _make(stock=10, price="19.99", status=Product.Status.ACTIVE, **kwargs):
        n = next(seq)
        return Product.objects.create(
            sku=kwargs.pop("sku", f"SKU-{n:04d}"),
            name=kwargs.pop("name", f"Product {n}"),
            price=Decimal(price),
            stock=stock,
            status=status,
            **kwargs,
        )

    return _make


@pytest.fixture
def ledger():
    return StockLedger()


@pytest.fixture
def builder(ledger, clock):
    return OrderBuilder(
        ledger=ledger,
        address_validator=BasicAddressValidator(),
        pricing=ZeroPricingPolicy(),
        clock=clock,
    )


@pytest.fixture
def state_machine(ledger, clock):
    return OrderStateMachine(ledger=ledger, clock=clock)


@pytest.fixture
def place_order(builder, address):
    """Create a PENDING order for ``user_id`` from ``(product, qty)`` pairs."""

    def _place(*lines, user_id=1):
        return builder.create(
            user_id=user_id,
            shipping_address=address,
            lines=[LineRequest(product_id=p.pk, quantity=q) for p, q in lines],
        )

    return _place


def actor_headers(user_id=1, role="USER"):
    return {"X-User-Id": str(user_id), "X-User-Role": role}


@pytest.fixture
def user_headers():
    return actor_headers(1, "USER")


@pytest.fixture
def admin_headers():
    return actor_headers(900, "ADMIN")


@pytest.fixture
def headers_for():
    return actor_headers
