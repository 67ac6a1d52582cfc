"""Order creation: reservation, snapshots, deadline and order numbers."""

import datetime as dt
import re
from decimal import Decimal

import pytest

from apps.common.errors import (
    EmptyOrder,
    InsufficientStock,
    InvalidAddress,
    InvalidQuantity,
    OrderNumberExhausted,
    ProductUnavailable,
)
from apps.inventory.models import Product
from apps.orders.adapters import BasicAddressValidator, ZeroPricingPolicy
from apps.orders.builder import OrderBuilder, generate_order_number, merge_lines
from apps.orders.domain import LineRequest, OrderStatus, PaymentStatus, ShippingAddress
from apps.orders.models import OrderModel


def test_order_number_format():
    number = generate_order_number(dt.datetime(2024, 1, 15, tzinfo=dt.timezone.utc))
    assert re.fullmatch(r"ORD20240115\d{6}", number)


def test_merge_lines_sums_repeated_products():
    merged = merge_lines([LineRequest(3, 1), LineRequest(1, 2), LineRequest(3, 4)])
    assert merged == [LineRequest(3, 5), LineRequest(1, 2)]


@pytest.mark.django_db
def test_create_reserves_stock_and_snapshots_prices(place_order, make_product, clock):
    a = make_product(stock=10, price="19.99")
    b = make_product(stock=3, price="5.00")

    order = place_order((a, 2), (b, 3))

    assert order.status == OrderStatus.PENDING.value
    assert order.payment_status == PaymentStatus.PENDING.value
    assert order.order_number.startswith("ORD20240115")
    assert order.subtotal == Decimal("54.98")
    assert order.total_amount == Decimal("54.98")
    assert order.created_at == clock.now
    assert order.payment_deadline == clock.now + dt.timedelta(minutes=30)
    assert order.stock_released_at is None

    a.refresh_from_db()
    b.refresh_from_db()
    assert (a.stock, b.stock) == (8, 0)

    items = {i.product_id: i for i in order.items.all()}
    assert items[a.pk].unit_price == Decimal("19.99")
    assert items[a.pk].total_price == Decimal("39.98")
    assert items[a.pk].product_snapshot == {"id": a.pk, "sku": a.sku, "name": a.name, "price": "19.99"}


@pytest.mark.django_db
def test_later_price_changes_do_not_touch_existing_orders(place_order, make_product):
    p = make_product(stock=5, price="10.00")
    order = place_order((p, 1))

    Product.objects.filter(pk=p.pk).update(price=Decimal("99.00"), name="Renamed")

    stored = OrderModel.objects.get(pk=order.pk)
    item = stored.items.get()
    assert item.unit_price == Decimal("10.00")
    assert item.product_snapshot["name"] != "Renamed"
    assert stored.total_amount == Decimal("10.00")


@pytest.mark.django_db
def test_shipping_address_is_stored_with_standardized_text(place_order, make_product):
    order = place_order((make_product(), 1))
    assert order.shipping_address["city"] == "Shenzhen"
    assert order.standardized_address == "1 Keyuan Road\nShenzhen, Nanshan, Guangdong, 518000, CN"


@pytest.mark.django_db
def test_insufficient_stock_rolls_back_every_line(place_order, make_product):
    a = make_product(stock=10)
    b = make_product(stock=1)

    with pytest.raises(InsufficientStock):
        place_order((a, 4), (b, 2))

    a.refresh_from_db()
    b.refresh_from_db()
    assert (a.stock, b.stock) == (10, 1)
    assert OrderModel.objects.count() == 0


@pytest.mark.django_db
def test_last_unit_is_sold_only_once(place_order, make_product):
    p = make_product(stock=1)
    placed, refused = [], 0

    for user_id in range(1, 6):
        try:
            placed.append(place_order((p, 1), user_id=user_id))
        except InsufficientStock:
            refused += 1

    assert len(placed) == 1
    assert refused == 4
    p.refresh_from_db()
    assert p.stock == 0
    assert OrderModel.objects.count() == 1


@pytest.mark.django_db
def test_inactive_or_missing_products_are_reported(builder, address, make_product):
    active = make_product(stock=5)
    inactive = make_product(stock=5, status=Product.Status.INACTIVE)

    with pytest.raises(ProductUnavailable) as exc:
        builder.create(
            user_id=1,
            shipping_address=address,
            lines=[LineRequest(active.pk, 1), LineRequest(inactive.pk, 1), LineRequest(424242, 1)],
        )
    assert exc.value.extra["product_ids"] == sorted([inactive.pk, 424242])
    active.refresh_from_db()
    assert active.stock == 5


@pytest.mark.django_db
def test_empty_order_is_rejected(builder, address):
    with pytest.raises(EmptyOrder):
        builder.create(user_id=1, shipping_address=address, lines=[])


@pytest.mark.django_db
@pytest.mark.parametrize("qty", [0, -2, 1000])
def test_quantity_out_of_range_is_rejected(builder, address, make_product, qty):
    p = make_product(stock=5000)
    with pytest.raises(InvalidQuantity):
        builder.create(user_id=1, shipping_address=address, lines=[LineRequest(p.pk, qty)])
    p.refresh_from_db()
    assert p.stock == 5000


@pytest.mark.django_db
def test_merged_quantity_over_the_limit_is_rejected(builder, address, make_product):
    p = make_product(stock=5000)
    with pytest.raises(InvalidQuantity):
        builder.create(user_id=1, shipping_address=address, lines=[LineRequest(p.pk, 600), LineRequest(p.pk, 600)])


@pytest.mark.django_db
def test_duplicate_lines_become_one_item(place_order, make_product):
    p = make_product(stock=5)
    order = place_order((p, 1), (p, 2))
    assert [(i.product_id, i.quantity) for i in order.items.all()] == [(p.pk, 3)]
    p.refresh_from_db()
    assert p.stock == 2


@pytest.mark.django_db
def test_invalid_address_carries_suggestions(builder, make_product):
    p = make_product(stock=5)
    bad = ShippingAddress(
        name="X", phone="13800138000", country="China", province="GD", city="SZ", address_line_1="1 Road"
    )
    with pytest.raises(InvalidAddress) as exc:
        builder.create(user_id=1, shipping_address=bad, lines=[LineRequest(p.pk, 1)])
    assert len(exc.value.extra["suggestions"]) == 2
    p.refresh_from_db()
    assert p.stock == 5


@pytest.mark.django_db
def test_order_number_collision_draws_a_new_number(ledger, address, make_product, clock):
    p = make_product(stock=5)
    numbers = iter(["ORD20240115000001", "ORD20240115000001", "ORD20240115000002"])
    builder = OrderBuilder(
        ledger=ledger,
        address_validator=BasicAddressValidator(),
        pricing=ZeroPricingPolicy(),
        clock=clock,
        number_factory=lambda now: next(numbers),
    )

    first = builder.create(user_id=1, shipping_address=address, lines=[LineRequest(p.pk, 1)])
    second = builder.create(user_id=1, shipping_address=address, lines=[LineRequest(p.pk, 1)])

    assert first.order_number == "ORD20240115000001"
    assert second.order_number == "ORD20240115000002"
    p.refresh_from_db()
    assert p.stock == 3


@pytest.mark.django_db
def test_order_number_exhaustion_releases_reservation(ledger, address, make_product, clock, settings):
    settings.ORDER_NUMBER_MAX_ATTEMPTS = 3
    p = make_product(stock=5)
    builder = OrderBuilder(
        ledger=ledger,
        address_validator=BasicAddressValidator(),
        pricing=ZeroPricingPolicy(),
        clock=clock,
        number_factory=lambda now: "ORD20240115000001",
    )
    builder.create(user_id=1, shipping_address=address, lines=[LineRequest(p.pk, 1)])

    with pytest.raises(OrderNumberExhausted):
        builder.create(user_id=1, shipping_address=address, lines=[LineRequest(p.pk, 2)])

    p.refresh_from_db()
    assert p.stock == 4
    assert OrderModel.objects.count() == 1


@pytest.mark.django_db
def test_payment_window_follows_settings(place_order, make_product, clock, settings):
    settings.ORDER_PAYMENT_WINDOW_MINUTES = 45
    order = place_order((make_product(), 1))
    assert order.payment_deadline - order.created_at == dt.timedelta(minutes=45)
