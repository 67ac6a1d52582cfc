"""Admin access to payment log entries and payment statistics."""

import datetime as dt
from decimal import Decimal

import pytest

from apps.orders.domain import PaymentDetails, PaymentMethod
from apps.payments.models import PaymentLog
from apps.payments.repository import PaymentLogRepository

PAYMENTS_URL = "/api/payments/"
DETAIL_URL = "/api/payments/{log_id}/"
STATS_URL = "/api/payments/stats/"


@pytest.fixture
def paid_order(place_order, make_product, state_machine, clock):
    order = place_order((make_product(price="15.00"), 1))
    state_machine.confirm_payment(
        order.pk,
        PaymentDetails(method=PaymentMethod.CASH, amount=Decimal("15.00"), paid_at=clock.now + dt.timedelta(minutes=3)),
        admin_id=900,
    )
    return order


@pytest.mark.django_db
def test_admin_lists_payment_logs_of_an_order(client, paid_order, admin_headers):
    r = client.get(PAYMENTS_URL, {"order": str(paid_order.pk)}, headers=admin_headers)

    assert r.status_code == 200
    body = r.json()
    assert body["count"] == 1
    entry = body["results"][0]
    assert entry["order_id"] == str(paid_order.pk)
    assert entry["payment_method"] == "CASH"
    assert entry["amount"] == "15.00"
    assert entry["admin_id"] == 900


@pytest.mark.django_db
def test_unknown_order_has_no_logs(client, paid_order, admin_headers):
    r = client.get(PAYMENTS_URL, {"order": "8f14e45f-ceea-467f-a0e6-3c4a1b2d9e00"}, headers=admin_headers)
    assert r.json()["count"] == 0


@pytest.mark.django_db
def test_customers_cannot_read_payment_logs(client, paid_order, user_headers):
    assert client.get(PAYMENTS_URL, headers=user_headers).status_code == 403


@pytest.mark.django_db
def test_admin_reads_one_payment_with_its_order(client, paid_order, admin_headers):
    log_id = PaymentLog.objects.get(order_id=paid_order.pk).pk

    r = client.get(DETAIL_URL.format(log_id=log_id), headers=admin_headers)

    assert r.status_code == 200
    body = r.json()
    assert body["id"] == log_id
    assert body["amount"] == "15.00"
    assert body["order"] == {
        "id": str(paid_order.pk),
        "order_number": paid_order.order_number,
        "user_id": 1,
        "status": "PAID",
        "payment_status": "PAID",
        "total_amount": "15.00",
    }


@pytest.mark.django_db
def test_unknown_payment_returns_404(client, admin_headers):
    r = client.get(DETAIL_URL.format(log_id=999), headers=admin_headers)
    assert r.status_code == 404
    assert r.json()["detail"] == "NOT_FOUND"


@pytest.mark.django_db
def test_payment_stats_endpoint(client, paid_order, place_order, make_product, state_machine, admin_headers, user_headers):
    state_machine.cancel(place_order((make_product(price="7.00"), 1)).pk)

    assert client.get(STATS_URL, headers=user_headers).status_code == 403
    r = client.get(STATS_URL, headers=admin_headers)

    assert r.status_code == 200
    body = r.json()
    assert body["total_payments"] == 1
    assert body["total_amount"] == "15.00"
    assert body["by_payment_method"]["CASH"] == {"count": 1, "amount": "15.00"}
    assert body["by_payment_method"]["PAYPAL"] == {"count": 0, "amount": "0.00"}
    assert body["by_payment_status"]["PAID"] == {"count": 1, "amount": "15.00"}
    assert body["by_payment_status"]["CANCELLED"] == {"count": 1, "amount": "7.00"}
    assert body["by_payment_status"]["PENDING"] == {"count": 0, "amount": "0.00"}


@pytest.mark.django_db
def test_payment_stats_split_today_and_month(paid_order, state_machine, place_order, make_product, clock):
    # paid_order was paid at 10:03 on 2024-01-15
    earlier = place_order((make_product(price="5.00"), 1))
    state_machine.confirm_payment(
        earlier.pk,
        PaymentDetails(method=PaymentMethod.PAYPAL, amount=Decimal("5.00"), paid_at=clock.now - dt.timedelta(days=3)),
        admin_id=900,
    )

    stats = PaymentLogRepository().stats(now=clock.now + dt.timedelta(hours=2))

    assert (stats.total_payments, stats.total_amount) == (2, Decimal("20.00"))
    assert (stats.today_payments, stats.today_amount) == (1, Decimal("15.00"))
    assert (stats.month_payments, stats.month_amount) == (2, Decimal("20.00"))

    next_month = PaymentLogRepository().stats(now=dt.datetime(2024, 2, 1, 9, 0, tzinfo=dt.timezone.utc))
    assert (next_month.today_payments, next_month.month_payments) == (0, 0)
