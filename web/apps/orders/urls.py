from django.urls import path

from .views import (
    CancelOrderView,
    CheckTimeoutView,
    ConfirmPaymentView,
    DeliverOrderView,
    OrdersCollectionView,
    OrderStatsView,
    PaymentStatusView,
    RefundOrderView,
    RetrieveOrderView,
    ShipOrderView,
)

app_name = "orders"

urlpatterns = [
    path("", OrdersCollectionView.as_view(), name="orders-collection"),  # GET list / POST create
    path("stats/", OrderStatsView.as_view(), name="orders-stats"),
    path("scheduler/check-timeout/", CheckTimeoutView.as_view(), name="orders-check-timeout"),
    path("<uuid:oid>/", RetrieveOrderView.as_view(), name="orders-detail"),
    path("<uuid:oid>/payment-status/", PaymentStatusView.as_view(), name="orders-payment-status"),
    path("<uuid:oid>/cancel/", CancelOrderView.as_view(), name="orders-cancel"),
    path("<uuid:oid>/confirm-payment/", ConfirmPaymentView.as_view(), name="orders-confirm-payment"),
    path("<uuid:oid>/ship/", ShipOrderView.as_view(), name="orders-ship"),
    path("<uuid:oid>/deliver/", DeliverOrderView.as_view(), name="orders-deliver"),
    path("<uuid:oid>/refund/", RefundOrderView.as_view(), name="orders-refund"),
]
