from django.urls import path

from .views import PaymentLogDetailView, PaymentLogListView, PaymentStatsView

app_name = "payments"

urlpatterns = [
    path("", PaymentLogListView.as_view(), name="payment-logs"),
    path("stats/", PaymentStatsView.as_view(), name="payment-stats"),
    path("<int:log_id>/", PaymentLogDetailView.as_view(), name="payment-log-detail"),
]
