"""Admin read access to the append-only payment log."""

from django.core.paginator import Paginator
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from apps.common.api import DomainAPIView, IsAdminActor
from .models import PaymentLog
from .repository import PaymentLogRepository
from .schemas import PaymentLogQueryDTO, PaymentLogReadDTO

ADMIN_PERMISSIONS = [IsAuthenticated, IsAdminActor]


class PaymentLogListView(DomainAPIView):
    """``GET /api/payments/?order=<uuid>``, newest first."""

    permission_classes = ADMIN_PERMISSIONS
    throttle_scope = "orders_admin"

    def get(self, request):
        query = PaymentLogQueryDTO.model_validate(request.query_params.dict())
        qs = PaymentLog.objects.order_by("-created_at", "-id")
        if query.order is not None:
            qs = qs.filter(order_id=query.order)
        page = Paginator(qs, query.page_size).get_page(query.page)
        return Response(
            {
                "count": page.paginator.count,
                "page": page.number,
                "page_size": query.page_size,
                "results": [PaymentLogReadDTO.model_validate(p).model_dump(mode="json") for p in page.object_list],
            }
        )


class PaymentLogDetailView(DomainAPIView):
    """``GET /api/payments/<id>/``: one entry with its order summary."""

    permission_classes = ADMIN_PERMISSIONS
    throttle_scope = "orders_admin"

    def get(self, request, log_id):
        return Response(PaymentLogRepository().get(log_id).model_dump(mode="json"))


class PaymentStatsView(DomainAPIView):
    permission_classes = ADMIN_PERMISSIONS
    throttle_scope = "orders_admin"

    def get(self, request):
        return Response(PaymentLogRepository().stats().model_dump(mode="json"))
