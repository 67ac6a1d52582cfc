"""HTTP views for the orders app.

Views stay thin: they validate the request with a Pydantic DTO, take the
caller from ``request.user`` (an ``Actor`` built by
``TrustedHeaderAuthentication``), delegate to a service from
``providers`` and serialize the result. Service errors are turned into
responses by ``DomainAPIView.handle_exception``.

Idempotency: ``POST /api/orders/`` honours an ``Idempotency-Key`` header.
The first request stores its final response (success or business error);
a retry with the same key and body replays it with ``Idempotent-Replay:
true`` and never reserves stock twice. The same key with another body is
answered with 409 ``IDEMPOTENCY_CONFLICT``.
"""

import logging

from django.db import transaction
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from apps.common.api import DomainAPIView, IsAdminActor
from apps.common.errors import DomainError, Forbidden
from .idempotency import finalize, get_or_create_idempotent
from .providers import get_expiry_sweeper, get_order_builder, get_payment_gateway, get_state_machine
from .repository import OrderRepository
from .schemas import (
    CancelOrderDTO,
    ConfirmPaymentDTO,
    CreateOrderDTO,
    OrderQueryDTO,
    OrderReadDTO,
    RefundOrderDTO,
    ShipOrderDTO,
)

logger = logging.getLogger("orders")

ADMIN_PERMISSIONS = [IsAuthenticated, IsAdminActor]


def _owner_scope(actor):
    """User id the caller is restricted to; None for admins and staff."""
    return None if actor.is_admin else actor.user_id


def _body(request) -> dict:
    """Request payload as a plain dict; form posts arrive as a QueryDict."""
    data = request.data
    return data.dict() if hasattr(data, "dict") else data


def _order_body(order) -> dict:
    return OrderReadDTO.from_model(order).model_dump(mode="json")


class OrdersCollectionView(DomainAPIView):
    """``GET`` lists orders, ``POST`` creates one."""

    def get_throttles(self):
        # DRF evaluates throttles in initial(), before get/post
        self.throttle_scope = "orders_list" if self.request.method == "GET" else "orders_create"
        return super().get_throttles()

    def get(self, request):
        query = OrderQueryDTO.model_validate(request.query_params.dict())
        scope = _owner_scope(request.user)
        if scope is not None:
            query = query.model_copy(update={"user_id": scope})

        page = OrderRepository().list(query)
        return Response(
            {
                "count": page.paginator.count,
                "page": page.number,
                "page_size": query.page_size,
                "num_pages": page.paginator.num_pages,
                "results": [_order_body(o) for o in page.object_list],
            }
        )

    def post(self, request):
        """Create a PENDING order and reserve its stock.

        Returns:
            201 with the order. An idempotent replay returns the stored status
            and body (201, or the original 4xx) with ``Idempotent-Replay: true``.
            400/409/422 for business errors; 503 when a collaborator or the
            database is unavailable.
        """
        actor = request.user
        dto = CreateOrderDTO.model_validate(_body(request))
        if dto.user_id is not None and dto.user_id != actor.user_id and not actor.is_admin:
            raise Forbidden("only admins may place orders for another user")

        idem_key = request.headers.get("Idempotency-Key")
        if not idem_key:
            order = self._create(dto, actor)
            return Response(_order_body(order), status=status.HTTP_201_CREATED)

        with transaction.atomic():
            existing, rec = get_or_create_idempotent(idem_key, actor.user_id, dto.model_dump(mode="json"))
            if existing:
                resp = Response(rec.response_body, status=rec.response_status or status.HTTP_200_OK)
                resp["Idempotent-Replay"] = "true"
                return resp
            try:
                order = self._create(dto, actor)
            except DomainError as e:
                finalize(rec, e.http_status, e.to_body())
                return Response(e.to_body(), status=e.http_status)
            body = _order_body(order)
            finalize(rec, status.HTTP_201_CREATED, body, order_id=order.pk)
        return Response(body, status=status.HTTP_201_CREATED)

    def _create(self, dto: CreateOrderDTO, actor):
        return get_order_builder().create(
            user_id=dto.user_id or actor.user_id,
            shipping_address=dto.shipping_address.to_domain(),
            lines=dto.lines(),
            customer_notes=dto.customer_notes,
            payment_method=dto.payment_method,
            shipping_method=dto.shipping_method,
        )


class RetrieveOrderView(DomainAPIView):
    throttle_scope = "orders_detail"

    def get(self, request, oid):
        order = OrderRepository().get(oid, owner_user_id=_owner_scope(request.user))
        return Response(_order_body(order))


class PaymentStatusView(DomainAPIView):
    """Payment deadline countdown of one order."""

    throttle_scope = "orders_detail"

    def get(self, request, oid):
        repo = OrderRepository()
        order = repo.get(oid, owner_user_id=_owner_scope(request.user))
        return Response(repo.payment_status(order).model_dump(mode="json"))


class OrderStatsView(DomainAPIView):
    """Counts per status and total amount; admins may pass ``?user_id=``."""

    throttle_scope = "orders_list"

    def get(self, request):
        actor = request.user
        if actor.is_admin:
            raw = request.query_params.get("user_id")
            user_id = OrderQueryDTO.model_validate({"user_id": raw}).user_id if raw else None
        else:
            user_id = actor.user_id
        return Response(OrderRepository().stats(user_id=user_id))


class CancelOrderView(DomainAPIView):
    """Customers cancel their own PENDING orders; admins may cancel any."""

    throttle_scope = "orders_detail"

    def post(self, request, oid):
        actor = request.user
        dto = CancelOrderDTO.model_validate(_body(request))
        if actor.is_admin:
            reason = dto.reason or f"Cancelled by admin {actor.user_id}"
        else:
            reason = dto.reason or "Cancelled by customer"
        order = get_state_machine().cancel(oid, user_id=_owner_scope(actor), reason=reason)
        return Response(_order_body(order))


class ConfirmPaymentView(DomainAPIView):
    permission_classes = ADMIN_PERMISSIONS
    throttle_scope = "orders_admin"

    def post(self, request, oid):
        dto = ConfirmPaymentDTO.model_validate(_body(request))
        order = get_payment_gateway().confirm(oid, dto.to_domain(), admin_id=request.user.user_id)
        return Response(_order_body(order))


class ShipOrderView(DomainAPIView):
    permission_classes = ADMIN_PERMISSIONS
    throttle_scope = "orders_admin"

    def post(self, request, oid):
        dto = ShipOrderDTO.model_validate(_body(request))
        order = get_state_machine().ship(oid, tracking_number=dto.tracking_number, shipping_method=dto.shipping_method)
        return Response(_order_body(order))


class DeliverOrderView(DomainAPIView):
    permission_classes = ADMIN_PERMISSIONS
    throttle_scope = "orders_admin"

    def post(self, request, oid):
        return Response(_order_body(get_state_machine().deliver(oid)))


class RefundOrderView(DomainAPIView):
    permission_classes = ADMIN_PERMISSIONS
    throttle_scope = "orders_admin"

    def post(self, request, oid):
        dto = RefundOrderDTO.model_validate(_body(request))
        order = get_state_machine().refund(oid, admin_id=request.user.user_id, reason=dto.reason)
        return Response(_order_body(order))


class CheckTimeoutView(DomainAPIView):
    """Manual trigger of the expiry sweep; same code path as the scheduled run."""

    permission_classes = ADMIN_PERMISSIONS
    throttle_scope = "orders_admin"

    def post(self, request):
        report = get_expiry_sweeper().sweep()
        logger.info("manual expiry sweep", extra={"admin_id": request.user.user_id, **report.as_dict()})
        return Response(report.as_dict())
