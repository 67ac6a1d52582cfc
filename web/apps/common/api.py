"""Shared DRF pieces: the error-mapping base view and the admin permission."""

import logging

import httpx
from django.db import DatabaseError
from pydantic import ValidationError as PydanticValidationError
from rest_framework import status
from rest_framework.permissions import BasePermission
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from .errors import DomainError, UpstreamUnavailable, ValidationFailed

logger = logging.getLogger("orders.api")


class IsAdminActor(BasePermission):
    """Allows ADMIN and STAFF callers."""

    message = "FORBIDDEN"

    def has_permission(self, request, view):
        return bool(request.user and request.user.is_admin)


class DomainAPIView(APIView):
    """APIView translating service errors into HTTP responses.

    - ``DomainError``: its ``http_status`` and ``to_body()``.
    - pydantic validation errors: 400 ``VALIDATION_ERROR`` with the field errors.
    - database and collaborator failures: 503 ``UPSTREAM_UNAVAILABLE``, logged
      with the traceback.
    """

    throttle_classes = [ScopedRateThrottle]

    def handle_exception(self, exc):
        if isinstance(exc, DomainError):
            return Response(exc.to_body(), status=exc.http_status)
        if isinstance(exc, PydanticValidationError):
            err = ValidationFailed(
                extra={"errors": exc.errors(include_url=False, include_context=False, include_input=False)}
            )
            return Response(err.to_body(), status=err.http_status)
        if isinstance(exc, (DatabaseError, httpx.HTTPError, UpstreamUnavailable)):
            logger.exception("upstream failure", extra={"path": self.request.path, "error": type(exc).__name__})
            return Response({"detail": "UPSTREAM_UNAVAILABLE"}, status=status.HTTP_503_SERVICE_UNAVAILABLE)
        return super().handle_exception(exc)
