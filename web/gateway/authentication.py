"""DRF authentication backed by identity headers from the upstream gateway.

The service sits behind an authenticating proxy that forwards the caller as
``X-User-Id`` and ``X-User-Role``. This backend turns those headers into an
``Actor`` that views pass explicitly into the services.
"""

from rest_framework import exceptions
from rest_framework.authentication import BaseAuthentication

from apps.orders.domain import Actor, Role


class TrustedHeaderAuthentication(BaseAuthentication):
    """Authenticate from ``X-User-Id`` / ``X-User-Role``.

    Missing ``X-User-Id`` means "not authenticated" (``None``); a malformed
    id or an unknown role is rejected with 401.
    """

    USER_HEADER = "HTTP_X_USER_ID"
    ROLE_HEADER = "HTTP_X_USER_ROLE"

    def authenticate(self, request):
        raw_id = request.META.get(self.USER_HEADER)
        if not raw_id:
            return None
        try:
            user_id = int(raw_id)
        except ValueError:
            raise exceptions.AuthenticationFailed("X-User-Id must be an integer") from None
        if user_id <= 0:
            raise exceptions.AuthenticationFailed("X-User-Id must be positive")

        raw_role = (request.META.get(self.ROLE_HEADER) or Role.USER.value).strip().upper()
        try:
            role = Role(raw_role)
        except ValueError:
            raise exceptions.AuthenticationFailed(f"unknown role {raw_role}") from None
        return Actor(user_id=user_id, role=role), None

    def authenticate_header(self, request):
        # Makes DRF answer 401 instead of 403 for unauthenticated calls.
        return "X-User-Id"
