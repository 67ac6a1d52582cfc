"""Request-level middleware for the order service.

``RequestIdMiddleware`` gives every request a correlation id: the incoming
``X-Request-Id`` header when the caller sent one, a fresh UUIDv4 otherwise.
The id is kept on ``request.request_id`` and in ``REQUEST_ID_CTX`` so log
records and outbound HTTP calls (address validation) can carry it, and it is
echoed back in the ``X-Request-ID`` response header.

``ApiSizeLimitMiddleware`` rejects API bodies larger than
``settings.API_MAX_BYTES`` with 413 before they are parsed.
"""

import contextvars
import uuid

from django.conf import settings
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")


class RequestIdMiddleware(MiddlewareMixin):
    HEADER = "HTTP_X_REQUEST_ID"
    RESPONSE_HEADER = "X-Request-ID"

    def process_request(self, request):
        rid = request.META.get(self.HEADER) or str(uuid.uuid4())
        request.request_id = rid
        REQUEST_ID_CTX.set(rid)

    def process_response(self, request, response):
        response[self.RESPONSE_HEADER] = getattr(request, "request_id", REQUEST_ID_CTX.get())
        return response


class ApiSizeLimitMiddleware(MiddlewareMixin):
    PREFIX = "/api/"

    def process_request(self, request):
        if not request.path.startswith(self.PREFIX):
            return None
        clen = request.META.get("CONTENT_LENGTH")
        if clen and clen.isdigit() and int(clen) > settings.API_MAX_BYTES:
            return JsonResponse({"detail": "PAYLOAD_TOO_LARGE"}, status=413)
        return None
