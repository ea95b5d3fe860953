"""Middleware that assigns request identifiers and cart sessions.

This module provides small Django middlewares that establish the per-request
context the order services and the logs rely on:

- ``RequestIdMiddleware`` gives every request an identifier (UUID). The id
  is read from the incoming ``X-Request-Id`` header when provided by the
  client, or generated server-side otherwise, and echoed back in the
  ``X-Request-ID`` response header.
- ``CartSessionMiddleware`` resolves the cart session key that scopes "the
  open order". API clients send it in ``X-Cart-Session``; browsers fall back
  to their Django session.
- ``ApiSizeLimitMiddleware`` rejects oversized API payloads.

Both identifiers are also stored in context variables so code running
downstream (HTTP adapters, log filters) can read them without passing the
values explicitly.
"""

import contextvars
import uuid

from django.conf import settings
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")
CART_SESSION_CTX = contextvars.ContextVar("cart_session", default="-")

MAX_CART_SESSION_LEN = 64


class RequestIdMiddleware(MiddlewareMixin):
    """Django middleware that sets and returns a per-request identifier.

    Attributes:
        HEADER (str): The name of the incoming HTTP header (in Django's
            ``request.META`` casing) that may contain a client-provided id.
        RESPONSE_HEADER (str): The name of the header returned on responses.
    """

    HEADER = "HTTP_X_REQUEST_ID"       # incoming header as found in request.META
    RESPONSE_HEADER = "X-Request-ID"   # header to add to outgoing responses

    def process_request(self, request):
        rid = request.META.get(self.HEADER)
        if not rid:
            rid = str(uuid.uuid4())
        request.request_id = rid
        REQUEST_ID_CTX.set(rid)

    def process_response(self, request, response):
        rid = getattr(request, "request_id", REQUEST_ID_CTX.get())
        response[self.RESPONSE_HEADER] = rid
        return response


class CartSessionMiddleware(MiddlewareMixin):
    """Resolve the cart session key into ``request.cart_session``.

    Must run after ``SessionMiddleware``. The ``X-Cart-Session`` header wins
    when present; a header longer than the column size is answered with
    400. Otherwise the Django session key is used, creating the session on
    first use.
    """

    HEADER = "HTTP_X_CART_SESSION"
    RESPONSE_HEADER = "X-Cart-Session"

    def process_request(self, request):
        key = (request.META.get(self.HEADER) or "").strip()
        if len(key) > MAX_CART_SESSION_LEN:
            return JsonResponse({"detail": "INVALID_CART_SESSION"}, status=400)
        if not key:
            session = request.session
            if session.session_key is None:
                session.save()
            key = session.session_key
        request.cart_session = key
        CART_SESSION_CTX.set(key)

    def process_response(self, request, response):
        key = getattr(request, "cart_session", None)
        if key:
            response[self.RESPONSE_HEADER] = key
        return response


class ApiSizeLimitMiddleware(MiddlewareMixin):
    """Answer 413 when an API request declares a body above ``API_MAX_BYTES``."""

    def process_request(self, request):
        if request.path.startswith("/api/"):
            limit = getattr(settings, "API_MAX_BYTES", 1024 * 1024)
            clen = request.META.get("CONTENT_LENGTH")
            if clen and clen.isdigit() and int(clen) > limit:
                return JsonResponse({"detail": "PAYLOAD_TOO_LARGE"}, status=413)
