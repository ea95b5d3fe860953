"""Logging filters for enriching log records with request context.

This module provides a logging filter that injects the current request id
and cart session into log records using the ContextVars set by the gateway
middleware. With the filter attached to a handler, every order and payment
log line can be correlated with the request and the cart it belongs to.
"""

from logging import Filter, LogRecord
from .middleware import CART_SESSION_CTX, REQUEST_ID_CTX


class RequestIdFilter(Filter):
    """Attach ``request_id`` and ``cart_session`` attributes to log records.

    Values come from ``REQUEST_ID_CTX`` and ``CART_SESSION_CTX``. Outside a
    request both default to a hyphen ("-") so formatters can reliably
    reference ``%(request_id)s`` and ``%(cart_session)s``.
    """

    def filter(self, record: LogRecord) -> bool:
        record.request_id = REQUEST_ID_CTX.get()
        record.cart_session = CART_SESSION_CTX.get()
        return True
