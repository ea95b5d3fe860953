"""HTTP views for the orders app.

This module contains the DRF API views of the cart and checkout flow.
Views are kept intentionally small: they validate requests (via Pydantic),
resolve the services for the request's cart session, delegate, and map
domain records and errors to HTTP responses.

Services are obtained from ``providers`` on every request, so settings
(``ORDER_STORE_BACKEND``, ``USE_HTTP_ADAPTERS``) can be switched in tests
without changing view logic.

Cart session: ``gateway.middleware.CartSessionMiddleware`` resolves the
session key (``X-Cart-Session`` header or Django session) into
``request.cart_session``.

Idempotency: the payment endpoints accept an ``Idempotency-Key`` header.
The first request is processed and its response stored. Retries with the
same key and payload return the stored response and never reach the
gateway again. Reusing a key for a different request returns HTTP 409.
"""

import logging

from django.core.paginator import Paginator
from django.http import HttpResponse
from rest_framework import status
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView
from pydantic import ValidationError

from . import providers
from .domain import (
    InvalidArgument,
    InvalidTransition,
    NotFound,
    OrderError,
    OutOfStock,
    PersistenceError,
)
from .idempotency import claim_payment_key, finalize, release
from .schemas import (
    CardPaymentIn,
    LineItemSummaryOut,
    OrderReadDTO,
    PaymentOptionOut,
    PaymentResultOut,
    ReceiptOut,
)

logger = logging.getLogger("orders.views")

ERROR_STATUS = {
    InvalidArgument: status.HTTP_400_BAD_REQUEST,
    NotFound: status.HTTP_404_NOT_FOUND,
    OutOfStock: status.HTTP_422_UNPROCESSABLE_ENTITY,
    InvalidTransition: status.HTTP_409_CONFLICT,
    PersistenceError: status.HTTP_409_CONFLICT,
}


def error_response(exc: OrderError) -> Response:
    """Map a domain error to ``{"detail": <CODE>}`` and its HTTP status."""
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return Response({"detail": exc.code}, status=ERROR_STATUS[cls])
    return Response({"detail": exc.code}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


def _dump(schema, obj) -> dict:
    return schema.model_validate(obj).model_dump(mode="json")


class CartThrottled(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "cart"


class CartItemView(CartThrottled):
    """Add an item to, or remove it from, the session's open order."""

    def post(self, request, alias: str):
        """Add one unit of ``alias`` to the cart.

        Returns:
            Response: 200 with the receipt; 400 for a blank alias; 404 when
            the item does not exist; 422 when it is out of stock.
        """
        service = providers.get_order_service(request.cart_session)
        try:
            receipt = service.add_item_to_order(alias)
        except OrderError as e:
            return error_response(e)
        return Response(_dump(ReceiptOut, receipt), status=status.HTTP_200_OK)

    def delete(self, request, alias: str):
        """Remove ``alias`` from the cart and restock it.

        Returns:
            Response: 204 on success; 404 without an open order or when the
            item is not in the cart.
        """
        service = providers.get_order_service(request.cart_session)
        try:
            service.remove_item_from_order(alias)
        except OrderError as e:
            return error_response(e)
        return Response(status=status.HTTP_204_NO_CONTENT)


class CartView(CartThrottled):
    def get(self, request):
        service = providers.get_order_service(request.cart_session)
        lines = service.get_open_cart_details()
        return Response([_dump(LineItemSummaryOut, li) for li in lines])


class CartDetailsView(CartThrottled):
    def get(self, request, order_id):
        service = providers.get_order_service(request.cart_session)
        lines = service.get_cart_details(order_id)
        return Response([_dump(LineItemSummaryOut, li) for li in lines])


class OrdersCollectionView(APIView):
    """Paginated order history."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders"

    def get(self, request):
        service = providers.get_order_service(request.cart_session)
        page = int(request.GET.get("page", 1))
        page_size = int(request.GET.get("page_size", 20))
        p = Paginator(service.list_orders(), page_size)
        page_obj = p.get_page(page)

        return Response(
            {
                "count": p.count,
                "page": page_obj.number,
                "page_size": page_size,
                "results": [_dump(OrderReadDTO, o) for o in page_obj.object_list],
            },
            status=200,
        )


class RetrieveOrderView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders"

    def get(self, request, order_id):
        service = providers.get_order_service(request.cart_session)
        try:
            order = service.get_order(order_id)
        except OrderError as e:
            return error_response(e)
        return Response(_dump(OrderReadDTO, order), status=200)

    def delete(self, request, order_id):
        service = providers.get_order_service(request.cart_session)
        try:
            service.delete_order(order_id)
        except OrderError as e:
            return error_response(e)
        return Response(status=status.HTTP_204_NO_CONTENT)


class PaymentMethodsView(APIView):
    def get(self, request):
        checkout = providers.get_checkout_service(request.cart_session)
        return Response([_dump(PaymentOptionOut, o) for o in checkout.list_payment_options()])


class OpenOrderPaymentView(APIView):
    """Open order of the session together with the payment options."""

    def get(self, request):
        checkout = providers.get_checkout_service(request.cart_session)
        try:
            order, options = checkout.get_payment_options_with_open_order()
        except OrderError as e:
            return error_response(e)
        return Response(
            {
                "order": _dump(OrderReadDTO, order),
                "paymentMethods": [_dump(PaymentOptionOut, o) for o in options],
            }
        )


class ReceiptDocumentView(APIView):
    def get(self, request, order_id):
        checkout = providers.get_checkout_service(request.cart_session)
        try:
            document = checkout.get_receipt_document(order_id)
        except OrderError as e:
            return error_response(e)
        renderer = checkout.renderer
        response = HttpResponse(document, content_type=renderer.content_type)
        response["Content-Disposition"] = f'attachment; filename="invoice.{renderer.extension}"'
        return response


class PaymentView(APIView):
    """Base view for the payment endpoints.

    Subclasses implement ``pay(service, request)``. This class handles the
    Idempotency-Key bookkeeping and the response shape.
    """

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "checkout"
    method_name = ""

    def pay(self, service, request):
        raise NotImplementedError()

    def validate(self, request):
        return None

    def post(self, request):
        """Pay the session's open order.

        Returns:
            Response: One of the following responses.
            - 200 with {order_id, customer_id, sum, status}; ``status`` is
              ``Paid`` or ``Cancelled`` depending on the gateway outcome.
            - 200 with the stored body (``Idempotent-Replay: true``) when
              the same idempotency key and payload are retried.
            - 409 with {detail: "IDEMPOTENCY_CONFLICT"} when the key is
              reused with a different payload.
            - 400 for validation errors.
            - 404 when the session has no open order.

        Any other exception propagates and frees the idempotency key, so
        the shopper can retry with it.
        """
        idem_key = request.headers.get("Idempotency-Key")

        # 1) Pydantic validation
        try:
            validated = self.validate(request)
        except ValidationError as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        # 2) Idempotency get-or-create
        rec = None
        if idem_key:
            try:
                existing, rec = claim_payment_key(idem_key, self.method_name, request.cart_session, request.data)
            except ValueError:
                return Response({"detail": "IDEMPOTENCY_CONFLICT"}, status=status.HTTP_409_CONFLICT)
            if existing:
                if not rec.response_status:
                    return Response({"detail": "IDEMPOTENCY_IN_PROGRESS"}, status=status.HTTP_409_CONFLICT)
                resp = Response(rec.response_body, status=rec.response_status)
                resp["Idempotent-Replay"] = "true"
                return resp

        # 3) Domain
        try:
            service = providers.get_payment_service(request.cart_session, idempotency_key=idem_key)
            result = self.pay(service, validated)
        except OrderError as e:
            resp = error_response(e)
            if rec:
                finalize(rec, resp.status_code, resp.data)
            return resp
        except Exception:
            # a crashed payment must not pin the key as in progress
            if rec:
                release(rec)
            raise

        body = _dump(PaymentResultOut, result)
        logger.info(
            "payment settled",
            extra={"order_id": body["order_id"], "method": self.method_name, "status": body["status"]},
        )
        if rec:
            finalize(rec, status.HTTP_200_OK, body, order_id=result.order_id)
        return Response(body, status=status.HTTP_200_OK)


class TerminalPaymentView(PaymentView):
    method_name = "terminal"

    def pay(self, service, validated):
        return service.process_terminal_payment()


class CardPaymentView(PaymentView):
    method_name = "card"

    def validate(self, request):
        return CardPaymentIn.model_validate(request.data)

    def pay(self, service, validated):
        return service.process_card_payment(validated.to_domain())
