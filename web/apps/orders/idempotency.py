"""Idempotency-Key bookkeeping for the payment endpoints.

A shopper retrying a payment (double click, flaky network) must not reach
the gateway twice. A key is claimed together with a fingerprint of the
payment it guards: the payment method, the cart session paying and the
request body. Reusing the key for another payment is a conflict. Once the
payment settles, its response is stored on the key and replayed to retries.
"""

import hashlib
import json

from django.db import IntegrityError, transaction

from .models import IdempotencyKey

IN_PROGRESS = 0


def payment_fingerprint(method: str, session_key: str, body) -> str:
    """Hash what identifies one payment attempt.

    JSON keys are sorted, so a retry hashes equally however the client
    ordered its fields. Non-JSON values (UUIDs, datetimes) go through ``str``.
    """
    payload = {"method": method, "session": session_key, "body": body}
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


@transaction.atomic
def claim_payment_key(key: str, method: str, session_key: str, body):
    """Claim ``key`` for a payment, or find the earlier claim.

    Returns ``(False, rec)`` for a fresh key; the caller pays and then calls
    ``finalize`` (or ``release`` when the payment crashed). Returns
    ``(True, rec)`` when the same payment already claimed the key;
    ``rec.response_status`` is ``IN_PROGRESS`` while that payment runs,
    otherwise it holds the response to replay.

    Raises:
        ValueError: ``IDEMPOTENCY_CONFLICT`` when the key guards a
            different payment.
    """
    fingerprint = payment_fingerprint(method, session_key, body)

    try:
        # savepoint, so a duplicate key leaves the outer transaction usable
        with transaction.atomic():
            return False, IdempotencyKey.objects.create(key=key, request_hash=fingerprint)
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(key=key)
        if rec.request_hash != fingerprint:
            raise ValueError("IDEMPOTENCY_CONFLICT")
        return True, rec


def finalize(rec: IdempotencyKey, status_code: int, body: dict, order_id=None):
    """Store the response a payment ended with so retries replay it."""
    rec.response_status = status_code
    rec.response_body = body
    if order_id is not None:
        rec.order_id = order_id
    rec.save(update_fields=["response_status", "response_body", "order_id"])


def release(rec: IdempotencyKey) -> None:
    """Drop a claim whose payment never produced a response."""
    IdempotencyKey.objects.filter(pk=rec.pk, response_status=IN_PROGRESS).delete()
