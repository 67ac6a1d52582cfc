"""Idempotency keys for order creation.

A client may send an ``Idempotency-Key`` header with ``POST /api/orders/``.
The first request with a key creates the record and, once the order exists,
stores the response. A retry with the same key and the same body gets the
stored response back without reserving stock again. Reusing a key with a
different body is a conflict. Keys are scoped per user.
"""

import hashlib
import json

from django.db import IntegrityError, transaction

from apps.common.errors import IdempotencyConflict
from .models import IdempotencyKey


def _hash(payload: dict) -> str:
    """Stable SHA-256 of a JSON-serializable payload (sorted keys, compact)."""
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


def get_or_create_idempotent(key: str, user_id: int, payload: dict):
    """Get or create the idempotency record of ``(user_id, key)``.

    Must run inside the caller's transaction so the record and the order it
    guards commit together.

    Returns:
        tuple[bool, IdempotencyKey]: ``existing`` is True when the record was
        already there (the caller replays its stored response).

    Raises:
        IdempotencyConflict: The key was used before with another payload.
    """
    h = _hash(payload)
    try:
        # Savepoint so a duplicate key only rolls back this insert.
        with transaction.atomic():
            rec = IdempotencyKey.objects.create(
                key=key, user_id=user_id, request_hash=h, response_status=0, response_body={}
            )
            return False, rec
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(key=key, user_id=user_id)
        if rec.request_hash != h:
            raise IdempotencyConflict("idempotency key reused with a different payload") from None
        return True, rec


def finalize(rec: IdempotencyKey, status_code: int, body: dict, order_id=None) -> None:
    """Store the response so retries can short-circuit."""
    rec.response_status = status_code
    rec.response_body = body
    if order_id is not None:
        rec.order_id = order_id
    rec.save(update_fields=["response_status", "response_body", "order"])
