"""Health endpoint: database reachability and the last expiry sweep."""

import logging

from django.db import DatabaseError, connection
from django.http import JsonResponse

from apps.orders.sweeper import last_report

logger = logging.getLogger("orders.health")


def _db_ok() -> bool:
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
    except DatabaseError:
        logger.exception("health check: database unreachable")
        return False
    return True


def health_view(_request):
    db_ok = _db_ok()
    report = last_report()
    sweeper = {
        "last_run_at": report.started_at.isoformat() if report else None,
        "last_report": report.as_dict() if report else None,
    }
    return JsonResponse(
        {"ok": db_ok, "components": {"db": {"ok": db_ok}, "sweeper": sweeper}},
        status=200 if db_ok else 503,
    )
