"""Logging filter stamping records with the current request id."""

from logging import Filter, LogRecord

from .middleware import REQUEST_ID_CTX


class RequestIdFilter(Filter):
    """Set ``record.request_id`` from ``REQUEST_ID_CTX``.

    Outside a request (the expiry sweeper, management commands) the
    ContextVar default ``"-"`` is used, so ``%(request_id)s`` always resolves.
    """

    def filter(self, record: LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = REQUEST_ID_CTX.get()
        return True
