"""HTTP adapter for the address validation collaborator.

This module implements ``AddressValidatorPort`` over ``httpx``. It adds:

- Request correlation: propagates ``X-Request-ID`` from the ContextVar set
    by the gateway middleware.
- A circuit breaker for the downstream service to avoid hammering it while
    unhealthy, with HALF_OPEN probing after a timeout.
- A simple retry policy with exponential backoff for transport errors and
    5xx responses.
"""

import logging
import threading
import time
from typing import Optional

import httpx
from django.conf import settings

from apps.common.errors import UpstreamUnavailable
from gateway.middleware import REQUEST_ID_CTX
from .domain import AddressValidation, AddressValidatorPort, ShippingAddress

logger = logging.getLogger("orders.http")


# ---------------- Circuit Breaker ---------------- #

class CircuitOpenError(UpstreamUnavailable):
    """The breaker refused the call; the collaborator is considered down."""


CLOSED, OPEN, HALF_OPEN = "CLOSED", "OPEN", "HALF_OPEN"


class CircuitBreaker:
    """Guards one remote collaborator, here the address validation service.

    Order creation validates the address before touching stock, so while
    the service is down every create would wait out its retries. After
    ``fail_threshold`` consecutive failed validations the breaker opens and
    order creation fails fast with 503 instead. ``reset_timeout`` seconds
    later one create is let through as a trial: a usable answer (including
    a 422 "invalid address") closes the breaker, another failure reopens it.
    Creates arriving while that trial is running are refused.

    Shared by all request threads of a worker, hence the lock.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._consecutive_failures = 0
        self._state = CLOSED
        self._opened_at = 0.0
        self._trial_running = False

    @property
    def state(self) -> str:
        """CLOSED, OPEN or HALF_OPEN; an expired OPEN reads as HALF_OPEN."""
        with self._lock:
            if self._state == OPEN and time.monotonic() - self._opened_at >= self.reset_timeout:
                self._state = HALF_OPEN
                self._trial_running = False
            return self._state

    def before_call(self) -> str:
        """Admit a validation call and return the state it was admitted in.

        Raises:
            CircuitOpenError: ``CIRCUIT_OPEN`` while open, or
                ``CIRCUIT_HALF_OPEN_BUSY`` while the trial call is running.
        """
        with self._lock:
            current = self.state
            if current == OPEN:
                raise CircuitOpenError("CIRCUIT_OPEN")
            if current == HALF_OPEN:
                if self._trial_running:
                    raise CircuitOpenError("CIRCUIT_HALF_OPEN_BUSY")
                self._trial_running = True
            return current

    def on_success(self):
        """The service answered; forget earlier failures."""
        with self._lock:
            self._consecutive_failures = 0
            self._state = CLOSED
            self._trial_running = False

    def on_failure(self):
        """A call exhausted its retries. A failed trial reopens at once."""
        with self._lock:
            self._consecutive_failures += 1
            if self._state == HALF_OPEN or (
                self._state == CLOSED and self._consecutive_failures >= self.fail_threshold
            ):
                self._trip()

    def on_finish(self):
        """Release the trial slot when a call ended without a verdict."""
        with self._lock:
            if self._state == HALF_OPEN:
                self._trial_running = False

    def _trip(self):
        logger.warning(
            "address validation circuit opened",
            extra={"circuit": self.name, "failures": self._consecutive_failures},
        )
        self._state = OPEN
        self._opened_at = time.monotonic()
        self._trial_running = False


_address_cb = CircuitBreaker(
    "address-validation",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    """Build base headers including X-Request-ID and any extras."""
    headers: dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _retry_policy():
    """Return retry configuration as (max_retries, backoff_base_seconds)."""
    return (
        getattr(settings, "HTTP_RETRY_MAX", 3),
        getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15),
    )


def _should_retry(resp: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
    """Retry only on transport errors or HTTP 5xx."""
    if exc is not None:
        return True
    if resp is not None and 500 <= resp.status_code < 600:
        return True
    return False


# ---------------- Address Validation Adapter ---------------- #

class HttpAddressValidator(AddressValidatorPort):
    """HTTP client for the address validation service with retry and circuit breaker."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = base_url or settings.ADDRESS_VALIDATION_BASE_URL
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS

    def validate(self, address: ShippingAddress) -> AddressValidation:
        """Ask the remote service to validate and standardize ``address``.

        Business mappings:
        - 200 → ``AddressValidation`` built from the camelCase body
          (``isValid``, ``standardizedAddress``, ``verificationLevel``,
          ``suggestions``).
        - 422 → invalid address with the returned suggestions; not counted
          as a circuit failure.

        Raises:
            httpx.RequestError: For network/transport errors after retries.
            httpx.HTTPStatusError: For non-retriable non-2xx responses.
            CircuitOpenError: When the circuit is open.
        """
        payload = address.as_dict()
        max_retries, backoff = _retry_policy()
        tries = 0

        state = _address_cb.before_call()
        headers = _request_headers({"X-Circuit-State": state, "X-Retry-Count": "0"})

        try:
            with httpx.Client(timeout=self.timeout) as client:
                while True:
                    resp = None
                    exc = None
                    try:
                        resp = client.post(f"{self.base_url}/validate", json=payload, headers=headers)
                        if resp.status_code == 200:
                            _address_cb.on_success()
                            data = resp.json()
                            return AddressValidation(
                                is_valid=bool(data.get("isValid", False)),
                                standardized_address=data.get("standardizedAddress"),
                                verification_level=data.get("verificationLevel", "full"),
                                suggestions=list(data.get("suggestions") or []),
                            )
                        if resp.status_code == 422:
                            _address_cb.on_success()
                            data = resp.json()
                            return AddressValidation(
                                is_valid=False,
                                verification_level="none",
                                suggestions=list(data.get("suggestions") or []),
                            )
                        if not _should_retry(resp, None):
                            resp.raise_for_status()
                    except httpx.RequestError as e:
                        exc = e

                    tries += 1
                    headers["X-Retry-Count"] = str(tries)

                    if tries > max_retries or not _should_retry(resp, exc):
                        _address_cb.on_failure()
                        if exc:
                            raise exc
                        resp.raise_for_status()

                    sleep_s = backoff * (2 ** (tries - 1))
                    cap = getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5)
                    time.sleep(min(sleep_s, cap))
        finally:
            _address_cb.on_finish()
