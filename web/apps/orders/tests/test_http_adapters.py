"""HTTP address validation adapter: mapping, retries and the circuit breaker.

``httpx.Client.post`` is monkeypatched, so no network is involved.
"""
import httpx
import pytest

from apps.orders import http_adapters
from apps.orders.domain import ShippingAddress
from apps.orders.http_adapters import CircuitBreaker, CircuitOpenError, HttpAddressValidator
from gateway.middleware import REQUEST_ID_CTX

ADDRESS = ShippingAddress(
    name="Ana", phone="+34 600 000 000", country="ES", province="Madrid", city="Madrid", address_line_1="Gran Via 1"
)


class DummyResp:
    """Minimal httpx-like response stub."""

    def __init__(self, status_code=200, json_data=None):
        self.status_code = status_code
        self._json = json_data or {}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise httpx.HTTPStatusError("err", request=None, response=None)

    def json(self):
        return self._json


@pytest.fixture(autouse=True)
def fast_retries(settings, monkeypatch):
    settings.HTTP_RETRY_BACKOFF_BASE = 0.0
    monkeypatch.setattr("time.sleep", lambda *a, **k: None, raising=True)
    # fresh breaker per test so state does not leak between tests
    monkeypatch.setattr(http_adapters, "_address_cb", CircuitBreaker("address-validation", 3, 30.0))


def test_valid_address_maps_camel_case_body(monkeypatch):
    seen = {}

    def fake_post(self, url, json=None, headers=None, **kw):
        seen.update(url=url, json=json, headers=headers)
        return DummyResp(
            200,
            {"isValid": True, "standardizedAddress": "Gran Via 1\nMadrid, ES", "verificationLevel": "full"},
        )

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    result = HttpAddressValidator(base_url="http://addr:9003").validate(ADDRESS)

    assert result.is_valid is True
    assert result.standardized_address == "Gran Via 1\nMadrid, ES"
    assert result.verification_level == "full"
    assert seen["url"] == "http://addr:9003/validate"
    assert seen["json"]["city"] == "Madrid"
    assert "company" not in seen["json"]


def test_422_is_an_invalid_address_with_suggestions(monkeypatch):
    def fake_post(self, url, json=None, headers=None, **kw):
        return DummyResp(422, {"suggestions": ["Check the postal code"]})

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    result = HttpAddressValidator(base_url="http://x").validate(ADDRESS)

    assert result.is_valid is False
    assert result.suggestions == ["Check the postal code"]
    assert http_adapters._address_cb.state == "CLOSED"


def test_retries_on_5xx_then_succeeds(monkeypatch, settings):
    settings.HTTP_RETRY_MAX = 1
    calls = {"n": 0}

    def fake_post(self, url, json=None, headers=None, **kw):
        calls["n"] += 1
        if calls["n"] == 1:
            return DummyResp(503)
        assert headers["X-Retry-Count"] == "1"
        return DummyResp(200, {"isValid": True})

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    assert HttpAddressValidator(base_url="http://x").validate(ADDRESS).is_valid is True
    assert calls["n"] == 2


def test_network_error_propagates_after_retries(monkeypatch, settings):
    settings.HTTP_RETRY_MAX = 2
    calls = {"n": 0}

    def fake_post(self, url, json=None, headers=None, **kw):
        calls["n"] += 1
        raise httpx.ConnectError("boom")

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    with pytest.raises(httpx.ConnectError):
        HttpAddressValidator(base_url="http://x").validate(ADDRESS)
    assert calls["n"] == 3


def test_no_retry_on_4xx(monkeypatch, settings):
    settings.HTTP_RETRY_MAX = 3
    calls = {"n": 0}

    def fake_post(self, url, json=None, headers=None, **kw):
        calls["n"] += 1
        return DummyResp(400)

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    with pytest.raises(httpx.HTTPStatusError):
        HttpAddressValidator(base_url="http://x").validate(ADDRESS)
    assert calls["n"] == 1


def test_circuit_opens_after_repeated_failures(monkeypatch, settings):
    settings.HTTP_RETRY_MAX = 0
    calls = {"n": 0}

    def fake_post(self, url, json=None, headers=None, **kw):
        calls["n"] += 1
        raise httpx.ConnectError("down")

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    validator = HttpAddressValidator(base_url="http://x")
    for _ in range(3):
        with pytest.raises(httpx.ConnectError):
            validator.validate(ADDRESS)

    with pytest.raises(CircuitOpenError):
        validator.validate(ADDRESS)
    assert calls["n"] == 3


def test_successful_half_open_trial_closes_the_circuit(monkeypatch):
    now = {"t": 1000.0}
    monkeypatch.setattr(http_adapters.time, "monotonic", lambda: now["t"])
    cb = CircuitBreaker("t", fail_threshold=1, reset_timeout=10.0)

    cb.on_failure()
    assert cb.state == "OPEN"
    now["t"] += 10.0
    assert cb.state == "HALF_OPEN"

    cb.before_call()
    with pytest.raises(CircuitOpenError):
        cb.before_call()
    cb.on_success()
    assert cb.state == "CLOSED"


def test_failed_half_open_trial_reopens(monkeypatch):
    now = {"t": 0.0}
    monkeypatch.setattr(http_adapters.time, "monotonic", lambda: now["t"])
    cb = CircuitBreaker("t", fail_threshold=1, reset_timeout=5.0)
    cb.on_failure()
    now["t"] += 5.0
    cb.before_call()
    cb.on_failure()
    assert cb.state == "OPEN"


def test_request_id_is_propagated(monkeypatch):
    seen = {}

    def fake_post(self, url, json=None, headers=None, **kw):
        seen.update(headers)
        return DummyResp(200, {"isValid": True})

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    token = REQUEST_ID_CTX.set("rid-123")
    try:
        HttpAddressValidator(base_url="http://x").validate(ADDRESS)
    finally:
        REQUEST_ID_CTX.reset(token)
    assert seen["X-Request-ID"] == "rid-123"


def test_invalid_address_answer_on_the_trial_call_closes_the_circuit(monkeypatch):
    now = {"t": 0.0}
    monkeypatch.setattr(http_adapters.time, "monotonic", lambda: now["t"])
    cb = CircuitBreaker("address-validation", fail_threshold=1, reset_timeout=30.0)
    monkeypatch.setattr(http_adapters, "_address_cb", cb)

    def fake_post(self, url, json=None, headers=None, **kw):
        assert headers["X-Circuit-State"] == "HALF_OPEN"
        return DummyResp(422, {"suggestions": ["Add a district"]})

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    cb.on_failure()
    with pytest.raises(CircuitOpenError):
        HttpAddressValidator(base_url="http://x").validate(ADDRESS)

    now["t"] += 30.0
    result = HttpAddressValidator(base_url="http://x").validate(ADDRESS)

    assert result.is_valid is False
    assert cb.state == "CLOSED"
