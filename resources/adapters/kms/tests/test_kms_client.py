"""Unit tests for the HTTP key-management client."""

from __future__ import annotations

import base64
import json

import httpx
import pytest

from packages.ledger_shared.http import HttpClient
from resources.adapters.kms.client import HttpKeyManagementClient
from resources.adapters.kms.config import KeyManagementSettings
from resources.adapters.kms.errors import KeyManagementError


def _settings(**overrides: object) -> KeyManagementSettings:
    values: dict[str, object] = {
        "base_url": "https://kms.test",
        "access_token": "token-1",
        "encryption_key_id": "enc-key",
        "signing_key_id": "sig-key",
        "max_attempts": 3,
        "backoff_initial_seconds": 0.1,
        "backoff_max_seconds": 0.15,
        "backoff_jitter_ratio": 0.0,
    }
    values.update(overrides)
    return KeyManagementSettings.model_validate(values)


def _client(handler, *, sleeps: list[float] | None = None, **overrides: object):
    settings = _settings(**overrides)
    http = HttpClient(
        base_url=settings.base_url,
        headers={"Authorization": "Bearer token-1"},
        transport=httpx.MockTransport(handler),
    )
    recorded = sleeps if sleeps is not None else []
    return HttpKeyManagementClient(settings=settings, http=http, sleep=recorded.append)


def test_encrypt_sends_base64_plaintext_to_key_endpoint() -> None:
    """Encrypt should post base64 plaintext to the encryption key path."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ciphertext": "cipher-1"}, request=request)

    client = _client(handler)
    assert client.encrypt("user-42") == "cipher-1"

    request = seen[0]
    assert request.url.path == "/api/v1/kms/keys/enc-key/encrypt"
    body = json.loads(request.content)
    assert base64.b64decode(body["plaintext"]) == b"user-42"
    assert request.headers["Authorization"] == "Bearer token-1"


def test_decrypt_decodes_base64_plaintext() -> None:
    """Decrypt should return the UTF-8 plaintext decoded from base64."""

    def handler(request: httpx.Request) -> httpx.Response:
        encoded = base64.b64encode(b"user-42").decode("ascii")
        return httpx.Response(200, json={"plaintext": encoded}, request=request)

    assert _client(handler).decrypt("cipher-1") == "user-42"


def test_sign_and_verify_use_configured_algorithm() -> None:
    """Sign/verify should carry the configured algorithm and base64 data."""
    bodies: list[dict[str, object]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        bodies.append(body)
        if request.url.path.endswith("/sign"):
            return httpx.Response(
                200,
                json={"signature": "sig", "keyId": "sig-key", "signingAlgorithm": "RSA-4096"},
                request=request,
            )
        return httpx.Response(200, json={"signatureValid": True}, request=request)

    client = _client(handler)
    result = client.sign(b"canonical")
    assert result.signature == "sig"
    assert result.key_id == "sig-key"
    assert result.algorithm == "RSA-4096"
    assert client.verify(b"canonical", "sig") is True
    assert bodies[0]["signingAlgorithm"] == "RSA-4096"
    assert base64.b64decode(str(bodies[1]["data"])) == b"canonical"


def test_retryable_failures_back_off_then_succeed() -> None:
    """5xx responses should be retried with capped exponential delays."""
    calls = {"count": 0}
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] < 3:
            return httpx.Response(503, text="busy", request=request)
        return httpx.Response(200, json={"ciphertext": "ok"}, request=request)

    client = _client(handler, sleeps=sleeps)
    assert client.encrypt("user-1") == "ok"
    assert calls["count"] == 3
    assert sleeps == pytest.approx([0.1, 0.15])


def test_exhausted_retries_raise_key_management_error() -> None:
    """Exhausting attempts should surface a distinct typed failure."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="bad gateway", request=request)

    client = _client(handler, max_attempts=2)
    with pytest.raises(KeyManagementError) as exc_info:
        client.encrypt("user-1")

    assert exc_info.value.attempts == 2
    assert exc_info.value.operation == "encrypt"
    assert exc_info.value.to_error().code == "KEY_MANAGEMENT_FAILURE"


def test_non_retryable_status_fails_without_retry() -> None:
    """4xx responses other than 429 should not be retried."""
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(403, text="forbidden", request=request)

    with pytest.raises(KeyManagementError):
        _client(handler).decrypt("cipher")
    assert calls["count"] == 1


def test_transport_errors_are_retried() -> None:
    """Connection failures should be retried like 5xx responses."""
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] == 1:
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(200, json={"signatureValid": False}, request=request)

    assert _client(handler).verify(b"x", "sig") is False
    assert calls["count"] == 2


def test_missing_key_id_fails_before_any_call() -> None:
    """Unconfigured key ids should raise without issuing requests."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(KeyManagementError, match="not configured"):
        _client(handler, encryption_key_id="").encrypt("user-1")


def test_settings_reject_inverted_backoff_bounds() -> None:
    """Initial backoff above the ceiling is a configuration error."""
    with pytest.raises(ValueError):
        _settings(backoff_initial_seconds=5.0, backoff_max_seconds=1.0)
