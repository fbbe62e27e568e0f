"""Key-management collaborator contract and HTTP implementation.

The HTTP client speaks an Infisical-style KMS REST API. All payloads cross the
boundary base64-encoded; callers deal in ``str`` identifiers and raw bytes.
"""

from __future__ import annotations

import base64
import binascii
import time
from random import random
from typing import Any, Callable, Protocol, TypeVar

from pydantic import BaseModel, ConfigDict

from packages.ledger_shared.http import HttpClient, HttpClientError
from packages.ledger_shared.logging import get_logger, log_context
from resources.adapters.kms.config import KeyManagementSettings
from resources.adapters.kms.errors import KeyManagementError

_LOGGER = get_logger(__name__)

T = TypeVar("T")


class SignatureResult(BaseModel):
    """Signature returned by the KMS for one payload."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    signature: str
    key_id: str
    algorithm: str


class KeyManagementClient(Protocol):
    """Encrypt/decrypt/sign/verify contract consumed by Ledger services."""

    def encrypt(self, plaintext: str) -> str:
        """Return opaque ciphertext for ``plaintext``."""

    def decrypt(self, ciphertext: str) -> str:
        """Return plaintext for ciphertext produced by ``encrypt``."""

    def sign(self, data: bytes, *, algorithm: str | None = None) -> SignatureResult:
        """Return a signature over ``data``."""

    def verify(
        self, data: bytes, signature: str, *, algorithm: str | None = None
    ) -> bool:
        """Return whether ``signature`` is valid for ``data``."""


class HttpKeyManagementClient(KeyManagementClient):
    """KMS client with bounded exponential-backoff retry on retryable failures."""

    def __init__(
        self,
        *,
        settings: KeyManagementSettings,
        http: HttpClient | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings
        self._http = http or HttpClient(
            base_url=settings.base_url,
            timeout_seconds=settings.timeout_seconds,
            headers=_auth_headers(settings.access_token),
        )
        self._sleep = sleep

    def close(self) -> None:
        """Release the underlying HTTP client."""
        self._http.close()

    def encrypt(self, plaintext: str) -> str:
        body = self._post(
            operation="encrypt",
            path=self._key_path(self._settings.encryption_key_id, "encrypt"),
            payload={"plaintext": _b64encode(plaintext.encode("utf-8"))},
        )
        return str(_required(body, "ciphertext", operation="encrypt"))

    def decrypt(self, ciphertext: str) -> str:
        body = self._post(
            operation="decrypt",
            path=self._key_path(self._settings.encryption_key_id, "decrypt"),
            payload={"ciphertext": ciphertext},
        )
        encoded = str(_required(body, "plaintext", operation="decrypt"))
        try:
            return base64.b64decode(encoded, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as exc:
            raise KeyManagementError(
                "kms returned undecodable plaintext",
                operation="decrypt",
                attempts=1,
                cause_type=type(exc).__name__,
            ) from exc

    def sign(self, data: bytes, *, algorithm: str | None = None) -> SignatureResult:
        resolved_algorithm = algorithm or self._settings.signing_algorithm
        body = self._post(
            operation="sign",
            path=self._key_path(self._settings.signing_key_id, "sign"),
            payload={
                "data": _b64encode(data),
                "signingAlgorithm": resolved_algorithm,
                "isDigest": False,
            },
        )
        return SignatureResult(
            signature=str(_required(body, "signature", operation="sign")),
            key_id=str(body.get("keyId") or self._settings.signing_key_id),
            algorithm=str(body.get("signingAlgorithm") or resolved_algorithm),
        )

    def verify(
        self, data: bytes, signature: str, *, algorithm: str | None = None
    ) -> bool:
        body = self._post(
            operation="verify",
            path=self._key_path(self._settings.signing_key_id, "verify"),
            payload={
                "data": _b64encode(data),
                "signature": signature,
                "signingAlgorithm": algorithm or self._settings.signing_algorithm,
                "isDigest": False,
            },
        )
        return bool(_required(body, "signatureValid", operation="verify"))

    def _key_path(self, key_id: str, action: str) -> str:
        """Return the REST path for one key operation."""
        if key_id.strip() == "":
            raise KeyManagementError(
                f"kms key id is not configured for {action}",
                operation=action,
                attempts=0,
            )
        return f"/api/v1/kms/keys/{key_id}/{action}"

    def _post(
        self, *, operation: str, path: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        """POST one JSON payload with retry and return the decoded object."""
        body = self._with_retry(
            operation=operation,
            call=lambda: self._http.post_json(path, json=payload),
        )
        if not isinstance(body, dict):
            raise KeyManagementError(
                "kms returned a non-object response",
                operation=operation,
                attempts=1,
            )
        return body

    def _with_retry(self, *, operation: str, call: Callable[[], T]) -> T:
        """Invoke ``call`` with capped, jittered exponential backoff."""
        backoff = self._settings.backoff_initial_seconds
        attempt = 0
        while True:
            attempt += 1
            try:
                return call()
            except HttpClientError as exc:
                exhausted = attempt >= self._settings.max_attempts
                if not exc.retryable or exhausted:
                    raise KeyManagementError(
                        f"kms {operation} failed",
                        operation=operation,
                        attempts=attempt,
                        cause_type=type(exc).__name__,
                    ) from exc
                delay = self._jittered(backoff)
                with log_context({"operation": operation, "attempt": attempt}):
                    _LOGGER.warning(
                        "KMS call failed; retrying in %.3fs: %s",
                        delay,
                        type(exc).__name__,
                    )
                self._sleep(delay)
                backoff = min(
                    backoff * self._settings.backoff_multiplier,
                    self._settings.backoff_max_seconds,
                )

    def _jittered(self, base: float) -> float:
        """Return ``base`` with symmetric jitter applied, never negative."""
        jitter = base * self._settings.backoff_jitter_ratio * (random() * 2 - 1)
        return max(0.0, base + jitter)


def _auth_headers(access_token: str) -> dict[str, str]:
    """Return bearer auth headers when a token is configured."""
    if access_token.strip() == "":
        return {}
    return {"Authorization": f"Bearer {access_token}"}


def _b64encode(data: bytes) -> str:
    """Return standard base64 text for ``data``."""
    return base64.b64encode(data).decode("ascii")


def _required(body: dict[str, Any], key: str, *, operation: str) -> Any:
    """Return one required response field or raise a typed failure."""
    if key not in body or body[key] is None:
        raise KeyManagementError(
            f"kms {operation} response missing '{key}'",
            operation=operation,
            attempts=1,
        )
    return body[key]
