from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from bearerguard.service.errors import (
    BadSignatureError,
    ConfigurationError,
    InvalidTokenError,
    MalformedTokenError,
)

ALGORITHM = "HS256"
_HEADER = {"alg": ALGORITHM, "typ": "JWT"}


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def _to_numeric_date(value: datetime) -> float | int:
    # Sub-second precision is kept so strict issued_at comparisons stay exact.
    ts = value.timestamp()
    return int(ts) if ts.is_integer() else ts


def _from_numeric_date(payload: dict[str, Any], key: str) -> datetime:
    raw = payload.get(key)
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise MalformedTokenError(f"token claim '{key}' missing or not a NumericDate")
    try:
        return datetime.fromtimestamp(raw, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as exc:
        raise MalformedTokenError(f"token claim '{key}' out of range") from exc


@dataclass(frozen=True)
class ClaimSet:
    """Claims embedded in and protected by a bearer token signature."""

    user_id: int
    username: str
    issued_at: datetime
    not_before: datetime
    expires_at: datetime
    issuer: str
    subject: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "username": self.username,
            "iss": self.issuer,
            "sub": self.subject,
            "exp": _to_numeric_date(self.expires_at),
            "nbf": _to_numeric_date(self.not_before),
            "iat": _to_numeric_date(self.issued_at),
        }

    @classmethod
    def from_payload(cls, payload: Any) -> "ClaimSet":
        """Build claims from a decoded payload; unknown fields are ignored."""
        if not isinstance(payload, dict):
            raise MalformedTokenError("token payload is not an object")
        user_id = payload.get("user_id")
        if isinstance(user_id, bool) or not isinstance(user_id, int):
            raise MalformedTokenError("token claim 'user_id' missing or not an integer")
        strings: dict[str, str] = {}
        for key in ("username", "iss", "sub"):
            value = payload.get(key)
            if not isinstance(value, str):
                raise MalformedTokenError(f"token claim '{key}' missing or not a string")
            strings[key] = value
        return cls(
            user_id=user_id,
            username=strings["username"],
            issued_at=_from_numeric_date(payload, "iat"),
            not_before=_from_numeric_date(payload, "nbf"),
            expires_at=_from_numeric_date(payload, "exp"),
            issuer=strings["iss"],
            subject=strings["sub"],
        )


class TokenSigner:
    """HMAC-SHA-256 signer/verifier for compact three-segment tokens.

    Only ``HS256`` is ever accepted on verification, which rules out ``none``
    and asymmetric-key substitution.
    """

    def __init__(self, secret: bytes | str) -> None:
        key = secret.encode() if isinstance(secret, str) else bytes(secret or b"")
        if not key:
            raise ConfigurationError("token signing key must not be empty")
        self._key = key

    def _sign(self, signing_input: str) -> bytes:
        return hmac.new(self._key, signing_input.encode(), hashlib.sha256).digest()

    def encode(self, payload: dict[str, Any]) -> str:
        header_enc = _encode_segment(json.dumps(_HEADER, separators=(",", ":")).encode())
        payload_enc = _encode_segment(json.dumps(payload, separators=(",", ":")).encode())
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{_encode_segment(self._sign(signing_input))}"

    def decode(self, token: str) -> dict[str, Any]:
        """Verify the token signature and return its raw payload."""
        if not isinstance(token, str) or not token:
            raise MalformedTokenError("token is empty")
        parts = token.split(".")
        if len(parts) != 3:
            raise MalformedTokenError("token must have three segments")
        header_b64, payload_b64, sig_b64 = parts

        try:
            header = json.loads(_decode_segment(header_b64))
        except (binascii.Error, ValueError) as exc:
            raise MalformedTokenError("token header is not valid base64url JSON") from exc
        if not isinstance(header, dict):
            raise MalformedTokenError("token header is not an object")
        if header.get("alg") != ALGORITHM:
            raise BadSignatureError("unexpected signing algorithm")

        expected_sig = _encode_segment(self._sign(f"{header_b64}.{payload_b64}"))
        if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode()):
            raise BadSignatureError()

        try:
            payload = json.loads(_decode_segment(payload_b64))
        except (binascii.Error, ValueError) as exc:
            raise MalformedTokenError("token payload is not valid base64url JSON") from exc
        if not isinstance(payload, dict):
            raise MalformedTokenError("token payload is not an object")
        return payload

    def sign_claims(self, claims: ClaimSet) -> str:
        return self.encode(claims.to_payload())

    def verify_claims(self, token: str, *, issuer: Optional[str] = None) -> ClaimSet:
        claims = ClaimSet.from_payload(self.decode(token))
        if issuer is not None and claims.issuer != issuer:
            raise InvalidTokenError("token issuer mismatch")
        return claims


__all__ = ["ALGORITHM", "ClaimSet", "TokenSigner"]
