"""
Bearer token issuance and verification.

Tokens carry the user id (``sub``), issue time and expiry. The signing
algorithm is configuration: HMAC algorithms sign with ``jwt_secret``, RSA and
EC algorithms read PEM keys from disk.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import jwt

from otazumi.config import Settings, get_settings

TOKEN_TYPE = "access"


class TokenFailure(enum.StrEnum):
    EXPIRED = "expired"
    MALFORMED = "malformed"
    BAD_SIGNATURE = "bad_signature"


class TokenVerificationError(Exception):
    """A bearer token was rejected. ``kind`` says why."""

    def __init__(self, kind: TokenFailure, message: str) -> None:
        super().__init__(message)
        self.kind = kind


@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    issued_at: datetime
    expires_at: datetime


class BearerTokenCodec:
    """Signs and verifies access tokens for one issuer and key set."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.algorithm = self.settings.jwt_algorithm
        self._signing_key: str | None = None
        self._verifying_key: str | None = None

    def _load_keys(self) -> tuple[str, str]:
        """Resolve signing/verifying keys (cached after first call)."""
        if self._signing_key is None or self._verifying_key is None:
            if self.algorithm.startswith("HS"):
                self._signing_key = self._verifying_key = self.settings.jwt_secret
            else:
                self._signing_key = Path(self.settings.jwt_private_key_path).read_text()
                self._verifying_key = Path(self.settings.jwt_public_key_path).read_text()
        return self._signing_key, self._verifying_key

    def issue(
        self,
        user_id: int,
        ttl: timedelta | None = None,
        *,
        now: datetime | None = None,
    ) -> str:
        """
        Create a signed access token.

        Args:
            user_id: The user's database ID.
            ttl: Lifetime of the token. Defaults to ``jwt_token_ttl_seconds``.
            now: Issue time; defaults to the current time.

        Returns:
            Encoded JWT string.
        """
        signing_key, _ = self._load_keys()
        if ttl is None:
            ttl = timedelta(seconds=self.settings.jwt_token_ttl_seconds)
        issued_at = (now or datetime.now(timezone.utc)).replace(microsecond=0)
        payload: dict[str, Any] = {
            "sub": str(user_id),
            "iat": issued_at,
            "exp": issued_at + ttl,
            "iss": self.settings.jwt_issuer,
            "type": TOKEN_TYPE,
        }
        return jwt.encode(payload, signing_key, algorithm=self.algorithm)

    def verify(self, token: str) -> TokenClaims:
        """
        Verify signature, issuer and expiry, and return the claims.

        Raises:
            TokenVerificationError: with kind EXPIRED, BAD_SIGNATURE or MALFORMED.
        """
        _, verifying_key = self._load_keys()
        try:
            payload: dict[str, Any] = jwt.decode(
                token,
                verifying_key,
                algorithms=[self.algorithm],
                issuer=self.settings.jwt_issuer,
                options={"require": ["sub", "iat", "exp"]},
            )
        except jwt.ExpiredSignatureError:
            raise TokenVerificationError(TokenFailure.EXPIRED, "Token has expired") from None
        except (jwt.InvalidSignatureError, jwt.InvalidAlgorithmError):
            raise TokenVerificationError(TokenFailure.BAD_SIGNATURE, "Invalid token") from None
        except jwt.InvalidTokenError:
            raise TokenVerificationError(TokenFailure.MALFORMED, "Invalid token") from None

        if payload.get("type") != TOKEN_TYPE:
            raise TokenVerificationError(TokenFailure.MALFORMED, "Invalid token")
        try:
            user_id = int(payload["sub"])
        except (TypeError, ValueError):
            raise TokenVerificationError(TokenFailure.MALFORMED, "Invalid token") from None

        return TokenClaims(
            user_id=user_id,
            issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )

    @staticmethod
    def decode_unsafe(token: str) -> dict[str, Any] | None:
        """
        Decode claims WITHOUT checking signature or expiry.

        Only for display purposes; never authorize anything from the result.
        """
        try:
            payload: dict[str, Any] = jwt.decode(token, options={"verify_signature": False})
        except jwt.InvalidTokenError:
            return None
        return payload
