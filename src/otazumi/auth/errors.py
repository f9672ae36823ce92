"""Failure kinds surfaced by the account core."""

from __future__ import annotations

import enum


class FailureKind(enum.StrEnum):
    EMAIL_TAKEN = "EmailTaken"
    USERNAME_TAKEN = "UsernameTaken"
    SIGNUP_LIMIT_REACHED = "SignupLimitReached"
    INVALID_CREDENTIALS = "InvalidCredentials"
    WRONG_CURRENT_PASSWORD = "WrongCurrentPassword"
    WRONG_PASSWORD = "WrongPassword"
    NOT_FOUND = "NotFound"
    INVALID_OR_EXPIRED_TOKEN = "InvalidOrExpiredToken"
    ALREADY_VERIFIED = "AlreadyVerified"


class AccountError(Exception):
    """An account operation failed with a known, caller-visible kind.

    The boundary layer maps ``kind`` to a status code and message; the core
    never relies on the message text.
    """

    def __init__(self, kind: FailureKind, detail: str | None = None) -> None:
        super().__init__(detail or kind.value)
        self.kind = kind
