"""
Password hashing and validation using argon2id.

The hasher carries its own cost parameters so they come from configuration
rather than being fixed at import time. Every hash embeds a fresh random salt.
"""

from __future__ import annotations

import argon2

from otazumi.config import Settings, get_settings


class PasswordStrengthError(ValueError):
    """Raised when a password does not meet the length requirements."""


class PasswordHasher:
    """One-way password hashing and verification."""

    def __init__(
        self,
        time_cost: int = 2,
        memory_cost: int = 65536,
        parallelism: int = 1,
    ) -> None:
        self._hasher = argon2.PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            hash_len=32,
            salt_len=16,
            type=argon2.Type.ID,  # argon2id
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> PasswordHasher:
        settings = settings or get_settings()
        return cls(
            time_cost=settings.password_hash_time_cost,
            memory_cost=settings.password_hash_memory_cost,
            parallelism=settings.password_hash_parallelism,
        )

    def hash(self, password: str) -> str:
        """Hash a password. Returns the full encoded hash string."""
        return self._hasher.hash(password)

    def verify(self, password: str, password_hash: str | None) -> bool:
        """
        Verify a password against its hash.

        Returns True if the password matches. Never raises: a missing or
        malformed hash simply fails verification.
        """
        if not password_hash:
            return False
        try:
            return self._hasher.verify(password_hash, password)
        except argon2.exceptions.VerifyMismatchError:
            return False
        except argon2.exceptions.VerificationError:
            return False
        except argon2.exceptions.InvalidHashError:
            return False

    def needs_rehash(self, password_hash: str) -> bool:
        """Check if the hash was made with different cost parameters."""
        try:
            return self._hasher.check_needs_rehash(password_hash)
        except argon2.exceptions.InvalidHashError:
            return True


def validate_password_strength(password: str, settings: Settings | None = None) -> None:
    """
    Validate password meets the length requirements.

    Raises PasswordStrengthError if the password is blank, shorter than
    ``password_min_length`` or longer than ``password_max_length``.
    """
    settings = settings or get_settings()
    if not password or not password.strip():
        msg = "Password cannot be empty"
        raise PasswordStrengthError(msg)
    if len(password) < settings.password_min_length:
        msg = f"Password must be at least {settings.password_min_length} characters"
        raise PasswordStrengthError(msg)
    if len(password) > settings.password_max_length:
        msg = f"Password must not exceed {settings.password_max_length} characters"
        raise PasswordStrengthError(msg)
