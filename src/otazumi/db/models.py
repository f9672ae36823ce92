"""ORM models for accounts, ephemeral tokens, signup counters and synced collections."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from otazumi.db.base import Base, IdType, JSONType, UTCDateTime

# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Maps to the 'users' table."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    username: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)
    password_hash: Mapped[str | None] = mapped_column(String(256), nullable=True)
    avatar: Mapped[str] = mapped_column(Text, nullable=False, default="avatar_1")
    preferences: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    auth_provider: Mapped[str] = mapped_column(String(16), nullable=False, default="local")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    # --- Relationships ---
    ephemeral_tokens: Mapped[list[EphemeralToken]] = relationship(
        "EphemeralToken", back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )
    favorites: Mapped[list[Favorite]] = relationship(
        "Favorite", back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )
    watchlist: Mapped[list[WatchlistItem]] = relationship(
        "WatchlistItem", back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )
    watch_history: Mapped[list[WatchHistoryEntry]] = relationship(
        "WatchHistoryEntry", back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )


# ---------------------------------------------------------------------------
# Ephemeral tokens (email verification + password reset)
# ---------------------------------------------------------------------------


class EphemeralToken(Base):
    """Single-use, time-boxed token mailed to a user."""

    __tablename__ = "ephemeral_tokens"
    __table_args__ = (Index("ix_ephemeral_tokens_user_purpose", "user_id", "purpose"),)

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(IdType, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    purpose: Mapped[str] = mapped_column(String(32), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    user: Mapped[User] = relationship("User", back_populates="ephemeral_tokens")


# ---------------------------------------------------------------------------
# Signup throttle
# ---------------------------------------------------------------------------


class SignupCounter(Base):
    """One row per UTC calendar day."""

    __tablename__ = "signup_counters"

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    date: Mapped[str] = mapped_column(String(10), unique=True, nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


# ---------------------------------------------------------------------------
# Synced collections
# ---------------------------------------------------------------------------


class Favorite(Base):
    """Favorited anime with the client's metadata snapshot."""

    __tablename__ = "favorites"

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        IdType, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    anime_id: Mapped[str] = mapped_column(Text, nullable=False)
    anime_data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    added_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    user: Mapped[User] = relationship("User", back_populates="favorites")


class WatchlistItem(Base):
    """Watchlist entry: snapshot plus a status string."""

    __tablename__ = "watchlist"

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        IdType, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    anime_id: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="watching")
    anime_data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    added_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    user: Mapped[User] = relationship("User", back_populates="watchlist")


class WatchHistoryEntry(Base):
    """One watched episode. Several entries per episode are allowed."""

    __tablename__ = "watch_history"

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        IdType, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    anime_id: Mapped[str] = mapped_column(Text, nullable=False)
    episode_id: Mapped[str] = mapped_column(Text, nullable=False)
    episode_number: Mapped[int] = mapped_column(Integer, nullable=False)
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    watched_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    user: Mapped[User] = relationship("User", back_populates="watch_history")
