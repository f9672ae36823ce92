"""Initial schema: users, ephemeral tokens, signup counters and synced collections.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
_ID = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def _user_fk() -> sa.Column:
    return sa.Column("user_id", _ID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)


def upgrade() -> None:
    """Create all account and sync tables."""
    # --- users ---
    op.create_table(
        "users",
        sa.Column("id", _ID, primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("username", sa.String(30), nullable=False),
        sa.Column("password_hash", sa.String(256), nullable=True),
        sa.Column("avatar", sa.Text(), nullable=False, server_default="avatar_1"),
        sa.Column("preferences", _JSON, nullable=False),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("auth_provider", sa.String(16), nullable=False, server_default="local"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.UniqueConstraint("username", name="uq_users_username"),
    )

    # --- ephemeral_tokens ---
    op.create_table(
        "ephemeral_tokens",
        sa.Column("id", _ID, primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column("token", sa.String(128), nullable=False),
        sa.Column("purpose", sa.String(32), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("token", name="uq_ephemeral_tokens_token"),
    )
    op.create_index("ix_ephemeral_tokens_user_purpose", "ephemeral_tokens", ["user_id", "purpose"])

    # --- signup_counters ---
    op.create_table(
        "signup_counters",
        sa.Column("id", _ID, primary_key=True, autoincrement=True),
        sa.Column("date", sa.String(10), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("date", name="uq_signup_counters_date"),
    )

    # --- favorites ---
    op.create_table(
        "favorites",
        sa.Column("id", _ID, primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column("anime_id", sa.Text(), nullable=False),
        sa.Column("anime_data", _JSON, nullable=False),
        sa.Column("added_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_favorites_user_id", "favorites", ["user_id"])

    # --- watchlist ---
    op.create_table(
        "watchlist",
        sa.Column("id", _ID, primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column("anime_id", sa.Text(), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default="watching"),
        sa.Column("anime_data", _JSON, nullable=False),
        sa.Column("added_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_watchlist_user_id", "watchlist", ["user_id"])

    # --- watch_history ---
    op.create_table(
        "watch_history",
        sa.Column("id", _ID, primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column("anime_id", sa.Text(), nullable=False),
        sa.Column("episode_id", sa.Text(), nullable=False),
        sa.Column("episode_number", sa.Integer(), nullable=False),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("duration", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("watched_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_watch_history_user_id", "watch_history", ["user_id"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_index("ix_watch_history_user_id", table_name="watch_history")
    op.drop_table("watch_history")
    op.drop_index("ix_watchlist_user_id", table_name="watchlist")
    op.drop_table("watchlist")
    op.drop_index("ix_favorites_user_id", table_name="favorites")
    op.drop_table("favorites")
    op.drop_table("signup_counters")
    op.drop_index("ix_ephemeral_tokens_user_purpose", table_name="ephemeral_tokens")
    op.drop_table("ephemeral_tokens")
    op.drop_table("users")
