"""
Replace-semantics sync of favorites, watchlist and watch history.

Each submitted collection replaces the stored one wholesale: delete, then
insert. The two steps are separate statements, so a concurrent reader can
observe the collection empty in between. That window is accepted for
last-write-wins personal data.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import delete, select

from otazumi.db.models import Favorite, WatchHistoryEntry, WatchlistItem

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

DEFAULT_WATCHLIST_STATUS = "watching"

Item = Mapping[str, Any]


@dataclass
class SyncSnapshot:
    """Client-submitted collections. ``None`` leaves a collection untouched."""

    favorites: Sequence[Item] | None = None
    watchlist: Sequence[Item] | None = None
    watch_history: Sequence[Item] | None = None


def item_anime_id(item: Item) -> str | None:
    """``animeId``, else ``id``, as a string. Missing and blank values count as absent."""
    for key in ("animeId", "id"):
        value = item.get(key)
        if value is None or isinstance(value, bool):
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def _anime_id(item: Item) -> str:
    anime_id = item_anime_id(item)
    if anime_id is None:
        msg = "Item has neither 'animeId' nor 'id'"
        raise ValueError(msg)
    return anime_id


def _parse_watched_at(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, int | float):
        # JS clients send epoch milliseconds
        parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        return datetime.now(timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def history_entry_to_dict(entry: WatchHistoryEntry) -> dict[str, Any]:
    """Stored history row in the client's field names."""
    return {
        "id": entry.id,
        "userId": entry.user_id,
        "animeId": entry.anime_id,
        "episodeId": entry.episode_id,
        "episodeNumber": entry.episode_number,
        "progress": entry.progress,
        "duration": entry.duration,
        "completed": entry.completed,
        "watchedAt": entry.watched_at.isoformat(),
    }


class SyncReconciler:
    """Writes client snapshots over a user's stored collections."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def sync(self, user_id: int, snapshot: SyncSnapshot) -> dict[str, int]:
        """
        Replace every collection present in ``snapshot``.

        Returns:
            Rows written per collection, keyed ``favorites``, ``watchlist``
            and ``watchHistory``; absent collections are not reported.
        """
        synced: dict[str, int] = {}
        now = datetime.now(timezone.utc)

        if snapshot.favorites is not None:
            await self.db.execute(delete(Favorite).where(Favorite.user_id == user_id))
            self.db.add_all(
                Favorite(
                    user_id=user_id,
                    anime_id=_anime_id(item),
                    anime_data=dict(item),
                    added_at=now,
                )
                for item in snapshot.favorites
            )
            synced["favorites"] = len(snapshot.favorites)

        if snapshot.watchlist is not None:
            await self.db.execute(delete(WatchlistItem).where(WatchlistItem.user_id == user_id))
            self.db.add_all(
                WatchlistItem(
                    user_id=user_id,
                    anime_id=_anime_id(item),
                    status=item.get("status") or DEFAULT_WATCHLIST_STATUS,
                    anime_data=dict(item),
                    added_at=now,
                    updated_at=now,
                )
                for item in snapshot.watchlist
            )
            synced["watchlist"] = len(snapshot.watchlist)

        if snapshot.watch_history is not None:
            await self.db.execute(delete(WatchHistoryEntry).where(WatchHistoryEntry.user_id == user_id))
            self.db.add_all(
                WatchHistoryEntry(
                    user_id=user_id,
                    anime_id=str(item["animeId"]),
                    episode_id=str(item["episodeId"]),
                    episode_number=int(item["episodeNumber"]),
                    progress=int(item.get("progress") or 0),
                    duration=int(item.get("duration") or 0),
                    completed=bool(item.get("completed") or False),
                    watched_at=_parse_watched_at(item.get("watchedAt")),
                )
                for item in snapshot.watch_history
            )
            synced["watchHistory"] = len(snapshot.watch_history)

        await self.db.flush()
        logger.info("user_data_synced", user_id=user_id, **synced)
        return synced

    async def fetch(self, user_id: int) -> dict[str, list[dict[str, Any]]]:
        """Return the stored snapshot of all three collections."""
        favorites = await self.db.execute(
            select(Favorite).where(Favorite.user_id == user_id).order_by(Favorite.id)
        )
        watchlist = await self.db.execute(
            select(WatchlistItem).where(WatchlistItem.user_id == user_id).order_by(WatchlistItem.id)
        )
        history = await self.db.execute(
            select(WatchHistoryEntry).where(WatchHistoryEntry.user_id == user_id).order_by(WatchHistoryEntry.id)
        )
        return {
            "favorites": [dict(f.anime_data or {}) for f in favorites.scalars()],
            "watchlist": [{**(w.anime_data or {}), "status": w.status} for w in watchlist.scalars()],
            "watchHistory": [history_entry_to_dict(h) for h in history.scalars()],
        }
