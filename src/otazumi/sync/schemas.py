"""Request/response schemas for library sync."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from otazumi.sync.service import item_anime_id


class WatchHistoryItem(BaseModel):
    """One watched episode as sent by the client."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    anime_id: str | int
    episode_id: str | int
    episode_number: int
    progress: int = 0
    duration: int = 0
    completed: bool = False
    watched_at: datetime | None = None


def _require_anime_id(items: list[dict[str, Any]] | None) -> list[dict[str, Any]] | None:
    if items is None:
        return None
    for index, item in enumerate(items):
        if item_anime_id(item) is None:
            msg = f"Item {index} needs an 'animeId' or 'id'"
            raise ValueError(msg)
    return items


class SyncRequest(BaseModel):
    """Client snapshot. A missing key leaves that collection untouched; [] clears it."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    favorites: list[dict[str, Any]] | None = None
    watchlist: list[dict[str, Any]] | None = None
    watch_history: list[WatchHistoryItem] | None = None

    @field_validator("favorites", "watchlist")
    @classmethod
    def items_have_anime_id(cls, v: list[dict[str, Any]] | None) -> list[dict[str, Any]] | None:
        return _require_anime_id(v)


class SyncResponse(BaseModel):
    success: bool = True
    message: str = "Data synced successfully"
    synced: dict[str, int] = Field(default_factory=dict)


class UserDataResponse(BaseModel):
    success: bool = True
    data: dict[str, list[dict[str, Any]]]
