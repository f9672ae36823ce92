"""Library sync router: /api/auth/sync and /api/auth/data."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from otazumi.auth.dependencies import get_current_user, get_sync_reconciler
from otazumi.database import get_session
from otazumi.db.models import User
from otazumi.sync.schemas import SyncRequest, SyncResponse, UserDataResponse
from otazumi.sync.service import SyncReconciler, SyncSnapshot

router = APIRouter(prefix="/api/auth", tags=["Sync"])


@router.post("/sync", response_model=SyncResponse)
async def sync_user_data(
    body: SyncRequest,
    user: User = Depends(get_current_user),
    reconciler: SyncReconciler = Depends(get_sync_reconciler),
    db: AsyncSession = Depends(get_session),
) -> SyncResponse:
    """Replace the submitted collections with the client's snapshot."""
    history = None
    if body.watch_history is not None:
        history = [item.model_dump(by_alias=True) for item in body.watch_history]

    synced = await reconciler.sync(
        user.id,
        SyncSnapshot(favorites=body.favorites, watchlist=body.watchlist, watch_history=history),
    )
    await db.commit()
    return SyncResponse(synced=synced)


@router.get("/data", response_model=UserDataResponse)
async def fetch_user_data(
    user: User = Depends(get_current_user),
    reconciler: SyncReconciler = Depends(get_sync_reconciler),
) -> UserDataResponse:
    """Return the stored favorites, watchlist and history."""
    return UserDataResponse(data=await reconciler.fetch(user.id))
