"""Admin API routes for archived accounts and chat transcripts."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from ..core import AdminDep, SessionDep
from ..schemas import (
    ArchivedChatResponse,
    ArchivedRecordDetail,
    ArchivedRecordSummary,
    RestoreResponse,
)
from ..services import ArchiveStore

router = APIRouter(prefix="/admin", tags=["archive"])


def get_archive_store(session: SessionDep) -> ArchiveStore:
    return ArchiveStore(session)


ArchiveStoreDep = Annotated[ArchiveStore, Depends(get_archive_store)]


@router.get("/archive", response_model=list[ArchivedRecordSummary])
async def list_archive(
    current_user: AdminDep,
    store: ArchiveStoreDep,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """Archive entries, newest first, without their snapshots."""
    records = await store.list_archived(limit=limit, offset=offset)
    return [ArchivedRecordSummary.model_validate(r) for r in records]


@router.get("/archive/{archive_id}", response_model=ArchivedRecordDetail)
async def get_archive_entry(archive_id: str, current_user: AdminDep, store: ArchiveStoreDep):
    record = await store.get_archived(archive_id)
    return ArchivedRecordDetail.model_validate(record)


@router.post("/archive/{archive_id}/restore", response_model=RestoreResponse)
async def restore_archive_entry(archive_id: str, current_user: AdminDep, store: ArchiveStoreDep):
    """Restore a snapshot; rows whose id is live again are skipped."""
    result = await store.restore(archive_id, current_user.actor)
    return RestoreResponse.model_validate(result)


@router.get("/archived-chats", response_model=list[ArchivedChatResponse])
async def list_archived_chats(
    current_user: AdminDep,
    store: ArchiveStoreDep,
    search: str | None = Query(None, max_length=80),
    limit: int = Query(100, ge=1, le=500),
):
    chats = await store.list_archived_chats(search=search, limit=limit)
    return [ArchivedChatResponse.model_validate(c) for c in chats]
