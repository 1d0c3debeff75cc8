"""Backup snapshots: immutable named copies of the pull document."""

from typing import Annotated

from dateutil.parser import isoparse
from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..auth import CurrentUser
from ..config import Settings, get_settings
from ..database import Database, create_backup, delete_backup, get_backup, list_backups
from ..logging_config import get_logger
from ..models import BackupCreate, BackupDetail, BackupDownload, BackupSummary, IdRequest, SuccessResponse
from ..sync import BACKUP_FORMAT, SyncStore, document_size, pull_document

logger = get_logger("kiroo_sync.routes.backup")
router = APIRouter(prefix="/rpc", tags=["backup"])


def download_filename(backup: dict) -> str:
    created = backup["created_at"]
    if isinstance(created, str):
        created = isoparse(created)
    return f"kiroo-sync-backup-{backup['name']}-{created.date().isoformat()}.json"


async def _owned_backup(db, backup_id: str, user_id: str) -> dict:
    backup = await get_backup(db, backup_id, user_id)
    if not backup:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Backup not found")
    return backup


@router.get("/backup.list", response_model=list[BackupSummary])
async def backup_list(
    auth: CurrentUser,
    db: Database,
    limit: Annotated[int, Query(ge=1, le=50)] = 10,
    offset: Annotated[int, Query(ge=0)] = 0,
):
    return await list_backups(db, auth.user_id, limit=limit, offset=offset)


@router.get("/backup.get", response_model=BackupDetail)
async def backup_get(id: str, auth: CurrentUser, db: Database):
    return await _owned_backup(db, id, auth.user_id)


@router.post("/backup.create", response_model=BackupSummary)
async def backup_create(
    backup_request: BackupCreate,
    auth: CurrentUser,
    db: Database,
    settings: Annotated[Settings, Depends(get_settings)],
):
    """Snapshot the user's current library under a name."""
    store = SyncStore(db, auth.user_id, settings.sync_insert_retries)
    pulled = await pull_document(store, BACKUP_FORMAT)

    record = await create_backup(
        db,
        auth.user_id,
        name=backup_request.name,
        description=backup_request.description,
        data=pulled.document,
        manga_count=pulled.manga_count,
        chapter_count=pulled.chapter_count,
        size_bytes=document_size(pulled.document),
    )
    if not record:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create backup",
        )
    logger.info(
        f"BACKUP | {auth.user_id} | '{record['name']}' manga={pulled.manga_count} "
        f"chapters={pulled.chapter_count} bytes={record['size_bytes']}"
    )
    return record


@router.post("/backup.delete", response_model=SuccessResponse)
async def backup_delete(delete_request: IdRequest, auth: CurrentUser, db: Database):
    await _owned_backup(db, delete_request.id, auth.user_id)
    await delete_backup(db, delete_request.id, auth.user_id)
    return SuccessResponse()


@router.post("/backup.download", response_model=BackupDownload)
async def backup_download(download_request: IdRequest, auth: CurrentUser, db: Database):
    backup = await _owned_backup(db, download_request.id, auth.user_id)
    return BackupDownload(filename=download_filename(backup), data=backup["data"])
