"""Sync routes for mobile-to-cloud library synchronization.

The REST endpoint speaks the mobile backup format; the RPC procedures speak
the flattened format. Both run the same reconciliation engine.
"""

import json
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from supabase import Client

from ..auth import CurrentDevice, CurrentUser, DeviceContext
from ..config import Settings, get_settings
from ..database import Database, count_manga, get_last_sync, insert_sync_history, list_sync_history
from ..logging_config import get_logger
from ..models import (
    RpcSyncPushRequest,
    SyncHistoryEntry,
    SyncPushResponse,
    SyncStatusResponse,
)
from ..rate_limit import limiter
from ..sync import (
    BACKUP_FORMAT,
    RPC_FORMAT,
    PayloadValidationError,
    SyncFailedError,
    SyncStore,
    WireFormat,
    parse_document,
    pull_document,
    push_document,
    record_failed_sync,
)
from ..sync.outcome import PULL, PUSH, STATUS_SUCCESS

logger = get_logger("kiroo_sync.routes.sync")

router = APIRouter(tags=["sync"])
rpc_router = APIRouter(prefix="/rpc", tags=["sync"])


async def _record_failure(db: Client, device: DeviceContext, sync_type: str, device_name: str | None, error: Exception):
    """Best-effort ``failed`` audit row; never masks the original error."""
    try:
        await record_failed_sync(db, device.user_id, sync_type, device_name, str(error))
    except Exception as audit_error:
        logger.error(f"Could not write failed {sync_type} audit row for {device.log_prefix}: {audit_error}")


async def run_push(
    db: Client,
    device: DeviceContext,
    body,
    wire: WireFormat,
    settings: Settings,
) -> SyncPushResponse:
    """Validate, reconcile and audit one pushed document."""
    document = parse_document(body, wire)
    device_name = document.device_name or device.device_name or settings.default_device_name
    store = SyncStore(db, device.user_id, settings.sync_insert_retries)

    try:
        outcome = await push_document(store, document, device.log_prefix)
        await outcome.write_audit(db, device.user_id, PUSH, device_name)
    except Exception as e:
        logger.error(f"PUSH FAILED | {device.log_prefix} | {e}", exc_info=True)
        await _record_failure(db, device, PUSH, device_name, e)
        raise SyncFailedError(str(e)) from e

    return SyncPushResponse(
        manga_synced=outcome.manga_synced,
        chapters_synced=outcome.chapters_synced,
        failed_manga=outcome.failed_manga or None,
    )


async def run_pull(db: Client, device: DeviceContext, wire: WireFormat, settings: Settings) -> dict:
    """Serialize the user's library and log a pull audit row."""
    device_name = device.device_name or settings.default_device_name
    logger.info(f"PULL | {device.log_prefix} | format={wire.name}")
    store = SyncStore(db, device.user_id, settings.sync_insert_retries)

    try:
        pulled = await pull_document(store, wire)
        await record_pull(db, device.user_id, device_name, pulled.manga_count, pulled.chapter_count)
    except Exception as e:
        logger.error(f"PULL FAILED | {device.log_prefix} | {e}", exc_info=True)
        await _record_failure(db, device, PULL, device_name, e)
        raise SyncFailedError(str(e)) from e

    logger.info(f"PULL COMPLETE | {device.log_prefix} | manga={pulled.manga_count} chapters={pulled.chapter_count}")
    return pulled.document


async def record_pull(db: Client, user_id: str, device_name: str, manga_count: int, chapter_count: int) -> None:
    await insert_sync_history(
        db,
        user_id,
        sync_type=PULL,
        status=STATUS_SUCCESS,
        device_name=device_name,
        manga_synced=manga_count,
        chapters_synced=chapter_count,
    )


# =============================================================================
# REST (mobile backup format)
# =============================================================================

@router.post("/sync", response_model=SyncPushResponse, response_model_exclude_none=True)
@limiter.limit("30/minute")
async def push_backup(
    request: Request,
    device: CurrentDevice,
    db: Database,
    settings: Annotated[Settings, Depends(get_settings)],
):
    """
    Push a backup-shaped document.

    The body may be the bare document or wrapped as ``{"backup": {...}}``;
    every top-level list is optional.
    """
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise PayloadValidationError("Request body is not valid JSON") from None
    return await run_push(db, device, body, BACKUP_FORMAT, settings)


@router.get("/sync")
async def pull_backup(
    device: CurrentDevice,
    db: Database,
    settings: Annotated[Settings, Depends(get_settings)],
):
    """Full library state in the backup format."""
    return await run_pull(db, device, BACKUP_FORMAT, settings)


# =============================================================================
# RPC procedures
# =============================================================================

@rpc_router.post("/sync.push", response_model=SyncPushResponse, response_model_exclude_none=True)
@limiter.limit("30/minute")
async def rpc_push(
    request: Request,
    payload: RpcSyncPushRequest,
    device: CurrentDevice,
    db: Database,
    settings: Annotated[Settings, Depends(get_settings)],
):
    body = payload.model_dump(by_alias=True, exclude_unset=True)
    return await run_push(db, device, body, RPC_FORMAT, settings)


@rpc_router.get("/sync.pull")
async def rpc_pull(
    device: CurrentDevice,
    db: Database,
    settings: Annotated[Settings, Depends(get_settings)],
):
    return await run_pull(db, device, RPC_FORMAT, settings)


@rpc_router.get("/sync.status", response_model=SyncStatusResponse)
async def sync_status(auth: CurrentUser, db: Database):
    """Last sync and library size for the dashboard."""
    last_sync = await get_last_sync(db, auth.user_id)
    return SyncStatusResponse(
        last_sync=last_sync["created_at"] if last_sync else None,
        manga_count=await count_manga(db, auth.user_id),
        status=last_sync["status"] if last_sync else "never",
    )


@rpc_router.get("/sync.history", response_model=list[SyncHistoryEntry])
async def sync_history(
    auth: CurrentUser,
    db: Database,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
):
    """Audit rows, newest first."""
    return await list_sync_history(db, auth.user_id, limit=limit, offset=offset)
