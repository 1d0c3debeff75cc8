"""Device API key management for the dashboard."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..auth import CurrentUser, generate_api_key, hash_api_key
from ..config import Settings, get_settings
from ..database import Database, create_api_key, delete_api_key, get_api_key, list_api_keys
from ..logging_config import get_logger, log_auth_event
from ..models import ApiKeyCreate, ApiKeyCreated, ApiKeyInfo, IdRequest, SuccessResponse
from ..rate_limit import limiter

logger = get_logger("kiroo_sync.routes.api_keys")
router = APIRouter(prefix="/rpc", tags=["api-keys"])


@router.get("/apiKeys.list", response_model=list[ApiKeyInfo])
async def list_keys(auth: CurrentUser, db: Database):
    """A user's keys, newest first. Digests are never returned."""
    return await list_api_keys(db, auth.user_id)


@router.post("/apiKeys.create", response_model=ApiKeyCreated)
@limiter.limit("10/minute")
async def create_key(
    request: Request,
    key_request: ApiKeyCreate,
    auth: CurrentUser,
    db: Database,
    settings: Annotated[Settings, Depends(get_settings)],
):
    """
    Create a device key.

    Returns the raw key ONCE - it cannot be retrieved again.
    """
    raw_key = generate_api_key(settings)
    key_record = await create_api_key(
        db,
        user_id=auth.user_id,
        key_hash=hash_api_key(raw_key),
        name=key_request.name,
        device_name=key_request.device_name,
    )
    if not key_record:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create API key",
        )

    log_auth_event("api_key_created", f"user={auth.user_id} key={key_record['id']}")
    return ApiKeyCreated(
        id=str(key_record["id"]),
        name=key_record["name"],
        device_name=key_record.get("device_name"),
        key=raw_key,
        created_at=key_record["created_at"],
    )


@router.post("/apiKeys.revoke", response_model=SuccessResponse)
async def revoke_key(revoke_request: IdRequest, auth: CurrentUser, db: Database):
    """Delete a key. Keys of other users are reported as not found."""
    key = await get_api_key(db, revoke_request.id, auth.user_id)
    if not key:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="API key not found")

    await delete_api_key(db, revoke_request.id, auth.user_id)
    log_auth_event("api_key_revoked", f"user={auth.user_id} key={revoke_request.id}")
    return SuccessResponse()
