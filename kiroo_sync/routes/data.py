"""Auxiliary collections (categories, repos, searches, feeds, preferences)."""

from fastapi import APIRouter, HTTPException, status

from ..auth import CurrentUser
from ..database import (
    CATEGORIES_TABLE,
    DATA_TABLES,
    EXTENSION_REPOS_TABLE,
    FEEDS_TABLE,
    PREFERENCES_TABLE,
    SAVED_SEARCHES_TABLE,
    SOURCE_PREFERENCES_TABLE,
    Database,
    count_user_rows,
    delete_user_row,
    list_user_rows,
    reset_user_data,
)
from ..logging_config import get_logger
from ..models import DataStats, IdRequest, SuccessResponse
from .manga import camelize

logger = get_logger("kiroo_sync.routes.data")
router = APIRouter(prefix="/rpc", tags=["data"])


async def _rows(db, table: str, user_id: str, order_by: str | None = None) -> list[dict]:
    return [camelize(row) for row in await list_user_rows(db, table, user_id, order_by)]


async def _delete_owned(db, table: str, row_id: str, user_id: str, label: str) -> SuccessResponse:
    if not await delete_user_row(db, table, row_id, user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{label} not found")
    return SuccessResponse()


@router.get("/data.categories")
async def categories(auth: CurrentUser, db: Database):
    return await _rows(db, CATEGORIES_TABLE, auth.user_id, order_by="order")


@router.get("/data.extensionRepos")
async def extension_repos(auth: CurrentUser, db: Database):
    return await _rows(db, EXTENSION_REPOS_TABLE, auth.user_id)


@router.post("/data.deleteExtensionRepo", response_model=SuccessResponse)
async def delete_extension_repo(request: IdRequest, auth: CurrentUser, db: Database):
    return await _delete_owned(db, EXTENSION_REPOS_TABLE, request.id, auth.user_id, "Extension repo")


@router.get("/data.savedSearches")
async def saved_searches(auth: CurrentUser, db: Database):
    return await _rows(db, SAVED_SEARCHES_TABLE, auth.user_id)


@router.post("/data.deleteSavedSearch", response_model=SuccessResponse)
async def delete_saved_search(request: IdRequest, auth: CurrentUser, db: Database):
    return await _delete_owned(db, SAVED_SEARCHES_TABLE, request.id, auth.user_id, "Saved search")


@router.get("/data.feeds")
async def feeds(auth: CurrentUser, db: Database):
    return await _rows(db, FEEDS_TABLE, auth.user_id)


@router.post("/data.deleteFeed", response_model=SuccessResponse)
async def delete_feed(request: IdRequest, auth: CurrentUser, db: Database):
    return await _delete_owned(db, FEEDS_TABLE, request.id, auth.user_id, "Feed")


@router.get("/data.preferences")
async def preferences(auth: CurrentUser, db: Database):
    return await _rows(db, PREFERENCES_TABLE, auth.user_id)


@router.get("/data.sourcePreferences")
async def source_preferences(auth: CurrentUser, db: Database):
    return await _rows(db, SOURCE_PREFERENCES_TABLE, auth.user_id)


@router.get("/data.stats", response_model=DataStats)
async def stats(auth: CurrentUser, db: Database):
    counts = {name: await count_user_rows(db, table, auth.user_id) for name, table in DATA_TABLES.items()}
    return DataStats.model_validate(counts)


@router.post("/data.resetAllData", response_model=SuccessResponse)
async def reset_all_data(auth: CurrentUser, db: Database):
    """Delete every synced row, snapshot and audit entry. API keys survive."""
    await reset_user_data(db, auth.user_id)
    logger.warning(f"RESET | {auth.user_id} | all synced data deleted")
    return SuccessResponse()
