"""Database utilities for Supabase integration.

The helpers here back the simple CRUD collaborators (API keys, backups, the
sync audit log and the dashboard browsing endpoints). Reconciliation of synced
library state lives in :mod:`kiroo_sync.sync.store`.
"""

from datetime import datetime, timezone
from typing import Annotated

from fastapi import Depends
from supabase import Client, create_client

from .config import Settings, get_settings

_supabase_client: Client | None = None


def get_supabase_client(settings: Settings | None = None) -> Client:
    """Get cached Supabase client."""
    global _supabase_client
    if _supabase_client is None:
        if settings is None:
            settings = get_settings()
        # Prefer new secret key, fall back to legacy service_role_key
        api_key = settings.supabase_secret_key or settings.supabase_service_role_key
        if not api_key:
            raise ValueError("Either SUPABASE_SECRET_KEY or SUPABASE_SERVICE_ROLE_KEY must be set")
        _supabase_client = create_client(settings.supabase_url, api_key)
    return _supabase_client


def get_db(settings: Annotated[Settings, Depends(get_settings)]) -> Client:
    """FastAPI dependency for Supabase client."""
    return get_supabase_client(settings)


# Type alias for dependency injection
Database = Annotated[Client, Depends(get_db)]


# =============================================================================
# Table Names
# =============================================================================

API_KEYS_TABLE = "api_keys"
MANGA_TABLE = "manga"
CHAPTERS_TABLE = "chapters"
CATEGORIES_TABLE = "categories"
MANGA_CATEGORIES_TABLE = "manga_categories"
TRACKING_TABLE = "tracking"
HISTORY_TABLE = "history"
PREFERENCES_TABLE = "preferences"
SOURCE_PREFERENCES_TABLE = "source_preferences"
EXTENSION_REPOS_TABLE = "extension_repos"
SAVED_SEARCHES_TABLE = "saved_searches"
FEEDS_TABLE = "feeds"
BACKUPS_TABLE = "backups"
SYNC_HISTORY_TABLE = "sync_history"

# Children removed together with their manga (mirrors the FK cascades)
MANGA_CHILD_TABLES = (CHAPTERS_TABLE, TRACKING_TABLE, HISTORY_TABLE, MANGA_CATEGORIES_TABLE)

# Auxiliary collections exposed through the data endpoints
DATA_TABLES = {
    "categories": CATEGORIES_TABLE,
    "extensionRepos": EXTENSION_REPOS_TABLE,
    "savedSearches": SAVED_SEARCHES_TABLE,
    "feeds": FEEDS_TABLE,
    "preferences": PREFERENCES_TABLE,
    "sourcePreferences": SOURCE_PREFERENCES_TABLE,
}

# PostgREST puts `in` filters in the query string; keep them short
IN_FILTER_CHUNK = 100


def utcnow_iso() -> str:
    """Current UTC time, millisecond precision (what clients can round-trip)."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000).isoformat()


def chunked(values: list, size: int = IN_FILTER_CHUNK):
    for i in range(0, len(values), size):
        yield values[i:i + size]


# =============================================================================
# API Key Operations
# =============================================================================

async def create_api_key(
    db: Client,
    user_id: str,
    key_hash: str,
    name: str,
    device_name: str | None = None,
) -> dict | None:
    """Create a new API key record."""
    data = {
        "user_id": user_id,
        "key_hash": key_hash,
        "name": name,
        "device_name": device_name,
        "created_at": utcnow_iso(),
    }
    result = db.table(API_KEYS_TABLE).insert(data).execute()
    return result.data[0] if result.data else None


async def list_api_keys(db: Client, user_id: str) -> list[dict]:
    """List a user's API keys, newest first. Digests are never selected."""
    result = (
        db.table(API_KEYS_TABLE)
        .select("id, name, device_name, last_used_at, created_at")
        .eq("user_id", user_id)
        .order("created_at", desc=True)
        .execute()
    )
    return result.data


async def get_api_key(db: Client, key_id: str, user_id: str) -> dict | None:
    """Get an API key by ID (must belong to user)."""
    result = (
        db.table(API_KEYS_TABLE)
        .select("*")
        .eq("id", key_id)
        .eq("user_id", user_id)
        .execute()
    )
    return result.data[0] if result.data else None


async def get_api_key_by_hash(db: Client, key_hash: str) -> dict | None:
    """Look up an API key by its digest (unique index)."""
    result = (
        db.table(API_KEYS_TABLE)
        .select("id, user_id, name, device_name")
        .eq("key_hash", key_hash)
        .limit(1)
        .execute()
    )
    return result.data[0] if result.data else None


async def delete_api_key(db: Client, key_id: str, user_id: str) -> bool:
    """Delete (revoke) an API key."""
    result = (
        db.table(API_KEYS_TABLE)
        .delete()
        .eq("id", key_id)
        .eq("user_id", user_id)
        .execute()
    )
    return len(result.data) > 0


async def update_api_key_last_used(db: Client, key_id: str) -> None:
    """Update the last_used_at timestamp for an API key."""
    db.table(API_KEYS_TABLE).update({"last_used_at": utcnow_iso()}).eq("id", key_id).execute()


# =============================================================================
# Sync History (audit log)
# =============================================================================

async def insert_sync_history(
    db: Client,
    user_id: str,
    sync_type: str,
    status: str,
    device_name: str | None = None,
    manga_synced: int = 0,
    chapters_synced: int = 0,
    error_message: str | None = None,
) -> dict | None:
    """Append one audit row. Rows are never updated."""
    data = {
        "user_id": user_id,
        "device_name": device_name,
        "sync_type": sync_type,
        "manga_synced": manga_synced,
        "chapters_synced": chapters_synced,
        "status": status,
        "error_message": error_message,
        "created_at": utcnow_iso(),
    }
    result = db.table(SYNC_HISTORY_TABLE).insert(data).execute()
    return result.data[0] if result.data else None


async def get_last_sync(db: Client, user_id: str) -> dict | None:
    result = (
        db.table(SYNC_HISTORY_TABLE)
        .select("*")
        .eq("user_id", user_id)
        .order("created_at", desc=True)
        .limit(1)
        .execute()
    )
    return result.data[0] if result.data else None


async def list_sync_history(db: Client, user_id: str, limit: int = 20, offset: int = 0) -> list[dict]:
    result = (
        db.table(SYNC_HISTORY_TABLE)
        .select("*")
        .eq("user_id", user_id)
        .order("created_at", desc=True)
        .range(offset, offset + limit - 1)
        .execute()
    )
    return result.data


# =============================================================================
# Manga Browsing (dashboard)
# =============================================================================

async def count_manga(db: Client, user_id: str) -> int:
    result = db.table(MANGA_TABLE).select("id", count="exact").eq("user_id", user_id).execute()
    return result.count or 0


async def list_manga(
    db: Client,
    user_id: str,
    limit: int | None = None,
    offset: int = 0,
    favorite: bool | None = None,
) -> list[dict]:
    """List manga, most recently modified first."""
    query = db.table(MANGA_TABLE).select("*").eq("user_id", user_id)
    if favorite is not None:
        query = query.eq("favorite", favorite)
    query = query.order("last_modified_at", desc=True)
    if limit is not None:
        query = query.range(offset, offset + limit - 1)
    return query.execute().data


async def get_manga(db: Client, manga_id: str, user_id: str) -> dict | None:
    result = (
        db.table(MANGA_TABLE)
        .select("*")
        .eq("id", manga_id)
        .eq("user_id", user_id)
        .execute()
    )
    return result.data[0] if result.data else None


async def list_children(db: Client, table: str, manga_ids: list[str], columns: str = "*") -> list[dict]:
    """Fetch child rows (chapters, tracking, ...) for a set of manga."""
    rows: list[dict] = []
    for chunk in chunked(manga_ids):
        rows.extend(db.table(table).select(columns).in_("manga_id", chunk).execute().data)
    return rows


async def delete_manga(db: Client, manga_id: str, user_id: str) -> bool:
    """Delete a manga and everything hanging off it."""
    manga = await get_manga(db, manga_id, user_id)
    if not manga:
        return False
    for table in MANGA_CHILD_TABLES:
        db.table(table).delete().eq("manga_id", manga_id).execute()
    result = db.table(MANGA_TABLE).delete().eq("id", manga_id).eq("user_id", user_id).execute()
    return len(result.data) > 0


# =============================================================================
# Backups
# =============================================================================

BACKUP_SUMMARY_COLUMNS = "id, name, description, manga_count, chapter_count, size_bytes, created_at"


async def create_backup(
    db: Client,
    user_id: str,
    name: str,
    data: dict,
    manga_count: int,
    chapter_count: int,
    size_bytes: int,
    description: str | None = None,
) -> dict | None:
    record = {
        "user_id": user_id,
        "name": name,
        "description": description,
        "data": data,
        "manga_count": manga_count,
        "chapter_count": chapter_count,
        "size_bytes": size_bytes,
        "created_at": utcnow_iso(),
    }
    result = db.table(BACKUPS_TABLE).insert(record).execute()
    return result.data[0] if result.data else None


async def list_backups(db: Client, user_id: str, limit: int = 10, offset: int = 0) -> list[dict]:
    result = (
        db.table(BACKUPS_TABLE)
        .select(BACKUP_SUMMARY_COLUMNS)
        .eq("user_id", user_id)
        .order("created_at", desc=True)
        .range(offset, offset + limit - 1)
        .execute()
    )
    return result.data


async def get_backup(db: Client, backup_id: str, user_id: str) -> dict | None:
    result = (
        db.table(BACKUPS_TABLE)
        .select("*")
        .eq("id", backup_id)
        .eq("user_id", user_id)
        .execute()
    )
    return result.data[0] if result.data else None


async def delete_backup(db: Client, backup_id: str, user_id: str) -> bool:
    result = (
        db.table(BACKUPS_TABLE)
        .delete()
        .eq("id", backup_id)
        .eq("user_id", user_id)
        .execute()
    )
    return len(result.data) > 0


# =============================================================================
# Auxiliary Data
# =============================================================================

async def list_user_rows(db: Client, table: str, user_id: str, order_by: str | None = None) -> list[dict]:
    query = db.table(table).select("*").eq("user_id", user_id)
    if order_by:
        query = query.order(order_by)
    return query.execute().data


async def count_user_rows(db: Client, table: str, user_id: str) -> int:
    result = db.table(table).select("id", count="exact").eq("user_id", user_id).execute()
    return result.count or 0


async def delete_user_row(db: Client, table: str, row_id: str, user_id: str) -> bool:
    result = db.table(table).delete().eq("id", row_id).eq("user_id", user_id).execute()
    return len(result.data) > 0


async def reset_user_data(db: Client, user_id: str) -> None:
    """Delete everything a user has synced. API keys are kept."""
    manga_ids = [row["id"] for row in db.table(MANGA_TABLE).select("id").eq("user_id", user_id).execute().data]
    for chunk in chunked(manga_ids):
        for table in MANGA_CHILD_TABLES:
            db.table(table).delete().in_("manga_id", chunk).execute()
    for table in (
        MANGA_TABLE,
        CATEGORIES_TABLE,
        EXTENSION_REPOS_TABLE,
        SAVED_SEARCHES_TABLE,
        FEEDS_TABLE,
        PREFERENCES_TABLE,
        SOURCE_PREFERENCES_TABLE,
        SYNC_HISTORY_TABLE,
        BACKUPS_TABLE,
    ):
        db.table(table).delete().eq("user_id", user_id).execute()
