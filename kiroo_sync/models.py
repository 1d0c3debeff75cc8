"""Pydantic models for API requests and responses.

Mobile clients and the dashboard speak camelCase, so every model serializes
by alias while still accepting snake_case field names.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class IdRequest(BaseModel):
    """Body of every mutation that targets one row."""
    id: str = Field(..., min_length=1)


class SuccessResponse(BaseModel):
    success: bool = True


# =============================================================================
# Sync Models
# =============================================================================

class SyncPushResponse(CamelModel):
    """Outcome of one push."""
    success: bool = True
    manga_synced: int
    chapters_synced: int
    failed_manga: list[str] | None = None  # Omitted when every manga synced


class RpcSyncPushRequest(CamelModel):
    """Flattened sync document sent to ``sync.push``.

    Only the envelope is validated here; entries are reconciled field by field
    by the engine, which also understands the legacy backup key names kept in
    the extra fields.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    manga: list[dict[str, Any]] | None = None
    categories: list[dict[str, Any]] | None = None
    sources: list[dict[str, Any]] | None = None
    preferences: list[dict[str, Any]] | None = None
    source_preferences: list[dict[str, Any]] | None = None
    extension_repos: list[dict[str, Any]] | None = None
    saved_searches: list[dict[str, Any]] | None = None
    feeds: list[dict[str, Any]] | None = None
    device_name: str | None = Field(default=None, max_length=100)


class SyncStatusResponse(CamelModel):
    last_sync: datetime | None = None
    manga_count: int
    status: str  # success | partial | failed | never


class SyncHistoryEntry(CamelModel):
    id: str
    device_name: str | None = None
    sync_type: str
    manga_synced: int = 0
    chapters_synced: int = 0
    status: str
    error_message: str | None = None
    created_at: datetime


# =============================================================================
# API Key Models
# =============================================================================

class ApiKeyCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    device_name: str | None = Field(default=None, max_length=100)


class ApiKeyInfo(CamelModel):
    """API key as listed; the digest is never exposed."""
    id: str
    name: str
    device_name: str | None = None
    last_used_at: datetime | None = None
    created_at: datetime


class ApiKeyCreated(CamelModel):
    id: str
    name: str
    device_name: str | None = None
    key: str  # Raw key, returned exactly once
    created_at: datetime
    message: str = "Save this API key - it will not be shown again!"


# =============================================================================
# Manga Models
# =============================================================================

class MangaListItem(CamelModel):
    id: str
    source: int
    url: str
    title: str
    artist: str | None = None
    author: str | None = None
    thumbnail_url: str | None = None
    favorite: bool
    status: int
    total_chapters: int
    read_chapters: int
    last_modified_at: datetime | None = None


class MangaDetail(CamelModel):
    """Full manga row with overrides applied and related rows attached."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str
    source: int
    url: str
    title: str
    artist: str | None = None
    author: str | None = None
    description: str | None = None
    genres: list[str] = []
    status: int = 0
    thumbnail_url: str | None = None
    favorite: bool = True
    version: int = 1
    last_modified_at: datetime | None = None
    chapters: list[dict[str, Any]] = []
    tracking: list[dict[str, Any]] = []
    history: list[dict[str, Any]] = []
    categories: list[dict[str, Any]] = []


class MangaStats(CamelModel):
    total_manga: int
    favorite_manga: int
    total_chapters: int
    read_chapters: int
    completion_rate: float


# =============================================================================
# Backup Models
# =============================================================================

class BackupCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)


class BackupSummary(CamelModel):
    id: str
    name: str
    description: str | None = None
    manga_count: int = 0
    chapter_count: int = 0
    size_bytes: int = 0
    created_at: datetime


class BackupDetail(BackupSummary):
    data: dict[str, Any]


class BackupDownload(BaseModel):
    filename: str
    data: dict[str, Any]


# =============================================================================
# Data Models
# =============================================================================

class DataStats(CamelModel):
    extension_repos: int
    saved_searches: int
    feeds: int
    categories: int
    preferences: int
    source_preferences: int
