"""Storage context for the reconciliation engine.

A :class:`SyncStore` binds a Supabase client to one user and is handed
explicitly to the engine and serializer; nothing in the sync package reaches
for a module-level client.

Natural keys are backed by unique indexes (see the migrations). Two devices
pushing the same new manga at once race on the insert; the loser gets a
unique violation, re-reads the winner's row and continues down the update
path. Updates are guarded on the stored version so a concurrent update is
detected the same way.
"""

from postgrest.exceptions import APIError
from supabase import Client

from ..database import (
    CATEGORIES_TABLE,
    CHAPTERS_TABLE,
    EXTENSION_REPOS_TABLE,
    FEEDS_TABLE,
    HISTORY_TABLE,
    MANGA_CATEGORIES_TABLE,
    MANGA_TABLE,
    PREFERENCES_TABLE,
    SAVED_SEARCHES_TABLE,
    SOURCE_PREFERENCES_TABLE,
    TRACKING_TABLE,
    list_children,
    utcnow_iso,
)
from ..logging_config import get_logger
from .merge import FieldRule, merge_row

logger = get_logger("kiroo_sync.sync.store")

UNIQUE_VIOLATION = "23505"

# Tables carrying version / last_modified_at sync metadata
VERSIONED_TABLES = frozenset({MANGA_TABLE, CHAPTERS_TABLE})

INSERTED = "inserted"
UPDATED = "updated"
UNCHANGED = "unchanged"


def is_unique_violation(error: APIError) -> bool:
    return getattr(error, "code", None) == UNIQUE_VIOLATION


class ConcurrentModificationError(Exception):
    """A natural key kept changing under us for every retry."""


class SyncStore:
    """Point queries and versioned upserts for one user's library."""

    def __init__(self, db: Client, user_id: str, retries: int = 3):
        self.db = db
        self.user_id = user_id
        self.retries = retries

    # ------------------------------------------------------------------
    # Entity matcher
    # ------------------------------------------------------------------

    async def find(self, table: str, key: dict) -> dict | None:
        """Look up one row by natural key (already scoped to user or manga)."""
        query = self.db.table(table).select("*")
        for column, value in key.items():
            query = query.eq(column, value)
        result = query.limit(1).execute()
        return result.data[0] if result.data else None

    async def find_manga(self, source: int, url: str) -> dict | None:
        return await self.find(MANGA_TABLE, {"user_id": self.user_id, "source": source, "url": url})

    # ------------------------------------------------------------------
    # Versioned upsert
    # ------------------------------------------------------------------

    async def reconcile(
        self,
        table: str,
        key: dict,
        rules: tuple[FieldRule, ...],
        payload: dict,
    ) -> tuple[dict, str]:
        """Insert or update the row identified by ``key`` from ``payload``.

        Returns the resulting row and one of ``inserted``, ``updated`` or
        ``unchanged``. An update that would not change any column is skipped,
        so re-pushing identical state leaves versions alone.
        """
        versioned = table in VERSIONED_TABLES
        last_error: Exception | None = None

        for attempt in range(self.retries + 1):
            stored = await self.find(table, key)

            if stored is None:
                row = {**key, **merge_row(rules, payload, None)}
                if versioned:
                    row["version"] = 1
                    row["last_modified_at"] = utcnow_iso()
                try:
                    result = self.db.table(table).insert(row).execute()
                except APIError as e:
                    if not is_unique_violation(e):
                        raise
                    logger.info(f"Insert conflict on {table} {key} (attempt {attempt + 1}), re-reading")
                    last_error = e
                    continue
                return (result.data[0] if result.data else row), INSERTED

            changes = merge_row(rules, payload, stored)
            if not changes:
                return stored, UNCHANGED

            query = self.db.table(table)
            if versioned:
                version = stored.get("version") or 0
                changes["version"] = version + 1
                changes["last_modified_at"] = utcnow_iso()
                result = query.update(changes).eq("id", stored["id"]).eq("version", version).execute()
            else:
                result = query.update(changes).eq("id", stored["id"]).execute()

            if versioned and not result.data:
                logger.info(f"Version moved on {table} {key} (attempt {attempt + 1}), re-reading")
                last_error = ConcurrentModificationError(f"{table} {key} changed concurrently")
                continue
            return ({**stored, **result.data[0]} if result.data else {**stored, **changes}), UPDATED

        raise last_error

    async def insert_if_absent(self, table: str, key: dict, rules: tuple[FieldRule, ...], payload: dict) -> bool:
        """First-write-wins insert; returns True if a row was created."""
        if await self.find(table, key) is not None:
            return False
        row = {**key, **merge_row(rules, payload, None)}
        try:
            self.db.table(table).insert(row).execute()
        except APIError as e:
            if not is_unique_violation(e):
                raise
            return False
        return True

    async def upsert_value(self, table: str, key: dict, values: dict) -> None:
        """Key -> JSON value upsert for preference blobs."""
        stored = await self.find(table, key)
        if stored is None:
            try:
                self.db.table(table).insert({**key, **values}).execute()
                return
            except APIError as e:
                if not is_unique_violation(e):
                    raise
                stored = await self.find(table, key)
        if stored is None:
            return
        changes = {column: value for column, value in values.items() if stored.get(column) != value}
        if changes:
            self.db.table(table).update(changes).eq("id", stored["id"]).execute()

    # ------------------------------------------------------------------
    # Cross-entity links
    # ------------------------------------------------------------------

    async def category_order_map(self) -> dict[int, str]:
        """order -> category id for every category the user has."""
        rows = (
            self.db.table(CATEGORIES_TABLE)
            .select("id, order")
            .eq("user_id", self.user_id)
            .execute()
            .data
        )
        return {int(row.get("order") or 0): row["id"] for row in rows}

    async def category_ids_for(self, manga_id: str) -> set[str]:
        rows = self.db.table(MANGA_CATEGORIES_TABLE).select("category_id").eq("manga_id", manga_id).execute().data
        return {row["category_id"] for row in rows}

    async def replace_categories(self, manga_id: str, category_ids: list[str]) -> bool:
        """Make ``category_ids`` the manga's exact membership.

        Delete-then-insert: readers may briefly see no membership. Skipped
        entirely when the membership already matches.
        """
        wanted = list(dict.fromkeys(category_ids))
        if await self.category_ids_for(manga_id) == set(wanted):
            return False
        self.db.table(MANGA_CATEGORIES_TABLE).delete().eq("manga_id", manga_id).execute()
        if wanted:
            self.db.table(MANGA_CATEGORIES_TABLE).upsert(
                [{"manga_id": manga_id, "category_id": category_id} for category_id in wanted],
                on_conflict="manga_id,category_id",
                ignore_duplicates=True,
            ).execute()
        return True

    # ------------------------------------------------------------------
    # Reads for pull / snapshots
    # ------------------------------------------------------------------

    async def all_manga(self) -> list[dict]:
        return self.db.table(MANGA_TABLE).select("*").eq("user_id", self.user_id).order("title").execute().data

    async def children(self, table: str, manga_ids: list[str]) -> dict[str, list[dict]]:
        """Child rows grouped by manga id."""
        grouped: dict[str, list[dict]] = {manga_id: [] for manga_id in manga_ids}
        for row in await list_children(self.db, table, manga_ids):
            grouped.setdefault(row["manga_id"], []).append(row)
        return grouped

    async def user_rows(self, table: str, order_by: str | None = None) -> list[dict]:
        query = self.db.table(table).select("*").eq("user_id", self.user_id)
        if order_by:
            query = query.order(order_by)
        return query.execute().data

    async def categories(self) -> list[dict]:
        return await self.user_rows(CATEGORIES_TABLE, order_by="order")

    async def chapters(self, manga_ids: list[str]) -> dict[str, list[dict]]:
        return await self.children(CHAPTERS_TABLE, manga_ids)

    async def tracking(self, manga_ids: list[str]) -> dict[str, list[dict]]:
        return await self.children(TRACKING_TABLE, manga_ids)

    async def history(self, manga_ids: list[str]) -> dict[str, list[dict]]:
        return await self.children(HISTORY_TABLE, manga_ids)

    async def category_links(self, manga_ids: list[str]) -> dict[str, list[dict]]:
        return await self.children(MANGA_CATEGORIES_TABLE, manga_ids)

    async def auxiliary(self) -> dict[str, list[dict]]:
        return {
            "preferences": await self.user_rows(PREFERENCES_TABLE),
            "source_preferences": await self.user_rows(SOURCE_PREFERENCES_TABLE),
            "extension_repos": await self.user_rows(EXTENSION_REPOS_TABLE),
            "saved_searches": await self.user_rows(SAVED_SEARCHES_TABLE),
            "feeds": await self.user_rows(FEEDS_TABLE),
        }
