"""Push reconciliation.

Merges one inbound sync document into a user's stored library:

1. categories (so manga can reference them by order index)
2. each manga, then its category membership, chapters, tracking and history
3. preferences, source preferences, extension repos, saved searches, feeds

A manga that fails is recorded by title and the batch continues. Failures
outside the per-manga guard (categories, auxiliary collections) propagate to
the caller as a total failure.
"""

from typing import Any

from ..database import (
    CATEGORIES_TABLE,
    CHAPTERS_TABLE,
    EXTENSION_REPOS_TABLE,
    FEEDS_TABLE,
    HISTORY_TABLE,
    MANGA_TABLE,
    PREFERENCES_TABLE,
    SAVED_SEARCHES_TABLE,
    SOURCE_PREFERENCES_TABLE,
    TRACKING_TABLE,
)
from ..logging_config import get_logger, log_sync_operation
from .errors import EntitySyncError
from .merge import (
    CATEGORY_NAME_KEYS,
    CATEGORY_RULES,
    CHAPTER_RULES,
    CHAPTER_URL_KEYS,
    EXTENSION_REPO_KEYS,
    EXTENSION_REPO_RULES,
    FEED_RULES,
    HISTORY_RULES,
    HISTORY_URL_KEYS,
    MANGA_RULES,
    MANGA_SOURCE_KEYS,
    MANGA_URL_KEYS,
    PREFERENCE_KEY_KEYS,
    SAVED_SEARCH_RULES,
    SOURCE_PREFERENCE_KEYS,
    TRACKING_RULES,
    TRACKING_SYNC_KEYS,
)
from .outcome import SyncOutcome
from .store import SyncStore
from .wire import MISSING, SyncDocument, coerce_int, coerce_str, pick

logger = get_logger("kiroo_sync.sync.engine")


def _key_int(payload: dict, *names: str) -> int | None:
    raw = pick(payload, *names)
    if raw is MISSING:
        return None
    try:
        return coerce_int(raw)
    except ValueError:
        return None


def _key_str(payload: dict, *names: str) -> str | None:
    raw = pick(payload, *names)
    if raw is MISSING or raw is None:
        return None
    return coerce_str(raw) or None


def _child_list(manga: dict, name: str, title: str) -> list[dict]:
    value = manga.get(name)
    if value is None:
        return []
    if not isinstance(value, list):
        raise EntitySyncError(title, f"'{name}' must be a list")
    return [item for item in value if isinstance(item, dict)]


def _source_names(sources: list[dict]) -> dict[int, str]:
    """sourceId -> display name from the document's source list."""
    names = {}
    for entry in sources:
        source_id = _key_int(entry, "sourceId", "source_id", "id")
        name = _key_str(entry, "name")
        if source_id is not None and name:
            names[source_id] = name
    return names


def preference_type(value: Any) -> str:
    """A preference's declared type, carried inside its JSON value."""
    if isinstance(value, dict) and isinstance(value.get("type"), str) and value["type"]:
        return value["type"]
    return "string"


async def push_document(store: SyncStore, document: SyncDocument, log_prefix: str) -> SyncOutcome:
    """Reconcile ``document`` into the store and return the outcome."""
    outcome = SyncOutcome()
    logger.info(f"PUSH | {log_prefix} | {len(document.manga)} manga, {len(document.categories)} categories")

    await push_categories(store, document.categories, log_prefix)
    order_map = await store.category_order_map()
    source_names = _source_names(document.sources)

    for manga in document.manga:
        title = coerce_str(manga.get("title")) or "Unknown"
        try:
            chapters = await push_manga(store, manga, order_map, source_names, log_prefix)
        except Exception as e:
            # Full error stays server-side; the client only gets the title
            logger.error(f"Failed to sync manga '{title}' for {log_prefix}: {e}", exc_info=True)
            log_sync_operation(log_prefix, "upsert", MANGA_TABLE, title, False, str(e))
            outcome.record_failure(title)
            continue
        outcome.manga_synced += 1
        outcome.chapters_synced += chapters

    await push_preferences(store, document.preferences, log_prefix)
    await push_source_preferences(store, document.source_preferences, log_prefix)
    await push_extension_repos(store, document.extension_repos, log_prefix)
    await push_saved_searches(store, document.saved_searches, log_prefix)
    await push_feeds(store, document.feeds, log_prefix)

    logger.info(
        f"PUSH COMPLETE | {log_prefix} | manga={outcome.manga_synced} "
        f"chapters={outcome.chapters_synced} failed={len(outcome.failed_manga)}"
    )
    return outcome


async def push_categories(store: SyncStore, categories: list[dict], log_prefix: str) -> None:
    for category in categories:
        name = _key_str(category, *CATEGORY_NAME_KEYS)
        if not name:
            logger.debug(f"Skipping unnamed category for {log_prefix}")
            continue
        _, action = await store.reconcile(
            CATEGORIES_TABLE, {"user_id": store.user_id, "name": name}, CATEGORY_RULES, category
        )
        log_sync_operation(log_prefix, action, CATEGORIES_TABLE, name, True)


async def push_manga(
    store: SyncStore,
    manga: dict,
    order_map: dict[int, str],
    source_names: dict[int, str],
    log_prefix: str,
) -> int:
    """Reconcile one manga and its children. Returns the number of chapters synced."""
    title = coerce_str(manga.get("title")) or "Unknown"
    source = _key_int(manga, *MANGA_SOURCE_KEYS)
    url = _key_str(manga, *MANGA_URL_KEYS)
    if source is None or not url:
        raise EntitySyncError(title, "manga needs a source and a url")

    payload = manga
    if source in source_names and pick(manga, "sourceName", "source_name") is MISSING:
        payload = {**manga, "sourceName": source_names[source]}

    row, action = await store.reconcile(
        MANGA_TABLE, {"user_id": store.user_id, "source": source, "url": url}, MANGA_RULES, payload
    )
    manga_id = row["id"]
    log_sync_operation(log_prefix, action, MANGA_TABLE, f"{source}:{url}", True)

    # Membership is only touched when the payload declares it
    declared = manga.get("categories")
    if isinstance(declared, list):
        category_ids = []
        for order in declared:
            try:
                index = coerce_int(order)
            except ValueError:
                continue
            if index in order_map:
                category_ids.append(order_map[index])
        await store.replace_categories(manga_id, category_ids)

    chapters_synced = 0
    for chapter in _child_list(manga, "chapters", title):
        chapter_url = _key_str(chapter, *CHAPTER_URL_KEYS)
        if not chapter_url:
            continue
        await store.reconcile(CHAPTERS_TABLE, {"manga_id": manga_id, "url": chapter_url}, CHAPTER_RULES, chapter)
        chapters_synced += 1

    for track in _child_list(manga, "tracking", title):
        sync_id = _key_int(track, *TRACKING_SYNC_KEYS)
        if sync_id is None:
            continue
        await store.reconcile(TRACKING_TABLE, {"manga_id": manga_id, "sync_id": sync_id}, TRACKING_RULES, track)

    for entry in _child_list(manga, "history", title):
        chapter_url = _key_str(entry, *HISTORY_URL_KEYS)
        if not chapter_url:
            continue
        await store.reconcile(
            HISTORY_TABLE, {"manga_id": manga_id, "chapter_url": chapter_url}, HISTORY_RULES, entry
        )

    return chapters_synced


async def push_preferences(store: SyncStore, preferences: list[dict], log_prefix: str) -> None:
    for preference in preferences:
        key = _key_str(preference, *PREFERENCE_KEY_KEYS)
        if not key:
            continue
        value = preference.get("value")
        await store.upsert_value(
            PREFERENCES_TABLE,
            {"user_id": store.user_id, "key": key},
            {"value": value, "type": preference_type(value)},
        )
        log_sync_operation(log_prefix, "upsert", PREFERENCES_TABLE, key, True)


async def push_source_preferences(store: SyncStore, source_preferences: list[dict], log_prefix: str) -> None:
    for entry in source_preferences:
        source_key = _key_str(entry, *SOURCE_PREFERENCE_KEYS)
        if not source_key:
            continue
        await store.upsert_value(
            SOURCE_PREFERENCES_TABLE,
            {"user_id": store.user_id, "source_key": source_key},
            {"preferences": entry.get("prefs", entry.get("preferences"))},
        )
        log_sync_operation(log_prefix, "upsert", SOURCE_PREFERENCES_TABLE, source_key, True)


async def push_extension_repos(store: SyncStore, repos: list[dict], log_prefix: str) -> None:
    for repo in repos:
        base_url = _key_str(repo, *EXTENSION_REPO_KEYS)
        if not base_url or not _key_str(repo, "name"):
            continue
        created = await store.insert_if_absent(
            EXTENSION_REPOS_TABLE, {"user_id": store.user_id, "base_url": base_url}, EXTENSION_REPO_RULES, repo
        )
        if created:
            log_sync_operation(log_prefix, "insert", EXTENSION_REPOS_TABLE, base_url, True)


async def push_saved_searches(store: SyncStore, searches: list[dict], log_prefix: str) -> None:
    for search in searches:
        name = _key_str(search, "name")
        source = _key_int(search, "source")
        if not name or not source:
            continue
        created = await store.insert_if_absent(
            SAVED_SEARCHES_TABLE,
            {"user_id": store.user_id, "name": name, "source": source},
            SAVED_SEARCH_RULES,
            search,
        )
        if created:
            log_sync_operation(log_prefix, "insert", SAVED_SEARCHES_TABLE, f"{source}:{name}", True)


async def push_feeds(store: SyncStore, feeds: list[dict], log_prefix: str) -> None:
    for feed in feeds:
        source = _key_int(feed, "source")
        if not source:
            continue
        created = await store.insert_if_absent(
            FEEDS_TABLE, {"user_id": store.user_id, "source": source}, FEED_RULES, feed
        )
        if created:
            log_sync_operation(log_prefix, "insert", FEEDS_TABLE, str(source), True)
