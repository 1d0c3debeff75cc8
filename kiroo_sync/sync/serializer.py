"""Pull: serialize a user's stored library back into a sync document.

Everything a push can set is emitted, in a form that merges back onto the
same stored values, so pushing an unmodified pull changes nothing.
"""

import json
from dataclasses import dataclass

from .store import SyncStore
from .wire import BACKUP_FORMAT, WireFormat, to_epoch_ms


@dataclass
class PulledDocument:
    document: dict
    manga_count: int
    chapter_count: int


def _chapter(row: dict) -> dict:
    return {
        "url": row["url"],
        "name": row.get("name") or "",
        "scanlator": row.get("scanlator"),
        "chapterNumber": row.get("chapter_number") or 0,
        "sourceOrder": row.get("source_order") or 0,
        "read": bool(row.get("read")),
        "bookmark": bool(row.get("bookmark")),
        "lastPageRead": row.get("last_page_read") or 0,
        "pagesLeft": row.get("pages_left") or 0,
        "dateFetch": to_epoch_ms(row.get("date_fetch")),
        "dateUpload": to_epoch_ms(row.get("date_upload")),
    }


def _tracking(row: dict) -> dict:
    entry = {
        "syncId": row["sync_id"],
        "mediaId": row.get("media_id") or 0,
        "title": row.get("title"),
        "trackingUrl": row.get("tracking_url"),
        "lastChapterRead": row.get("last_chapter_read") or 0,
        "totalChapters": row.get("total_chapters") or 0,
        "score": row.get("score") or 0,
        "status": row.get("status") or 0,
        "startedReadingDate": to_epoch_ms(row.get("started_reading_date")),
        "finishedReadingDate": to_epoch_ms(row.get("finished_reading_date")),
        "private": bool(row.get("private")),
    }
    if row.get("library_id") is not None:
        entry["libraryId"] = row["library_id"]
    return entry


def _history(row: dict, wire: WireFormat) -> dict:
    return {
        wire.history_url_key: row["chapter_url"],
        "lastRead": to_epoch_ms(row.get("last_read")),
        "readDuration": row.get("read_duration") or 0,
    }


def _manga(
    row: dict,
    wire: WireFormat,
    chapters: list[dict],
    tracking: list[dict],
    history: list[dict],
    category_orders: list[int],
) -> dict:
    entry = {
        "source": row["source"],
        "url": row["url"],
        "title": row.get("title") or "",
        "artist": row.get("artist"),
        "author": row.get("author"),
        "description": row.get("description"),
        wire.genre_key: row.get("genres") or [],
        "status": row.get("status") or 0,
        "thumbnailUrl": row.get("thumbnail_url"),
        "favorite": bool(row.get("favorite")),
        "dateAdded": to_epoch_ms(row.get("date_added")),
        wire.viewer_flags_key: row.get("viewer_flags") if row.get("viewer_flags") is not None else -1,
        "chapterFlags": row.get("chapter_flags") or 0,
        "updateStrategy": row.get("update_strategy") or "ALWAYS_UPDATE",
        "initialized": bool(row.get("initialized")),
        "notes": row.get("notes"),
        "excludedScanlators": row.get("excluded_scanlators"),
        "favoriteModifiedAt": to_epoch_ms(row.get("favorite_modified_at")),
        "customTitle": row.get("custom_title"),
        "customArtist": row.get("custom_artist"),
        "customAuthor": row.get("custom_author"),
        "customDescription": row.get("custom_description"),
        wire.custom_genres_key: row.get("custom_genres"),
        "customStatus": row.get("custom_status"),
        "customThumbnailUrl": row.get("custom_thumbnail_url"),
        "categories": category_orders,
        "chapters": [_chapter(c) for c in chapters],
        "tracking": [_tracking(t) for t in tracking],
        "history": [_history(h, wire) for h in history],
    }
    if wire is not BACKUP_FORMAT:
        # The backup format carries source names in its own list
        entry["sourceName"] = row.get("source_name")
    return entry


async def pull_document(store: SyncStore, wire: WireFormat) -> PulledDocument:
    """Read the user's whole library and serialize it in ``wire`` format."""
    manga_rows = await store.all_manga()
    manga_ids = [row["id"] for row in manga_rows]

    categories = await store.categories()
    order_by_id = {c["id"]: c.get("order") or 0 for c in categories}

    chapters = await store.chapters(manga_ids)
    tracking = await store.tracking(manga_ids)
    history = await store.history(manga_ids)
    links = await store.category_links(manga_ids)
    auxiliary = await store.auxiliary()

    manga_entries = []
    source_names: dict[int, str] = {}
    chapter_count = 0
    for row in manga_rows:
        manga_chapters = sorted(chapters.get(row["id"], []), key=lambda c: c.get("source_order") or 0)
        chapter_count += len(manga_chapters)
        orders = sorted(
            order_by_id[link["category_id"]]
            for link in links.get(row["id"], [])
            if link["category_id"] in order_by_id
        )
        manga_entries.append(
            _manga(row, wire, manga_chapters, tracking.get(row["id"], []), history.get(row["id"], []), orders)
        )
        if row.get("source_name"):
            source_names[row["source"]] = row["source_name"]

    document = {
        wire.manga[0]: manga_entries,
        wire.categories[0]: [
            {
                "name": c["name"],
                "order": c.get("order") or 0,
                "flags": c.get("flags") or 0,
                "mangaSort": c.get("manga_sort"),
            }
            for c in categories
        ],
        wire.sources[0]: [{"sourceId": source_id, "name": name} for source_id, name in source_names.items()],
        wire.preferences[0]: [{"key": p["key"], "value": p.get("value")} for p in auxiliary["preferences"]],
        wire.source_preferences[0]: [
            {"sourceKey": p["source_key"], "prefs": p.get("preferences")} for p in auxiliary["source_preferences"]
        ],
        wire.extension_repos[0]: [
            {
                "baseUrl": r["base_url"],
                "name": r.get("name"),
                "shortName": r.get("short_name"),
                "website": r.get("website"),
                "signingKeyFingerprint": r.get("signing_key_fingerprint"),
            }
            for r in auxiliary["extension_repos"]
        ],
        wire.saved_searches[0]: [
            {
                "name": s["name"],
                "source": s["source"],
                "query": s.get("query"),
                "filterList": s.get("filter_list"),
            }
            for s in auxiliary["saved_searches"]
        ],
        wire.feeds[0]: [
            {
                "source": f["source"],
                "savedSearch": f.get("saved_search_id"),
                "global": bool(f.get("global", True)),
            }
            for f in auxiliary["feeds"]
        ],
    }
    return PulledDocument(document=document, manga_count=len(manga_rows), chapter_count=chapter_count)


def document_size(document: dict) -> int:
    """Serialized size in bytes (UTF-8)."""
    return len(json.dumps(document, ensure_ascii=False, separators=(",", ":")).encode("utf-8"))
