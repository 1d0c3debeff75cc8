"""Field merge policy.

Every mutable entity has an explicit table of :class:`FieldRule` entries that
say where a column's value comes from in the payload and what happens when
the payload omits it:

``ALWAYS``
    The incoming value replaces the stored one. An omitted key counts as the
    rule's default (usually null), so descriptive metadata always mirrors the
    client.
``IF_PRESENT``
    Omitted means "leave untouched"; an explicit null clears the column. Used
    for user overrides (custom title, ...) and other optional extras.
``DEFAULT``
    Omitted (or null) means "use the default" on first insert and "keep the
    stored value" on update.
"""

import math
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..database import utcnow_iso
from .wire import (
    MISSING,
    coerce_bool,
    coerce_float,
    coerce_int,
    coerce_str,
    coerce_str_list,
    normalize_genres,
    pick,
    to_epoch_ms,
    to_timestamp,
)


class Policy(str, Enum):
    ALWAYS = "always"
    IF_PRESENT = "if_present"
    DEFAULT = "default"


@dataclass(frozen=True)
class FieldRule:
    column: str
    aliases: tuple[str, ...]
    policy: Policy
    default: Any = None
    coerce: Callable[[Any], Any] | None = None
    kind: str = "value"  # "timestamp" | "float" | "value"

    def default_value(self) -> Any:
        value = self.default() if callable(self.default) else self.default
        # Never hand out a shared mutable default
        return list(value) if isinstance(value, list) else value

    def convert(self, raw: Any) -> Any:
        return self.coerce(raw) if self.coerce is not None else raw


def _rule(column, aliases, policy, default=None, coerce=None, kind="value") -> FieldRule:
    if isinstance(aliases, str):
        aliases = (aliases,)
    return FieldRule(column, tuple(aliases), policy, default, coerce, kind)


ALWAYS, IF_PRESENT, DEFAULT = Policy.ALWAYS, Policy.IF_PRESENT, Policy.DEFAULT

MANGA_RULES = (
    _rule("title", "title", DEFAULT, "", coerce_str),
    _rule("artist", "artist", ALWAYS, None, coerce_str),
    _rule("author", "author", ALWAYS, None, coerce_str),
    _rule("description", "description", ALWAYS, None, coerce_str),
    _rule("genres", ("genres", "genre"), ALWAYS, list, normalize_genres),
    _rule("status", "status", DEFAULT, 0, coerce_int),
    _rule("thumbnail_url", ("thumbnailUrl", "thumbnail_url"), ALWAYS, None, coerce_str),
    _rule("favorite", "favorite", DEFAULT, True, coerce_bool),
    _rule("date_added", ("dateAdded", "date_added"), DEFAULT, utcnow_iso, to_timestamp, "timestamp"),
    _rule("viewer_flags", ("viewerFlags", "viewer_flags"), DEFAULT, -1, coerce_int),
    _rule("chapter_flags", ("chapterFlags", "chapter_flags"), DEFAULT, 0, coerce_int),
    _rule("update_strategy", ("updateStrategy", "update_strategy"), DEFAULT, "ALWAYS_UPDATE", coerce_str),
    _rule("initialized", "initialized", DEFAULT, False, coerce_bool),
    _rule("notes", "notes", IF_PRESENT, None, coerce_str),
    _rule("excluded_scanlators", ("excludedScanlators", "excluded_scanlators"), IF_PRESENT, None, coerce_str_list),
    _rule("favorite_modified_at", ("favoriteModifiedAt", "favorite_modified_at"), IF_PRESENT, None,
          to_timestamp, "timestamp"),
    _rule("source_name", ("sourceName", "source_name"), IF_PRESENT, None, coerce_str),
    _rule("custom_title", ("customTitle", "custom_title"), IF_PRESENT, None, coerce_str),
    _rule("custom_artist", ("customArtist", "custom_artist"), IF_PRESENT, None, coerce_str),
    _rule("custom_author", ("customAuthor", "custom_author"), IF_PRESENT, None, coerce_str),
    _rule("custom_description", ("customDescription", "custom_description"), IF_PRESENT, None, coerce_str),
    _rule("custom_genres", ("customGenres", "customGenre", "custom_genres"), IF_PRESENT, None, coerce_str_list),
    _rule("custom_status", ("customStatus", "custom_status"), IF_PRESENT, 0, coerce_int),
    _rule("custom_thumbnail_url", ("customThumbnailUrl", "custom_thumbnail_url"), IF_PRESENT, None, coerce_str),
)

CHAPTER_RULES = (
    _rule("name", "name", DEFAULT, "", coerce_str),
    _rule("scanlator", "scanlator", ALWAYS, None, coerce_str),
    _rule("chapter_number", ("chapterNumber", "chapter_number"), DEFAULT, 0.0, coerce_float, "float"),
    _rule("source_order", ("sourceOrder", "source_order"), DEFAULT, 0, coerce_int),
    _rule("read", "read", DEFAULT, False, coerce_bool),
    _rule("bookmark", "bookmark", DEFAULT, False, coerce_bool),
    _rule("last_page_read", ("lastPageRead", "last_page_read"), DEFAULT, 0, coerce_int),
    _rule("pages_left", ("pagesLeft", "pages_left"), DEFAULT, 0, coerce_int),
    _rule("date_fetch", ("dateFetch", "date_fetch"), DEFAULT, None, to_timestamp, "timestamp"),
    _rule("date_upload", ("dateUpload", "date_upload"), DEFAULT, None, to_timestamp, "timestamp"),
)

TRACKING_RULES = (
    _rule("media_id", ("mediaId", "mediaIdInt", "media_id"), DEFAULT, 0, coerce_int),
    _rule("library_id", ("libraryId", "library_id"), ALWAYS, None, coerce_int),
    _rule("title", "title", ALWAYS, None, coerce_str),
    _rule("tracking_url", ("trackingUrl", "tracking_url"), ALWAYS, None, coerce_str),
    _rule("last_chapter_read", ("lastChapterRead", "last_chapter_read"), DEFAULT, 0.0, coerce_float, "float"),
    _rule("total_chapters", ("totalChapters", "total_chapters"), DEFAULT, 0, coerce_int),
    _rule("score", "score", DEFAULT, 0.0, coerce_float, "float"),
    _rule("status", "status", DEFAULT, 0, coerce_int),
    _rule("started_reading_date", ("startedReadingDate", "started_reading_date"), ALWAYS, None,
          to_timestamp, "timestamp"),
    _rule("finished_reading_date", ("finishedReadingDate", "finished_reading_date"), ALWAYS, None,
          to_timestamp, "timestamp"),
    _rule("private", "private", DEFAULT, False, coerce_bool),
)

HISTORY_RULES = (
    _rule("last_read", ("lastRead", "last_read"), DEFAULT, utcnow_iso, to_timestamp, "timestamp"),
    _rule("read_duration", ("readDuration", "read_duration"), DEFAULT, 0, coerce_int),
)

CATEGORY_RULES = (
    _rule("order", "order", DEFAULT, 0, coerce_int),
    _rule("flags", "flags", DEFAULT, 0, coerce_int),
    _rule("manga_sort", ("mangaSort", "manga_sort"), ALWAYS, None, coerce_str),
)

EXTENSION_REPO_RULES = (
    _rule("name", "name", ALWAYS, None, coerce_str),
    _rule("short_name", ("shortName", "short_name"), ALWAYS, None, coerce_str),
    _rule("website", "website", ALWAYS, None, coerce_str),
    _rule("signing_key_fingerprint", ("signingKeyFingerprint", "signing_key_fingerprint"), ALWAYS, None, coerce_str),
)

SAVED_SEARCH_RULES = (
    _rule("query", "query", ALWAYS, None, coerce_str),
    _rule("filter_list", ("filterList", "filter_list"), ALWAYS, None),
)

FEED_RULES = (
    _rule("saved_search_id", ("savedSearch", "savedSearchId", "saved_search_id"), ALWAYS, None, coerce_int),
    _rule("global", "global", DEFAULT, True, coerce_bool),
)

# Natural-key aliases
MANGA_SOURCE_KEYS = ("source", "sourceId", "source_id")
MANGA_URL_KEYS = ("url",)
CHAPTER_URL_KEYS = ("url", "chapterUrl", "chapter_url")
TRACKING_SYNC_KEYS = ("syncId", "sync_id")
HISTORY_URL_KEYS = ("url", "chapterUrl", "chapter_url")
CATEGORY_NAME_KEYS = ("name",)
PREFERENCE_KEY_KEYS = ("key",)
SOURCE_PREFERENCE_KEYS = ("sourceKey", "source", "sourceId")
EXTENSION_REPO_KEYS = ("baseUrl", "base_url")


def same_value(kind: str, stored: Any, incoming: Any) -> bool:
    """Compare a stored column against a merged value, tolerant of storage formatting."""
    if kind == "timestamp":
        return to_epoch_ms(stored) == to_epoch_ms(incoming)
    if kind == "float":
        if stored is None or incoming is None:
            return stored is incoming
        return math.isclose(float(stored), float(incoming), rel_tol=1e-6, abs_tol=1e-6)
    return stored == incoming


def merge_row(rules: tuple[FieldRule, ...], incoming: dict, stored: dict | None) -> dict:
    """Merge an incoming payload against a stored row.

    With ``stored=None`` returns the complete column set for an insert.
    Otherwise returns only the columns whose value actually changes, so an
    empty dict means the update is a no-op.
    """
    values: dict[str, Any] = {}
    for rule in rules:
        raw = pick(incoming, *rule.aliases)
        if raw is MISSING:
            if rule.policy is Policy.ALWAYS or stored is None:
                values[rule.column] = rule.default_value()
            continue

        value = rule.convert(raw)
        if value is None and rule.policy is Policy.DEFAULT:
            if stored is None:
                values[rule.column] = rule.default_value()
            continue
        values[rule.column] = value

    if stored is None:
        return values
    return {
        column: value
        for column, value in values.items()
        if not same_value(_kind_of(rules, column), stored.get(column), value)
    }


def _kind_of(rules: tuple[FieldRule, ...], column: str) -> str:
    for rule in rules:
        if rule.column == column:
            return rule.kind
    return "value"
