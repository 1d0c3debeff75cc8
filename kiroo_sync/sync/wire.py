"""Wire formats and value coercion for sync documents.

Mobile clients have shipped several generations of the backup format, so the
same field can arrive camelCased, snake_cased or under an older name, and
64-bit identifiers may arrive as strings. Everything that touches raw payload
values goes through the helpers in this module; both the REST route and the
RPC procedures accept the same aliases.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from dateutil.parser import isoparse

from .errors import PayloadValidationError


class _Missing:
    """Sentinel for "key not present" (distinct from an explicit null)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


def pick(payload: dict, *names: str) -> Any:
    """Return the value of the first alias present in ``payload``, else MISSING."""
    for name in names:
        if name in payload:
            return payload[name]
    return MISSING


# =============================================================================
# Coercion
# =============================================================================

def coerce_int(value: Any) -> int | None:
    """Coerce numbers and numeric strings to int. Large ids stay exact."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            raise ValueError(f"Not an integer: {value!r}")
        return int(value)
    if isinstance(value, str):
        try:
            number = Decimal(value.strip())
        except InvalidOperation:
            raise ValueError(f"Not an integer: {value!r}") from None
        if number != number.to_integral_value():
            raise ValueError(f"Not an integer: {value!r}")
        return int(number)
    raise ValueError(f"Not an integer: {value!r}")


def coerce_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if isinstance(value, str):
        return float(value.strip())
    raise ValueError(f"Not a number: {value!r}")


def coerce_bool(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes"):
            return True
        if lowered in ("false", "0", "no", ""):
            return False
    raise ValueError(f"Not a boolean: {value!r}")


def coerce_str(value: Any) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def coerce_str_list(value: Any) -> list[str] | None:
    if value is None:
        return None
    if isinstance(value, str):
        return split_genres(value)
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v is not None]
    raise ValueError(f"Not a list of strings: {value!r}")


def split_genres(value: str) -> list[str]:
    """Split a comma-joined genre string ("Action, Drama") into a list."""
    return [part.strip() for part in value.split(",") if part.strip()]


def normalize_genres(value: Any) -> list[str]:
    """Normalize the three genre shapes (list, joined string, absent) to a list."""
    if value is MISSING or value is None:
        return []
    return coerce_str_list(value)


def to_timestamp(value: Any) -> str | None:
    """Epoch milliseconds (or an ISO string) to an ISO-8601 UTC string.

    ``0`` and ``None`` mean "unset".
    """
    if value is None or value == "" or value == 0:
        return None
    if isinstance(value, str) and not value.strip().lstrip("-").isdigit():
        parsed = isoparse(value.strip())
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc).isoformat()
    millis = coerce_int(value)
    if not millis:
        return None
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).isoformat()


def to_epoch_ms(value: Any) -> int:
    """Stored timestamp (ISO string or datetime) to epoch milliseconds; unset is 0."""
    if value is None or value == "":
        return 0
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    if isinstance(value, str):
        value = isoparse(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(round(value.timestamp() * 1000))


# =============================================================================
# Document shapes
# =============================================================================

@dataclass(frozen=True)
class WireFormat:
    """Key names of one sync document flavor.

    Inbound, every flavor accepts every known alias; the preferred names only
    decide what a pull emits.
    """

    name: str
    manga: tuple[str, ...]
    categories: tuple[str, ...]
    genre_key: str
    history_url_key: str
    viewer_flags_key: str
    custom_genres_key: str
    sources: tuple[str, ...] = ("backupSources", "sources")
    preferences: tuple[str, ...] = ("backupPreferences", "preferences")
    source_preferences: tuple[str, ...] = ("backupSourcePreferences", "sourcePreferences")
    extension_repos: tuple[str, ...] = ("backupExtensionRepo", "extensionRepos")
    saved_searches: tuple[str, ...] = ("backupSavedSearches", "savedSearches")
    feeds: tuple[str, ...] = ("backupFeeds", "feeds")


# Mobile backup format used by the REST endpoint
BACKUP_FORMAT = WireFormat(
    name="backup",
    manga=("backupManga", "manga"),
    categories=("backupCategories", "categories"),
    genre_key="genre",
    history_url_key="url",
    viewer_flags_key="viewer_flags",
    custom_genres_key="customGenre",
)

# Flattened format used by the RPC procedures
RPC_FORMAT = WireFormat(
    name="rpc",
    manga=("manga", "backupManga"),
    categories=("categories", "backupCategories"),
    genre_key="genres",
    history_url_key="chapterUrl",
    viewer_flags_key="viewerFlags",
    custom_genres_key="customGenres",
    sources=("sources", "backupSources"),
    preferences=("preferences", "backupPreferences"),
    source_preferences=("sourcePreferences", "backupSourcePreferences"),
    extension_repos=("extensionRepos", "backupExtensionRepo"),
    saved_searches=("savedSearches", "backupSavedSearches"),
    feeds=("feeds", "backupFeeds"),
)


@dataclass
class SyncDocument:
    """The collections of one inbound document, each defaulting to empty."""

    manga: list[dict]
    categories: list[dict]
    sources: list[dict]
    preferences: list[dict]
    source_preferences: list[dict]
    extension_repos: list[dict]
    saved_searches: list[dict]
    feeds: list[dict]
    device_name: str | None = None


def _collection(document: dict, names: tuple[str, ...], label: str) -> list[dict]:
    value = pick(document, *names)
    if value is MISSING or value is None:
        return []
    if not isinstance(value, list):
        raise PayloadValidationError(f"'{names[0]}' must be a list, got {type(value).__name__}")
    for item in value:
        if not isinstance(item, dict):
            raise PayloadValidationError(f"Every {label} entry must be an object")
    return value


def parse_document(body: Any, wire: WireFormat) -> SyncDocument:
    """Validate the envelope of an inbound document and split it into collections.

    Accepts the bare document or one wrapped as ``{"backup": {...}}``.
    """
    if not isinstance(body, dict):
        raise PayloadValidationError("Sync payload must be a JSON object")
    document = body.get("backup") if isinstance(body.get("backup"), dict) else body

    device_name = pick(body, "deviceName", "device_name")
    return SyncDocument(
        manga=_collection(document, wire.manga, "manga"),
        categories=_collection(document, wire.categories, "category"),
        sources=_collection(document, wire.sources, "source"),
        preferences=_collection(document, wire.preferences, "preference"),
        source_preferences=_collection(document, wire.source_preferences, "source preference"),
        extension_repos=_collection(document, wire.extension_repos, "extension repo"),
        saved_searches=_collection(document, wire.saved_searches, "saved search"),
        feeds=_collection(document, wire.feeds, "feed"),
        device_name=device_name if isinstance(device_name, str) and device_name else None,
    )
