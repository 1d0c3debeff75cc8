"""Library browsing procedures for the dashboard."""

from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status
from pydantic.alias_generators import to_camel

from ..auth import CurrentUser
from ..database import (
    CATEGORIES_TABLE,
    CHAPTERS_TABLE,
    HISTORY_TABLE,
    MANGA_CATEGORIES_TABLE,
    TRACKING_TABLE,
    Database,
    delete_manga,
    get_manga,
    list_children,
    list_manga,
    list_user_rows,
)
from ..logging_config import get_logger
from ..models import IdRequest, MangaDetail, MangaListItem, MangaStats, SuccessResponse

logger = get_logger("kiroo_sync.routes.manga")
router = APIRouter(prefix="/rpc", tags=["manga"])

RECENT_HISTORY = 10


def display_value(row: dict, field: str):
    """A custom override wins over the source-provided value when set."""
    return row.get(f"custom_{field}") or row.get(field)


def camelize(row: dict) -> dict:
    return {to_camel(key): value for key, value in row.items()}


def _matches(row: dict, needle: str) -> bool:
    return any(needle in (row.get(field) or "").lower() for field in ("title", "author", "artist"))


@router.get("/manga.list", response_model=list[MangaListItem])
async def manga_list(
    auth: CurrentUser,
    db: Database,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
    search: str | None = None,
    favorite: bool | None = None,
):
    """List manga, most recently modified first, with read progress."""
    if search:
        # Text search runs over the whole library before paging
        needle = search.lower()
        rows = [row for row in await list_manga(db, auth.user_id, favorite=favorite) if _matches(row, needle)]
        rows = rows[offset:offset + limit]
    else:
        rows = await list_manga(db, auth.user_id, limit=limit, offset=offset, favorite=favorite)

    chapters = await list_children(db, CHAPTERS_TABLE, [row["id"] for row in rows], columns="manga_id, read")
    totals: dict[str, list[int]] = {}
    for chapter in chapters:
        counts = totals.setdefault(chapter["manga_id"], [0, 0])
        counts[0] += 1
        counts[1] += 1 if chapter.get("read") else 0

    return [
        MangaListItem(
            id=row["id"],
            source=row["source"],
            url=row["url"],
            title=display_value(row, "title") or "",
            artist=display_value(row, "artist"),
            author=display_value(row, "author"),
            thumbnail_url=display_value(row, "thumbnail_url"),
            favorite=bool(row.get("favorite")),
            status=display_value(row, "status") or 0,
            total_chapters=totals.get(row["id"], [0, 0])[0],
            read_chapters=totals.get(row["id"], [0, 0])[1],
            last_modified_at=row.get("last_modified_at"),
        )
        for row in rows
    ]


@router.get("/manga.get", response_model=MangaDetail)
async def manga_get(id: str, auth: CurrentUser, db: Database):
    """One manga with chapters, tracking, recent history and categories."""
    row = await get_manga(db, id, auth.user_id)
    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Manga not found")

    chapters = sorted(
        await list_children(db, CHAPTERS_TABLE, [id]),
        key=lambda c: c.get("chapter_number") or 0,
        reverse=True,
    )
    tracking = await list_children(db, TRACKING_TABLE, [id])
    history = sorted(
        await list_children(db, HISTORY_TABLE, [id]),
        key=lambda h: h.get("last_read") or "",
        reverse=True,
    )[:RECENT_HISTORY]
    linked = {link["category_id"] for link in await list_children(db, MANGA_CATEGORIES_TABLE, [id])}
    categories = [c for c in await list_user_rows(db, CATEGORIES_TABLE, auth.user_id, "order") if c["id"] in linked]

    detail = camelize(row)
    detail.update(
        title=display_value(row, "title") or "",
        artist=display_value(row, "artist"),
        author=display_value(row, "author"),
        description=display_value(row, "description"),
        genres=display_value(row, "genres") or [],
        status=display_value(row, "status") or 0,
        thumbnailUrl=display_value(row, "thumbnail_url"),
        chapters=[camelize(c) for c in chapters],
        tracking=[camelize(t) for t in tracking],
        history=[camelize(h) for h in history],
        categories=[camelize(c) for c in categories],
    )
    return MangaDetail.model_validate(detail)


@router.get("/manga.stats", response_model=MangaStats)
async def manga_stats(auth: CurrentUser, db: Database):
    rows = await list_manga(db, auth.user_id)
    chapters = await list_children(db, CHAPTERS_TABLE, [row["id"] for row in rows], columns="manga_id, read")

    total_chapters = len(chapters)
    read_chapters = sum(1 for chapter in chapters if chapter.get("read"))
    return MangaStats(
        total_manga=len(rows),
        favorite_manga=sum(1 for row in rows if row.get("favorite")),
        total_chapters=total_chapters,
        read_chapters=read_chapters,
        completion_rate=(read_chapters / total_chapters) * 100 if total_chapters else 0.0,
    )


@router.post("/manga.delete", response_model=SuccessResponse)
async def manga_delete(request: IdRequest, auth: CurrentUser, db: Database):
    """Remove a manga and its chapters, tracking, history and memberships."""
    deleted = await delete_manga(db, request.id, auth.user_id)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Manga not found")
    logger.info(f"Deleted manga {request.id} for {auth.user_id}")
    return SuccessResponse()
