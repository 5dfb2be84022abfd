from __future__ import annotations

import json
from dataclasses import dataclass, field
from sqlite3 import Row
from typing import Any, Literal, cast

from tubefeed.app.repositories.common import utc_now_iso
from tubefeed.app.repositories.database import Database

VideoSortField = Literal["published_at", "title", "view_count"]
SortOrder = Literal["asc", "desc"]

_SORT_COLUMNS: dict[str, str] = {
    "published_at": "published_at",
    "title": "title COLLATE NOCASE",
    "view_count": "COALESCE(view_count, 0)",
}
_VIDEO_COLUMNS = """
    video_id,
    title,
    description,
    published_at,
    channel_id,
    channel_title,
    video_url,
    thumbnails_json,
    view_count,
    like_count,
    comment_count,
    duration_seconds,
    created_at,
    updated_at
"""


@dataclass(frozen=True)
class VideoRecord:
    video_id: str
    title: str
    description: str
    published_at: str
    channel_id: str
    channel_title: str
    video_url: str
    thumbnails: dict[str, Any] = field(default_factory=lambda: cast(dict[str, Any], {}))
    view_count: int | None = None
    like_count: int | None = None
    comment_count: int | None = None
    duration_seconds: int | None = None


@dataclass(frozen=True)
class StoredVideo:
    video: VideoRecord
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class VideoPage:
    videos: list[StoredVideo]
    total: int


@dataclass(frozen=True)
class VideoStats:
    total_videos: int
    total_channels: int
    latest_published_at: str | None
    oldest_published_at: str | None


class VideoRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def upsert(self, video: VideoRecord) -> None:
        now_iso = utc_now_iso()
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO videos (
                    video_id, title, description, published_at, channel_id, channel_title,
                    video_url, thumbnails_json, view_count, like_count, comment_count,
                    duration_seconds, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(video_id) DO UPDATE SET
                    title = excluded.title,
                    description = excluded.description,
                    published_at = excluded.published_at,
                    channel_id = excluded.channel_id,
                    channel_title = excluded.channel_title,
                    video_url = excluded.video_url,
                    thumbnails_json = excluded.thumbnails_json,
                    view_count = excluded.view_count,
                    like_count = excluded.like_count,
                    comment_count = excluded.comment_count,
                    duration_seconds = excluded.duration_seconds,
                    updated_at = excluded.updated_at
                """,
                (
                    video.video_id,
                    video.title,
                    video.description,
                    video.published_at,
                    video.channel_id,
                    video.channel_title,
                    video.video_url,
                    json.dumps(video.thumbnails, sort_keys=True),
                    video.view_count,
                    video.like_count,
                    video.comment_count,
                    video.duration_seconds,
                    now_iso,
                    now_iso,
                ),
            )

    def get(self, video_id: str) -> StoredVideo | None:
        with self._db.connection() as conn:
            row = conn.execute(
                f"SELECT {_VIDEO_COLUMNS} FROM videos WHERE video_id = ?",
                (video_id,),
            ).fetchone()
        if row is None:
            return None
        return _row_to_stored_video(row)

    def count(self) -> int:
        with self._db.connection() as conn:
            row = conn.execute("SELECT COUNT(*) AS total FROM videos").fetchone()
        return int(row["total"])

    def list_videos(
        self,
        *,
        page: int,
        limit: int,
        sort_by: VideoSortField = "published_at",
        sort_order: SortOrder = "desc",
        channel_id: str | None = None,
        date_from: str | None = None,
        date_to: str | None = None,
    ) -> VideoPage:
        clauses: list[str] = []
        params: list[Any] = []
        if channel_id:
            clauses.append("channel_id = ?")
            params.append(channel_id)
        if date_from:
            clauses.append("published_at >= ?")
            params.append(date_from)
        if date_to:
            clauses.append("published_at <= ?")
            params.append(date_to)
        return self._paged_query(
            clauses=clauses,
            params=params,
            order_by=_order_by_sql(sort_by, sort_order),
            page=page,
            limit=limit,
        )

    def search(
        self,
        *,
        terms: list[str],
        page: int,
        limit: int,
        sort_by: VideoSortField = "published_at",
        sort_order: SortOrder = "desc",
    ) -> VideoPage:
        clauses: list[str] = []
        params: list[Any] = []
        for term in terms:
            pattern = f"%{_escape_like(term.lower())}%"
            clauses.append(
                "("
                "LOWER(title) LIKE ? ESCAPE '\\' "
                "OR LOWER(description) LIKE ? ESCAPE '\\' "
                "OR LOWER(channel_title) LIKE ? ESCAPE '\\'"
                ")"
            )
            params.extend([pattern, pattern, pattern])
        return self._paged_query(
            clauses=clauses,
            params=params,
            order_by=_order_by_sql(sort_by, sort_order),
            page=page,
            limit=limit,
        )

    def list_titles_matching(self, fragment: str, *, limit: int = 10) -> list[str]:
        pattern = f"%{_escape_like(fragment.lower())}%"
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT title
                FROM videos
                WHERE LOWER(title) LIKE ? ESCAPE '\\'
                ORDER BY COALESCE(view_count, 0) DESC
                LIMIT ?
                """,
                (pattern, max(1, limit)),
            ).fetchall()
        return [str(row["title"]) for row in rows]

    def stats(self) -> VideoStats:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total_videos,
                    COUNT(DISTINCT channel_id) AS total_channels,
                    MAX(published_at) AS latest_published_at,
                    MIN(published_at) AS oldest_published_at
                FROM videos
                """
            ).fetchone()
        return VideoStats(
            total_videos=int(row["total_videos"]),
            total_channels=int(row["total_channels"]),
            latest_published_at=_to_optional_str(row["latest_published_at"]),
            oldest_published_at=_to_optional_str(row["oldest_published_at"]),
        )

    def _paged_query(
        self,
        *,
        clauses: list[str],
        params: list[Any],
        order_by: str,
        page: int,
        limit: int,
    ) -> VideoPage:
        where_sql = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        clamped_limit = max(1, limit)
        offset = (max(1, page) - 1) * clamped_limit

        with self._db.connection() as conn:
            total_row = conn.execute(
                f"SELECT COUNT(*) AS total FROM videos {where_sql}",
                params,
            ).fetchone()
            rows = conn.execute(
                f"""
                SELECT {_VIDEO_COLUMNS}
                FROM videos
                {where_sql}
                ORDER BY {order_by}, video_id ASC
                LIMIT ? OFFSET ?
                """,
                [*params, clamped_limit, offset],
            ).fetchall()

        return VideoPage(
            videos=[_row_to_stored_video(row) for row in rows],
            total=int(total_row["total"]),
        )


def _order_by_sql(sort_by: str, sort_order: str) -> str:
    column = _SORT_COLUMNS.get(sort_by, _SORT_COLUMNS["published_at"])
    direction = "ASC" if sort_order == "asc" else "DESC"
    return f"{column} {direction}"


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _row_to_stored_video(row: Row) -> StoredVideo:
    return StoredVideo(
        video=VideoRecord(
            video_id=str(row["video_id"]),
            title=str(row["title"]),
            description=str(row["description"]),
            published_at=str(row["published_at"]),
            channel_id=str(row["channel_id"]),
            channel_title=str(row["channel_title"]),
            video_url=str(row["video_url"]),
            thumbnails=_decode_thumbnails(row["thumbnails_json"]),
            view_count=_to_optional_int(row["view_count"]),
            like_count=_to_optional_int(row["like_count"]),
            comment_count=_to_optional_int(row["comment_count"]),
            duration_seconds=_to_optional_int(row["duration_seconds"]),
        ),
        created_at=str(row["created_at"]),
        updated_at=str(row["updated_at"]),
    )


def _decode_thumbnails(raw: object) -> dict[str, Any]:
    if not isinstance(raw, str):
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    if isinstance(parsed, dict):
        return cast(dict[str, Any], parsed)
    return {}


def _to_optional_int(value: object) -> int | None:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return None


def _to_optional_str(value: object) -> str | None:
    if value is None:
        return None
    return str(value)
