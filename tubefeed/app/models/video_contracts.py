from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tubefeed.app.repositories.video_repository import StoredVideo, VideoPage

VideoListSortField = Literal["published_at", "title", "view_count"]
SearchSortField = Literal["relevance", "published_at", "view_count"]
SortOrder = Literal["asc", "desc"]


class VideoOut(BaseModel):
    model_config = ConfigDict(extra="forbid")

    video_id: str
    title: str
    description: str
    video_url: str
    published_at: str
    channel_id: str
    channel_title: str
    thumbnails: dict[str, Any]
    duration_seconds: int | None = None
    view_count: int | None = None
    like_count: int | None = None
    comment_count: int | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_stored(cls, stored: StoredVideo, *, include_timestamps: bool = False) -> VideoOut:
        video = stored.video
        return cls(
            video_id=video.video_id,
            title=video.title,
            description=video.description,
            video_url=video.video_url,
            published_at=video.published_at,
            channel_id=video.channel_id,
            channel_title=video.channel_title,
            thumbnails=video.thumbnails,
            duration_seconds=video.duration_seconds,
            view_count=video.view_count,
            like_count=video.like_count,
            comment_count=video.comment_count,
            created_at=stored.created_at if include_timestamps else None,
            updated_at=stored.updated_at if include_timestamps else None,
        )


class Pagination(BaseModel):
    model_config = ConfigDict(extra="forbid")

    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, *, page: int, limit: int, total: int) -> Pagination:
        total_pages = (total + limit - 1) // limit if limit > 0 else 0
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )


class VideoListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    videos: list[VideoOut]
    pagination: Pagination

    @classmethod
    def from_page(cls, video_page: VideoPage, *, page: int, limit: int) -> VideoListResponse:
        return cls(
            videos=[VideoOut.from_stored(stored) for stored in video_page.videos],
            pagination=Pagination.build(page=page, limit=limit, total=video_page.total),
        )


class SearchRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    query: str = Field(min_length=1, max_length=100)
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)
    sort_by: SearchSortField = "relevance"
    sort_order: SortOrder = "desc"

    @field_validator("query")
    @classmethod
    def _normalize_query(cls, value: str) -> str:
        normalized = " ".join(value.split())
        if not normalized:
            raise ValueError("query must contain at least one search term")
        return normalized


class SearchMeta(BaseModel):
    model_config = ConfigDict(extra="forbid")

    search_query: str
    search_terms: int
    total_matches: int


class SearchResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    data: VideoListResponse
    meta: SearchMeta


class SuggestionsResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    suggestions: list[str]


class DateRange(BaseModel):
    model_config = ConfigDict(extra="forbid")

    latest: str | None
    oldest: str | None


class VideoStatsResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    total_videos: int
    total_channels: int
    date_range: DateRange


class CredentialUsageOut(BaseModel):
    model_config = ConfigDict(extra="forbid")

    key: str
    quota_used: int
    quota_limit: int
    exhausted: bool
    active: bool


class CredentialPoolResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    quota_epoch: str
    credentials: list[CredentialUsageOut]


class SchedulerStatusResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool
    state: Literal["idle", "running"] | None = None
    runs_started: int = 0
    ticks_skipped: int = 0
