from __future__ import annotations

import string
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from tubefeed.app.dependencies import get_credential_pool, get_video_repository
from tubefeed.app.models.video_contracts import (
    CredentialPoolResponse,
    CredentialUsageOut,
    DateRange,
    SearchMeta,
    SearchRequest,
    SearchResponse,
    SortOrder,
    SuggestionsResponse,
    VideoListResponse,
    VideoListSortField,
    VideoOut,
    VideoStatsResponse,
)
from tubefeed.app.repositories.video_repository import VideoRepository
from tubefeed.app.services.credential_pool import CredentialPool

router = APIRouter()

MAX_SUGGESTIONS = 5
SUGGESTION_SOURCE_TITLES = 10
MIN_SUGGESTION_WORD_LENGTH = 3


@router.get(
    "/videos",
    response_model=VideoListResponse,
    tags=["videos"],
    operation_id="list_videos",
)
def list_videos(
    repository: Annotated[VideoRepository, Depends(get_video_repository)],
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    sort_by: VideoListSortField = "published_at",
    sort_order: SortOrder = "desc",
    channel_id: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
) -> VideoListResponse:
    video_page = repository.list_videos(
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
        channel_id=channel_id,
        date_from=date_from,
        date_to=date_to,
    )
    return VideoListResponse.from_page(video_page, page=page, limit=limit)


@router.get(
    "/videos/stats",
    response_model=VideoStatsResponse,
    tags=["videos"],
    operation_id="video_stats",
)
def video_stats(
    repository: Annotated[VideoRepository, Depends(get_video_repository)],
) -> VideoStatsResponse:
    stats = repository.stats()
    return VideoStatsResponse(
        total_videos=stats.total_videos,
        total_channels=stats.total_channels,
        date_range=DateRange(
            latest=stats.latest_published_at,
            oldest=stats.oldest_published_at,
        ),
    )


@router.get(
    "/videos/{video_id}",
    response_model=VideoOut,
    tags=["videos"],
    operation_id="get_video",
)
def get_video(
    video_id: str,
    repository: Annotated[VideoRepository, Depends(get_video_repository)],
) -> VideoOut:
    stored = repository.get(video_id.strip())
    if stored is None:
        raise HTTPException(status_code=404, detail="Video not found")
    return VideoOut.from_stored(stored, include_timestamps=True)


@router.post(
    "/search",
    response_model=SearchResponse,
    tags=["search"],
    operation_id="search_videos",
)
def search_videos(
    request: SearchRequest,
    repository: Annotated[VideoRepository, Depends(get_video_repository)],
) -> SearchResponse:
    terms = request.query.lower().split()
    # "relevance" has no ranking yet and orders by newest first.
    if request.sort_by == "relevance":
        video_page = repository.search(
            terms=terms,
            page=request.page,
            limit=request.limit,
            sort_by="published_at",
            sort_order="desc",
        )
    else:
        video_page = repository.search(
            terms=terms,
            page=request.page,
            limit=request.limit,
            sort_by=request.sort_by,
            sort_order=request.sort_order,
        )
    return SearchResponse(
        data=VideoListResponse.from_page(video_page, page=request.page, limit=request.limit),
        meta=SearchMeta(
            search_query=request.query,
            search_terms=len(terms),
            total_matches=video_page.total,
        ),
    )


@router.get(
    "/search/suggestions",
    response_model=SuggestionsResponse,
    tags=["search"],
    operation_id="search_suggestions",
)
def search_suggestions(
    q: Annotated[str, Query(min_length=1, max_length=100)],
    repository: Annotated[VideoRepository, Depends(get_video_repository)],
) -> SuggestionsResponse:
    fragment = q.strip().lower()
    if not fragment:
        raise HTTPException(status_code=400, detail='Query parameter "q" is required')

    suggestions: list[str] = []
    for title in repository.list_titles_matching(fragment, limit=SUGGESTION_SOURCE_TITLES):
        for raw_word in title.lower().split():
            word = raw_word.strip(string.punctuation)
            if len(word) < MIN_SUGGESTION_WORD_LENGTH or fragment not in word:
                continue
            if word not in suggestions:
                suggestions.append(word)
    return SuggestionsResponse(suggestions=suggestions[:MAX_SUGGESTIONS])


@router.get(
    "/system/credentials",
    response_model=CredentialPoolResponse,
    tags=["system"],
    operation_id="credential_usage",
)
def credential_usage(
    pool: Annotated[CredentialPool, Depends(get_credential_pool)],
) -> CredentialPoolResponse:
    return CredentialPoolResponse(
        quota_epoch=pool.quota_epoch,
        credentials=[
            CredentialUsageOut(
                key=usage.masked_value,
                quota_used=usage.quota_used,
                quota_limit=usage.quota_limit,
                exhausted=usage.exhausted,
                active=usage.active,
            )
            for usage in pool.snapshot()
        ],
    )
