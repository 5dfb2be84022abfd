from __future__ import annotations

import logging
import re
import sqlite3
import time
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, cast

from tubefeed.app.repositories.video_repository import VideoRecord, VideoRepository
from tubefeed.app.services.youtube_fetcher import FetchDeadlineExceededError

LOGGER = logging.getLogger("tubefeed.writer")

VIDEO_URL_TEMPLATE = "https://www.youtube.com/watch?v={video_id}"
ISO8601_DURATION_PATTERN = re.compile(
    r"^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+)S)?)?$"
)


class VideoWriterError(Exception):
    pass


class VideoMappingError(VideoWriterError):
    pass


class VideoStoreUnavailableError(VideoWriterError):
    pass


@dataclass(frozen=True)
class VideoSaveResult:
    video_id: str | None
    ok: bool
    error: str | None = None
    error_type: str | None = None
    storage_error: bool = False


@dataclass(frozen=True)
class BatchSaveReport:
    results: list[VideoSaveResult]

    @property
    def saved(self) -> int:
        return sum(1 for result in self.results if result.ok)

    @property
    def failed(self) -> int:
        return sum(1 for result in self.results if not result.ok)

    @property
    def failures(self) -> list[VideoSaveResult]:
        return [result for result in self.results if not result.ok]


class VideoUpsertWriter:
    def __init__(self, repository: VideoRepository) -> None:
        self._repository = repository

    def save(self, raw_item: dict[str, Any]) -> VideoSaveResult:
        video_id = _extract_video_id(raw_item)
        try:
            record = map_video(raw_item)
            self._repository.upsert(record)
        except Exception as exc:
            LOGGER.warning(
                "video save failed video_id=%s error_type=%s error=%s",
                video_id,
                type(exc).__name__,
                exc,
            )
            return VideoSaveResult(
                video_id=video_id,
                ok=False,
                error=str(exc) or repr(exc),
                error_type=type(exc).__name__,
                storage_error=isinstance(exc, sqlite3.Error),
            )
        return VideoSaveResult(video_id=record.video_id, ok=True)

    def save_batch(
        self,
        raw_items: Iterable[dict[str, Any]],
        *,
        deadline: float | None = None,
    ) -> BatchSaveReport:
        results: list[VideoSaveResult] = []
        for raw_item in raw_items:
            if deadline is not None and time.monotonic() >= deadline:
                raise FetchDeadlineExceededError(
                    f"Fetch run deadline passed after saving {len(results)} videos."
                )
            results.append(self.save(raw_item))

        report = BatchSaveReport(results=results)
        if results and all(result.storage_error for result in results):
            raise VideoStoreUnavailableError(
                f"Video store rejected all {len(results)} writes: {results[0].error}"
            )
        return report


def map_video(raw_item: dict[str, Any]) -> VideoRecord:
    video_id = _extract_video_id(raw_item)
    if video_id is None:
        raise VideoMappingError("Raw video item has no video id.")

    snippet = _as_dict(raw_item.get("snippet"))
    statistics = _as_dict(raw_item.get("statistics"))
    content_details = _as_dict(raw_item.get("contentDetails"))

    return VideoRecord(
        video_id=video_id,
        title=_text(snippet.get("title")),
        description=_text(snippet.get("description")),
        published_at=_text(snippet.get("publishedAt")),
        channel_id=_text(snippet.get("channelId")),
        channel_title=_text(snippet.get("channelTitle")),
        video_url=VIDEO_URL_TEMPLATE.format(video_id=video_id),
        thumbnails=_as_dict(snippet.get("thumbnails")),
        view_count=_coerce_int(statistics.get("viewCount")),
        like_count=_coerce_int(statistics.get("likeCount")),
        comment_count=_coerce_int(statistics.get("commentCount")),
        duration_seconds=_parse_iso8601_duration_seconds(content_details.get("duration")),
    )


def _extract_video_id(raw_item: dict[str, Any]) -> str | None:
    raw_id = raw_item.get("id")
    if isinstance(raw_id, dict):
        raw_id = cast(dict[str, Any], raw_id).get("videoId")
    if isinstance(raw_id, str) and raw_id.strip():
        return raw_id.strip()
    return None


def _parse_iso8601_duration_seconds(raw_value: object) -> int | None:
    if not isinstance(raw_value, str):
        return None
    matched = ISO8601_DURATION_PATTERN.match(raw_value.strip())
    if matched is None:
        return None

    days = int(matched.group("days") or 0)
    hours = int(matched.group("hours") or 0)
    minutes = int(matched.group("minutes") or 0)
    seconds = int(matched.group("seconds") or 0)
    return days * 86_400 + hours * 3_600 + minutes * 60 + seconds


def _text(raw_value: object) -> str:
    if isinstance(raw_value, str):
        return raw_value
    return ""


def _coerce_int(raw_value: object) -> int | None:
    if isinstance(raw_value, bool):
        return None
    if isinstance(raw_value, int):
        return raw_value
    if isinstance(raw_value, float):
        return int(raw_value)
    if isinstance(raw_value, str):
        try:
            return int(raw_value)
        except ValueError:
            return None
    return None


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return dict(cast(dict[str, Any], value))
    return {}
