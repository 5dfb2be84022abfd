from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from structlog.contextvars import bind_contextvars, reset_contextvars

from tubefeed.app.repositories.common import utc_now_iso
from tubefeed.app.services.video_writer import VideoUpsertWriter
from tubefeed.app.services.youtube_fetcher import YouTubeFetcher
from tubefeed.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("tubefeed.fetch")


@dataclass(frozen=True)
class FetchRunSummary:
    run_id: str
    started_at: str
    query: str
    items_fetched: int
    items_saved: int
    items_failed: int
    duration_ms: int


class FetchPipeline:
    def __init__(
        self,
        fetcher: YouTubeFetcher,
        writer: VideoUpsertWriter,
        *,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._writer = writer
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    def run(
        self,
        query: str,
        *,
        timeout_seconds: float | None = None,
        published_after: str | None = None,
    ) -> FetchRunSummary:
        run_id = uuid4().hex
        context_tokens = bind_contextvars(fetch_run_id=run_id)
        started_at = utc_now_iso()
        started = time.perf_counter()
        deadline = time.monotonic() + timeout_seconds if timeout_seconds is not None else None
        telemetry = self._telemetry.bind(run_id=run_id, query=query)
        telemetry.emit("fetch.run.start")
        try:
            search_results = self._fetcher.search(query, published_after, deadline=deadline)
            video_ids = _ordered_video_ids(search_results)
            details = self._fetcher.details(video_ids, deadline=deadline)
            report = self._writer.save_batch(
                _in_search_order(details, video_ids),
                deadline=deadline,
            )
        except Exception as exc:
            telemetry.emit(
                "fetch.run.error",
                duration_ms=int((time.perf_counter() - started) * 1000),
                error_type=type(exc).__name__,
            )
            raise
        finally:
            reset_contextvars(**context_tokens)

        summary = FetchRunSummary(
            run_id=run_id,
            started_at=started_at,
            query=query,
            items_fetched=len(details),
            items_saved=report.saved,
            items_failed=report.failed,
            duration_ms=int((time.perf_counter() - started) * 1000),
        )
        missing = len(video_ids) - len(details)
        LOGGER.info(
            "fetch run finished run_id=%s query=%s searched=%s fetched=%s saved=%s failed=%s "
            "missing_details=%s duration_ms=%s",
            run_id,
            query,
            len(video_ids),
            summary.items_fetched,
            summary.items_saved,
            summary.items_failed,
            max(0, missing),
            summary.duration_ms,
        )
        telemetry.emit(
            "fetch.run.finish",
            items_fetched=summary.items_fetched,
            items_saved=summary.items_saved,
            items_failed=summary.items_failed,
            duration_ms=summary.duration_ms,
            outcome="ok",
        )
        return summary


def _ordered_video_ids(search_results: list[dict[str, Any]]) -> list[str]:
    video_ids: list[str] = []
    seen: set[str] = set()
    for item in search_results:
        raw_id = item.get("id")
        video_id = raw_id.get("videoId") if isinstance(raw_id, dict) else None
        if isinstance(video_id, str) and video_id and video_id not in seen:
            seen.add(video_id)
            video_ids.append(video_id)
    return video_ids


def _in_search_order(
    details: list[dict[str, Any]],
    video_ids: list[str],
) -> list[dict[str, Any]]:
    positions = {video_id: index for index, video_id in enumerate(video_ids)}
    fallback = len(positions)
    return sorted(
        details,
        key=lambda item: positions.get(str(item.get("id")), fallback),
    )
