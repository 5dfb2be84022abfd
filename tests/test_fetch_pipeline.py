from __future__ import annotations

from collections.abc import Mapping
from typing import Any, cast

import pytest

from tubefeed.app.repositories.database import Database
from tubefeed.app.repositories.video_repository import VideoRepository
from tubefeed.app.services.fetch_pipeline import FetchPipeline
from tubefeed.app.services.video_writer import VideoUpsertWriter
from tubefeed.app.services.youtube_fetcher import YouTubeApiError
from tubefeed.app.telemetry import TelemetryClient


class _CaptureSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self.events.append((event_name, dict(attributes)))


class _FakeFetcher:
    def __init__(
        self,
        search_ids: list[str],
        *,
        details_order: list[str] | None = None,
        search_error: Exception | None = None,
    ) -> None:
        self.search_ids = search_ids
        self.details_order = details_order
        self.search_error = search_error
        self.search_calls: list[tuple[str, str | None, float | None]] = []
        self.details_calls: list[list[str]] = []

    def search(
        self,
        query: str,
        published_after: str | None = None,
        *,
        deadline: float | None = None,
    ) -> list[dict[str, Any]]:
        self.search_calls.append((query, published_after, deadline))
        if self.search_error is not None:
            raise self.search_error
        return [{"id": {"videoId": video_id}} for video_id in self.search_ids]

    def details(
        self,
        video_ids: list[str],
        *,
        deadline: float | None = None,
    ) -> list[dict[str, Any]]:
        _ = deadline
        self.details_calls.append(list(video_ids))
        order = self.details_order if self.details_order is not None else video_ids
        return [
            {"id": video_id, "snippet": {"title": f"Title {video_id}"}}
            for video_id in order
            if video_id in video_ids
        ]


def _pipeline(
    fetcher: _FakeFetcher,
    database: Database,
    sink: _CaptureSink | None = None,
) -> FetchPipeline:
    telemetry = (
        TelemetryClient(enabled=True, sink=sink) if sink is not None else TelemetryClient.disabled()
    )
    return FetchPipeline(
        cast(Any, fetcher),
        VideoUpsertWriter(VideoRepository(database)),
        telemetry=telemetry,
    )


def test_run_fetches_details_for_unique_ids_and_saves_them(database: Database) -> None:
    fetcher = _FakeFetcher(["a", "b", "a", "c"])

    summary = _pipeline(fetcher, database).run("official music video", timeout_seconds=60)

    assert fetcher.details_calls == [["a", "b", "c"]]
    assert summary.query == "official music video"
    assert summary.items_fetched == 3
    assert summary.items_saved == 3
    assert summary.items_failed == 0
    assert summary.duration_ms >= 0
    assert summary.run_id
    assert VideoRepository(database).count() == 3


def test_run_passes_deadline_and_published_after(database: Database) -> None:
    fetcher = _FakeFetcher(["a"])

    _pipeline(fetcher, database).run(
        "q",
        timeout_seconds=60,
        published_after="2026-01-01T00:00:00Z",
    )

    query, published_after, deadline = fetcher.search_calls[0]
    assert query == "q"
    assert published_after == "2026-01-01T00:00:00Z"
    assert deadline is not None


def test_run_without_timeout_has_no_deadline(database: Database) -> None:
    fetcher = _FakeFetcher(["a"])

    _pipeline(fetcher, database).run("q")

    assert fetcher.search_calls[0][2] is None


def test_run_saves_in_search_order(database: Database, monkeypatch: pytest.MonkeyPatch) -> None:
    fetcher = _FakeFetcher(["a", "b", "c"], details_order=["c", "a", "b"])
    saved_order: list[str] = []
    original_upsert = VideoRepository.upsert

    def _recording_upsert(self: VideoRepository, video: Any) -> None:
        saved_order.append(video.video_id)
        original_upsert(self, video)

    monkeypatch.setattr(VideoRepository, "upsert", _recording_upsert)

    _pipeline(fetcher, database).run("q")

    assert saved_order == ["a", "b", "c"]


def test_run_with_empty_search_saves_nothing(database: Database) -> None:
    fetcher = _FakeFetcher([])

    summary = _pipeline(fetcher, database).run("q")

    assert summary.items_fetched == 0
    assert summary.items_saved == 0
    assert fetcher.details_calls == [[]]


def test_run_emits_start_and_finish_telemetry(database: Database) -> None:
    sink = _CaptureSink()

    summary = _pipeline(_FakeFetcher(["a", "b"]), database, sink).run("q")

    names = [event_name for event_name, _ in sink.events]
    assert names == ["fetch.run.start", "fetch.run.finish"]
    finish_attributes = sink.events[-1][1]
    assert finish_attributes["items_saved"] == 2
    assert finish_attributes["outcome"] == "ok"
    assert all(attributes["run_id"] == summary.run_id for _, attributes in sink.events)
    assert all(attributes["query"] == "q" for _, attributes in sink.events)


def test_run_failure_emits_error_and_propagates(database: Database) -> None:
    sink = _CaptureSink()
    fetcher = _FakeFetcher([], search_error=YouTubeApiError("boom", status_code=500))

    with pytest.raises(YouTubeApiError):
        _pipeline(fetcher, database, sink).run("q")

    assert [event_name for event_name, _ in sink.events] == ["fetch.run.start", "fetch.run.error"]
    assert sink.events[-1][1]["error_type"] == "YouTubeApiError"
