from __future__ import annotations

import sqlite3
from datetime import UTC, datetime
from pathlib import Path

from tubefeed.app.repositories.api_key_repository import ApiKeyRepository
from tubefeed.app.repositories.common import mask_api_key, quota_epoch_for
from tubefeed.app.repositories.database import Database
from tubefeed.app.repositories.video_repository import VideoRecord, VideoRepository


def _video(
    video_id: str,
    *,
    title: str,
    published_at: str,
    channel_id: str = "UC_a",
    channel_title: str = "Channel A",
    description: str = "",
    view_count: int | None = None,
) -> VideoRecord:
    return VideoRecord(
        video_id=video_id,
        title=title,
        description=description,
        published_at=published_at,
        channel_id=channel_id,
        channel_title=channel_title,
        video_url=f"https://www.youtube.com/watch?v={video_id}",
        view_count=view_count,
    )


def _seeded_repository(database: Database) -> VideoRepository:
    repository = VideoRepository(database)
    repository.upsert(
        _video("v1", title="Alpha Song", published_at="2026-03-01T00:00:00Z", view_count=10)
    )
    repository.upsert(
        _video(
            "v2",
            title="beta track",
            published_at="2026-03-03T00:00:00Z",
            channel_id="UC_b",
            channel_title="Channel B",
            view_count=500,
        )
    )
    repository.upsert(
        _video(
            "v3",
            title="Gamma 100% Live",
            published_at="2026-03-02T00:00:00Z",
            description="recorded live",
        )
    )
    return repository


def test_initialize_creates_schema(tmp_path: Path) -> None:
    db = Database(tmp_path / "nested" / "state.db")
    db.initialize()

    with sqlite3.connect(db.path) as conn:
        tables = {
            str(row[0])
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
    assert {"api_keys", "videos"} <= tables


def test_api_key_repository_lifecycle(database: Database) -> None:
    repository = ApiKeyRepository(database)
    assert repository.find_by_value("key-a") is None

    created = repository.create("key-a", quota_limit=100, quota_epoch="2026-03-01")
    again = repository.create("key-a", quota_limit=999, quota_epoch="2026-03-09")
    assert created.quota_used == 0
    assert again.quota_limit == 100
    assert again.quota_epoch == "2026-03-01"

    assert repository.increment_quota("key-a", 30) == 30
    assert repository.increment_quota("key-a", 20) == 50
    assert repository.increment_quota("missing", 5) == 0

    repository.set_quota_used("key-a", quota_used=100, quota_epoch="2026-03-01")
    record = repository.find_by_value("key-a")
    assert record is not None
    assert record.quota_used == 100


def test_api_key_reset_all_only_touches_stale_rows(database: Database) -> None:
    repository = ApiKeyRepository(database)
    repository.create("old", quota_limit=100, quota_epoch="2026-02-28")
    repository.create("current", quota_limit=100, quota_epoch="2026-03-01")
    repository.increment_quota("old", 80)
    repository.increment_quota("current", 40)

    assert repository.reset_all(quota_epoch="2026-03-01") == 1

    old = repository.find_by_value("old")
    current = repository.find_by_value("current")
    assert old is not None and current is not None
    assert old.quota_used == 0
    assert old.quota_epoch == "2026-03-01"
    assert current.quota_used == 40


def test_list_videos_sorts_and_paginates(database: Database) -> None:
    repository = _seeded_repository(database)

    first_page = repository.list_videos(page=1, limit=2)
    second_page = repository.list_videos(page=2, limit=2)

    assert first_page.total == 3
    assert [stored.video.video_id for stored in first_page.videos] == ["v2", "v3"]
    assert [stored.video.video_id for stored in second_page.videos] == ["v1"]

    by_title = repository.list_videos(page=1, limit=10, sort_by="title", sort_order="asc")
    assert [stored.video.title for stored in by_title.videos] == [
        "Alpha Song",
        "beta track",
        "Gamma 100% Live",
    ]

    by_views = repository.list_videos(page=1, limit=10, sort_by="view_count", sort_order="desc")
    assert [stored.video.video_id for stored in by_views.videos] == ["v2", "v1", "v3"]


def test_list_videos_filters_by_channel_and_date(database: Database) -> None:
    repository = _seeded_repository(database)

    channel_page = repository.list_videos(page=1, limit=10, channel_id="UC_a")
    assert {stored.video.video_id for stored in channel_page.videos} == {"v1", "v3"}

    dated = repository.list_videos(
        page=1,
        limit=10,
        date_from="2026-03-02T00:00:00Z",
        date_to="2026-03-02T23:59:59Z",
    )
    assert [stored.video.video_id for stored in dated.videos] == ["v3"]


def test_search_requires_every_term_and_escapes_wildcards(database: Database) -> None:
    repository = _seeded_repository(database)

    assert repository.search(terms=["live", "gamma"], page=1, limit=10).total == 1
    assert repository.search(terms=["live", "alpha"], page=1, limit=10).total == 0
    assert repository.search(terms=["channel b"], page=1, limit=10).total == 1

    percent = repository.search(terms=["100%"], page=1, limit=10)
    assert [stored.video.video_id for stored in percent.videos] == ["v3"]
    assert repository.search(terms=["%"], page=1, limit=10).total == 1


def test_titles_matching_orders_by_views(database: Database) -> None:
    repository = _seeded_repository(database)
    repository.upsert(
        _video("v4", title="Alpha Remix", published_at="2026-03-04T00:00:00Z", view_count=900)
    )

    assert repository.list_titles_matching("alpha") == ["Alpha Remix", "Alpha Song"]


def test_stats_summarize_store(database: Database) -> None:
    repository = VideoRepository(database)
    empty = repository.stats()
    assert empty.total_videos == 0
    assert empty.latest_published_at is None

    _seeded_repository(database)
    stats = repository.stats()
    assert stats.total_videos == 3
    assert stats.total_channels == 2
    assert stats.latest_published_at == "2026-03-03T00:00:00Z"
    assert stats.oldest_published_at == "2026-03-01T00:00:00Z"


def test_quota_epoch_and_mask_helpers() -> None:
    moment = datetime(2026, 7, 1, 3, 0, tzinfo=UTC)
    assert quota_epoch_for(moment, "America/Los_Angeles") == "2026-06-30"
    assert quota_epoch_for(moment.replace(tzinfo=None), "UTC") == "2026-07-01"
    assert mask_api_key("abcdefghijkl") == "abcd...ijkl"
    assert mask_api_key("abc") == "***"
