from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from tubefeed.app.dependencies import reset_cached_dependencies
from tubefeed.app.main import create_app
from tubefeed.app.repositories.database import Database
from tubefeed.app.repositories.video_repository import VideoRecord, VideoRepository

TEST_API_KEYS = ("AIzaTestKeyAlpha0001", "AIzaTestKeyBravo0002")


def make_video(
    video_id: str,
    *,
    title: str = "Untitled",
    description: str = "",
    published_at: str = "2026-03-01T00:00:00Z",
    channel_id: str = "UC_default",
    channel_title: str = "Default Channel",
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
        thumbnails={"default": {"url": f"https://i.ytimg.com/vi/{video_id}/default.jpg"}},
        view_count=view_count,
    )


def _seed_videos(db_path: Path) -> None:
    db = Database(db_path)
    db.initialize()
    repository = VideoRepository(db)
    repository.upsert(
        make_video(
            "vid_sunrise",
            title="Sunrise Drive (Official Music Video)",
            description="Official video for the new single.",
            published_at="2026-03-03T10:00:00Z",
            channel_id="UC_sunrise",
            channel_title="Sunrise Band",
            view_count=1500,
        )
    )
    repository.upsert(
        make_video(
            "vid_harbor",
            title="Harbor Lights (Lyric Video)",
            description="Lyrics on screen.",
            published_at="2026-03-02T10:00:00Z",
            channel_id="UC_harbor",
            channel_title="Harbor Collective",
            view_count=9000,
        )
    )
    repository.upsert(
        make_video(
            "vid_nightfall",
            title="Nightfall Official Video",
            description="Shot on location.",
            published_at="2026-03-01T10:00:00Z",
            channel_id="UC_sunrise",
            channel_title="Sunrise Band",
            view_count=300,
        )
    )


@pytest.fixture(autouse=True)
def _tubefeed_env_defaults(monkeypatch: pytest.MonkeyPatch) -> None:  # pyright: ignore[reportUnusedFunction]
    monkeypatch.setenv("TUBEFEED_YOUTUBE_API_KEYS", ",".join(TEST_API_KEYS))
    monkeypatch.setenv("TUBEFEED_ENABLE_SCHEDULER", "0")
    monkeypatch.setenv("TUBEFEED_YOUTUBE_API_BASE_URL", "http://127.0.0.1:9")


@pytest.fixture
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "state.db")
    db.initialize()
    return db


@pytest.fixture
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[TestClient]:
    data_dir = tmp_path / "runtime-data"
    data_dir.mkdir(parents=True, exist_ok=True)
    _seed_videos(data_dir / "state.db")

    monkeypatch.setenv("TUBEFEED_DATA_DIR", str(data_dir))
    monkeypatch.setenv("TUBEFEED_TELEMETRY_SINK", "none")
    reset_cached_dependencies()

    app = create_app()
    with TestClient(app) as test_client:
        yield test_client

    reset_cached_dependencies()
