from __future__ import annotations

import sqlite3

import pytest
from fastapi.testclient import TestClient

from tubefeed.app.repositories.video_repository import VideoRepository


def test_health(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_request_id_header_is_echoed(client: TestClient) -> None:
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"

    generated = client.get("/health")
    assert generated.headers["X-Request-ID"]


def test_list_videos_defaults_to_newest_first_with_pagination(client: TestClient) -> None:
    response = client.get("/videos", params={"limit": 2})
    assert response.status_code == 200
    body = response.json()

    assert [video["video_id"] for video in body["videos"]] == ["vid_sunrise", "vid_harbor"]
    assert body["pagination"] == {
        "page": 1,
        "limit": 2,
        "total": 3,
        "total_pages": 2,
        "has_next": True,
        "has_prev": False,
    }
    assert body["videos"][0]["created_at"] is None
    assert body["videos"][0]["video_url"] == "https://www.youtube.com/watch?v=vid_sunrise"

    second = client.get("/videos", params={"limit": 2, "page": 2}).json()
    assert [video["video_id"] for video in second["videos"]] == ["vid_nightfall"]
    assert second["pagination"]["has_prev"] is True


def test_list_videos_filters_and_sorts(client: TestClient) -> None:
    by_channel = client.get("/videos", params={"channel_id": "UC_sunrise"}).json()
    assert {video["video_id"] for video in by_channel["videos"]} == {"vid_sunrise", "vid_nightfall"}

    by_views = client.get("/videos", params={"sort_by": "view_count"}).json()
    assert [video["video_id"] for video in by_views["videos"]] == [
        "vid_harbor",
        "vid_sunrise",
        "vid_nightfall",
    ]

    assert client.get("/videos", params={"limit": 500}).status_code == 422
    assert client.get("/videos", params={"sort_by": "likes"}).status_code == 422


def test_video_stats(client: TestClient) -> None:
    response = client.get("/videos/stats")
    assert response.status_code == 200
    assert response.json() == {
        "total_videos": 3,
        "total_channels": 2,
        "date_range": {
            "latest": "2026-03-03T10:00:00Z",
            "oldest": "2026-03-01T10:00:00Z",
        },
    }


def test_get_video_by_id(client: TestClient) -> None:
    response = client.get("/videos/vid_harbor")
    assert response.status_code == 200
    body = response.json()
    assert body["title"] == "Harbor Lights (Lyric Video)"
    assert body["view_count"] == 9000
    assert body["created_at"]
    assert body["updated_at"]

    missing = client.get("/videos/does_not_exist")
    assert missing.status_code == 404
    assert missing.json() == {"detail": "Video not found"}


def test_search_matches_all_terms(client: TestClient) -> None:
    response = client.post("/search", json={"query": "official  video"})
    assert response.status_code == 200
    body = response.json()

    assert [video["video_id"] for video in body["data"]["videos"]] == [
        "vid_sunrise",
        "vid_nightfall",
    ]
    assert body["meta"] == {
        "search_query": "official video",
        "search_terms": 2,
        "total_matches": 2,
    }


def test_search_honors_explicit_sort(client: TestClient) -> None:
    response = client.post(
        "/search",
        json={"query": "video", "sort_by": "view_count", "sort_order": "asc"},
    )
    assert response.status_code == 200
    assert [video["video_id"] for video in response.json()["data"]["videos"]] == [
        "vid_nightfall",
        "vid_sunrise",
        "vid_harbor",
    ]


def test_search_rejects_blank_query(client: TestClient) -> None:
    assert client.post("/search", json={"query": "   "}).status_code == 422
    assert client.post("/search", json={"query": "x" * 101}).status_code == 422
    assert client.post("/search", json={"query": "ok", "limit": 0}).status_code == 422


def test_search_suggestions(client: TestClient) -> None:
    response = client.get("/search/suggestions", params={"q": "offi"})
    assert response.status_code == 200
    assert response.json() == {"suggestions": ["official"]}

    assert client.get("/search/suggestions", params={"q": "zzz"}).json() == {"suggestions": []}
    assert client.get("/search/suggestions").status_code == 422


def test_credential_usage_is_masked(client: TestClient) -> None:
    response = client.get("/system/credentials")
    assert response.status_code == 200
    body = response.json()

    assert body["quota_epoch"]
    assert [credential["key"] for credential in body["credentials"]] == [
        "AIza...0001",
        "AIza...0002",
    ]
    assert [credential["active"] for credential in body["credentials"]] == [True, False]
    assert all(credential["quota_used"] == 0 for credential in body["credentials"])
    assert all(credential["quota_limit"] == 10_000 for credential in body["credentials"])
    assert "AIzaTestKeyAlpha0001" not in response.text


def test_scheduler_status_when_disabled(client: TestClient) -> None:
    response = client.get("/system/scheduler")
    assert response.status_code == 200
    assert response.json() == {
        "enabled": False,
        "state": None,
        "runs_started": 0,
        "ticks_skipped": 0,
    }


def test_storage_failure_maps_to_service_unavailable(
    client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def _locked(*_args: object, **_kwargs: object) -> object:
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(VideoRepository, "stats", _locked)

    response = client.get("/videos/stats")
    assert response.status_code == 503
    assert response.json() == {"detail": "Video store unavailable"}
