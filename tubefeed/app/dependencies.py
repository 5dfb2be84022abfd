from __future__ import annotations

from functools import lru_cache

from tubefeed.app.config import AppSettings, load_settings
from tubefeed.app.repositories.api_key_repository import ApiKeyRepository
from tubefeed.app.repositories.database import Database
from tubefeed.app.repositories.video_repository import VideoRepository
from tubefeed.app.services.credential_pool import CredentialPool
from tubefeed.app.services.fetch_pipeline import FetchPipeline
from tubefeed.app.services.video_writer import VideoUpsertWriter
from tubefeed.app.services.youtube_fetcher import YouTubeFetcher
from tubefeed.app.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_database() -> Database:
    database = Database(get_settings().db_path)
    database.initialize()
    return database


@lru_cache(maxsize=1)
def get_video_repository() -> VideoRepository:
    return VideoRepository(get_database())


@lru_cache(maxsize=1)
def get_credential_pool() -> CredentialPool:
    settings = get_settings()
    return CredentialPool(
        settings.youtube_api_keys,
        quota_limit=settings.youtube_key_quota_limit,
        repository=ApiKeyRepository(get_database()),
        reset_timezone=settings.youtube_quota_reset_timezone,
    )


@lru_cache(maxsize=1)
def get_pipeline() -> FetchPipeline:
    settings = get_settings()
    fetcher = YouTubeFetcher(
        get_credential_pool(),
        api_endpoint=settings.youtube_api_base_url,
        http_timeout_seconds=settings.youtube_http_timeout_seconds,
        search_cost=settings.youtube_search_cost,
        details_cost=settings.youtube_details_cost,
        search_window_hours=settings.youtube_search_window_hours,
        details_parts=settings.youtube_details_parts,
        telemetry=get_telemetry(),
    )
    return FetchPipeline(
        fetcher,
        VideoUpsertWriter(get_video_repository()),
        telemetry=get_telemetry(),
    )


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


def reset_cached_dependencies() -> None:
    get_pipeline.cache_clear()
    get_credential_pool.cache_clear()
    get_video_repository.cache_clear()
    get_database.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()
