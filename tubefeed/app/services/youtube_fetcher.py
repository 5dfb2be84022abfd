from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from functools import partial
from typing import Any, cast

import httplib2
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from tubefeed.app.services.credential_pool import (
    AllCredentialsExhaustedError,
    Credential,
    CredentialPool,
)
from tubefeed.app.telemetry import TelemetryClient, scrub_credentials

LOGGER = logging.getLogger("tubefeed.youtube")

SEARCH_PAGE_SIZE = 50
DETAILS_BATCH_SIZE = 50
QUOTA_EXHAUSTED_REASONS: frozenset[str] = frozenset({"quotaExceeded", "dailyLimitExceeded"})
_QUOTA_MESSAGE_MARKERS = (
    "quotaexceeded",
    "dailylimitexceeded",
    "quota exceeded",
    "exceeded your quota",
)

# (api_key, timeout_seconds) -> YouTube Data API v3 resource
YouTubeClientFactory = Callable[[str, float], Any]


class YouTubeFetchError(Exception):
    pass


class YouTubeApiError(YouTubeFetchError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        reason: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.reason = reason


class YouTubeQuotaExceededError(YouTubeApiError):
    pass


class FetchDeadlineExceededError(YouTubeFetchError):
    pass


def build_youtube_client(
    api_key: str,
    timeout_seconds: float,
    *,
    api_endpoint: str | None = None,
) -> Any:
    client_options: dict[str, str] | None = None
    if api_endpoint:
        client_options = {"api_endpoint": f"{api_endpoint.rstrip('/')}/"}
    return build(
        "youtube",
        "v3",
        developerKey=api_key,
        cache_discovery=False,
        http=httplib2.Http(timeout=timeout_seconds),
        client_options=client_options,
    )


class YouTubeFetcher:
    def __init__(
        self,
        pool: CredentialPool,
        *,
        api_endpoint: str | None = None,
        http_timeout_seconds: float = 30.0,
        search_cost: int = 100,
        details_cost: int = 1,
        search_window_hours: int = 24,
        details_parts: str = "snippet,statistics",
        client_factory: YouTubeClientFactory | None = None,
        clock: Callable[[], datetime] | None = None,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        for name, cost in (("search", search_cost), ("details", details_cost)):
            if cost > pool.quota_limit:
                raise ValueError(
                    f"YouTube {name} cost {cost} exceeds the per-key quota limit "
                    f"{pool.quota_limit}; no key could ever afford it."
                )

        self._pool = pool
        self._http_timeout_seconds = max(1.0, http_timeout_seconds)
        self._search_cost = max(0, search_cost)
        self._details_cost = max(0, details_cost)
        self._search_window = timedelta(hours=max(1, search_window_hours))
        self._details_parts = details_parts
        self._client_factory = (
            client_factory
            if client_factory is not None
            else partial(build_youtube_client, api_endpoint=api_endpoint)
        )
        self._clock = clock if clock is not None else _utc_now
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    def search(
        self,
        query: str,
        published_after: str | None = None,
        *,
        deadline: float | None = None,
    ) -> list[dict[str, Any]]:
        """
        Newest videos matching `query`, one page of up to 50 results.

        A quota-exhausted key is marked and the next key is tried, at most once
        per key in the pool. Any other failure propagates on the first attempt.
        """
        params: dict[str, Any] = {
            "part": "snippet",
            "type": "video",
            "order": "date",
            "maxResults": SEARCH_PAGE_SIZE,
            "q": query,
            "publishedAfter": published_after or self._default_published_after(),
        }

        attempts = 0
        last_key: str | None = None
        while attempts < self._pool.size:
            try:
                credential = self._pool.acquire(self._search_cost)
            except AllCredentialsExhaustedError as exc:
                exc.attempts = attempts
                exc.last_key = last_key
                raise
            try:
                payload = self._call("search", params, credential, deadline=deadline)
            except YouTubeQuotaExceededError as exc:
                attempts += 1
                last_key = credential.masked
                LOGGER.warning(
                    "youtube search quota exceeded; rotating key=%s attempt=%s pool_size=%s",
                    credential.masked,
                    attempts,
                    self._pool.size,
                )
                self._pool.mark_exhausted(credential)
                self._telemetry.emit(
                    "youtube.search.quota_exceeded",
                    attempt=attempts,
                    pool_size=self._pool.size,
                    reason=exc.reason,
                )
                continue

            self._pool.record_usage(credential, self._search_cost)
            items = _as_list(payload.get("items"))
            LOGGER.info(
                "youtube search ok query=%s items=%s key=%s",
                query,
                len(items),
                credential.masked,
            )
            return [_as_dict(item) for item in items]

        raise AllCredentialsExhaustedError(
            f"All {self._pool.size} API keys reported quota exhaustion during search.",
            pool_size=self._pool.size,
            quota_epoch=self._pool.quota_epoch,
            attempts=attempts,
            last_key=last_key,
        )

    def details(
        self,
        video_ids: list[str],
        *,
        deadline: float | None = None,
    ) -> list[dict[str, Any]]:
        if not video_ids:
            return []

        records: list[dict[str, Any]] = []
        for start in range(0, len(video_ids), DETAILS_BATCH_SIZE):
            chunk = video_ids[start : start + DETAILS_BATCH_SIZE]
            credential = self._pool.acquire(self._details_cost)
            params = {
                "part": self._details_parts,
                "id": ",".join(chunk),
            }
            payload = self._call("videos", params, credential, deadline=deadline)
            self._pool.record_usage(credential, self._details_cost)
            records.extend(_as_dict(item) for item in _as_list(payload.get("items")))
        return records

    def _default_published_after(self) -> str:
        moment = self._clock().astimezone(UTC) - self._search_window
        return moment.replace(microsecond=0).isoformat().replace("+00:00", "Z")

    def _call(
        self,
        resource: str,
        params: dict[str, Any],
        credential: Credential,
        *,
        deadline: float | None,
    ) -> dict[str, Any]:
        timeout_seconds = self._timeout_for(deadline)
        try:
            client = self._client_factory(credential.value, timeout_seconds)
            collection = getattr(client, resource)()
            payload = collection.list(**params).execute()
        except HttpError as exc:
            raise _api_error_from_http_error(resource, exc) from exc
        except (httplib2.HttpLib2Error, OSError) as exc:
            if deadline is not None and time.monotonic() >= deadline:
                raise FetchDeadlineExceededError(
                    f"Fetch run deadline passed during YouTube {resource} call."
                ) from exc
            raise YouTubeApiError(
                f"YouTube {resource} request failed: {scrub_credentials(str(exc))}",
                status_code=0,
            ) from exc
        return _as_dict(payload)

    def _timeout_for(self, deadline: float | None) -> float:
        if deadline is None:
            return self._http_timeout_seconds
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise FetchDeadlineExceededError("Fetch run deadline passed before YouTube call.")
        return min(self._http_timeout_seconds, remaining)


def _api_error_from_http_error(resource: str, exc: HttpError) -> YouTubeApiError:
    status_code = int(getattr(exc.resp, "status", 0) or 0)
    reason = _error_reason(exc)
    message = getattr(exc, "reason", None)
    summary = message.strip() if isinstance(message, str) and message.strip() else "unknown error"
    text = scrub_credentials(
        f"YouTube {resource} call failed status={status_code} reason={reason}: {summary}"
    )
    if _is_quota_exhausted(reason, summary):
        return YouTubeQuotaExceededError(text, status_code=status_code, reason=reason)
    return YouTubeApiError(text, status_code=status_code, reason=reason)


def _error_reason(exc: HttpError) -> str | None:
    details = getattr(exc, "error_details", None)
    for raw_detail in _as_list(details):
        detail = _as_dict(raw_detail)
        reason = detail.get("reason")
        if isinstance(reason, str) and reason.strip():
            return reason.strip()
    return None


def _is_quota_exhausted(reason: str | None, message: str) -> bool:
    if reason is not None:
        return reason in QUOTA_EXHAUSTED_REASONS
    lowered = message.lower()
    return any(marker in lowered for marker in _QUOTA_MESSAGE_MARKERS)


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        raw_dict = cast(dict[object, object], value)
        converted: dict[str, Any] = {}
        for key, item in raw_dict.items():
            if isinstance(key, str):
                converted[key] = item
        return converted
    return {}


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        return list(cast(list[Any], value))
    return []
