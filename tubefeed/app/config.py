from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_DATA_DIR = ".tubefeed"
_DATA_DIR_RELATIVE_DEFAULTS: tuple[tuple[str, Path], ...] = (
    ("db_path", Path("state.db")),
    ("log_dir", Path("logs")),
)
_PATH_FIELDS: tuple[str, ...] = (
    "data_dir",
    *(field_name for field_name, _ in _DATA_DIR_RELATIVE_DEFAULTS),
)
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = (
    "scheduler_enabled",
    "telemetry_enabled",
)


def _default_in_data_dir(relative_path: Path) -> Path:
    return Path(DEFAULT_DATA_DIR) / relative_path


def _data_dir_default_note(relative_path: Path) -> str:
    return f"Defaults to `${{TUBEFEED_DATA_DIR}}/{relative_path}` when not explicitly set."


def _resolve_path(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


def _parse_bool_with_default(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value == 1:
            return True
        if value == 0:
            return False
        return default
    if not isinstance(value, str):
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _split_key_list(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        raw_items: list[Any] = value.split(",")
    elif isinstance(value, list | tuple):
        raw_items = list(value)
    else:
        raise ValueError("TUBEFEED_YOUTUBE_API_KEYS must be a comma-separated string.")

    keys: list[str] = []
    for raw_item in raw_items:
        if not isinstance(raw_item, str):
            continue
        normalized = raw_item.strip()
        if normalized and normalized not in keys:
            keys.append(normalized)
    return tuple(keys)


class AppSettings(BaseSettings):
    """
    Canonical runtime configuration.

    Every option is read once at process start from `TUBEFEED_*` environment
    variables (or `.env`) and is immutable afterwards.
    """

    model_config = SettingsConfigDict(
        env_prefix="TUBEFEED_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Core paths.
    data_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR),
        description="Root runtime directory for local state and logs.",
    )
    db_path: Path = Field(
        default=_default_in_data_dir(Path("state.db")),
        description=f"SQLite database path. {_data_dir_default_note(Path('state.db'))}",
    )

    # Credentials and quota bookkeeping.
    youtube_api_keys: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(),
        description="Ordered, comma-separated YouTube Data API keys forming the rotation pool.",
    )
    youtube_key_quota_limit: int = Field(
        default=10_000,
        gt=0,
        description="Daily quota units available to each API key.",
    )
    youtube_quota_reset_timezone: str = Field(
        default="America/Los_Angeles",
        description="Timezone whose midnight starts a new quota epoch for every key.",
    )
    youtube_search_cost: int = Field(
        default=100,
        ge=0,
        description="Quota units recorded for one search.list call.",
    )
    youtube_details_cost: int = Field(
        default=1,
        ge=0,
        description="Quota units recorded for one videos.list batch call.",
    )

    # Upstream API.
    youtube_api_base_url: str | None = Field(
        default=None,
        description=(
            "Optional API root handed to the Google API client as `api_endpoint`; "
            "unset uses the root from the bundled discovery document."
        ),
    )
    youtube_http_timeout_seconds: float = Field(
        default=30.0,
        description="Upper bound for a single YouTube API HTTP call.",
    )
    youtube_search_window_hours: int = Field(
        default=24,
        ge=1,
        description="Default publishedAfter window for searches, counted back from now.",
    )
    youtube_details_parts: str = Field(
        default="snippet,statistics",
        description="`part` parameter sent with videos.list detail calls.",
    )

    # Scheduler.
    scheduler_enabled: bool = Field(
        default=True,
        validation_alias="TUBEFEED_ENABLE_SCHEDULER",
        description="Enable the recurring fetch scheduler inside the API process.",
    )
    search_query: str = Field(
        default="official music video",
        description="Search query used by every scheduled fetch run.",
    )
    fetch_interval_seconds: int = Field(
        default=10,
        description="Time between scheduler ticks.",
    )
    fetch_run_timeout_seconds: float = Field(
        default=120.0,
        description=(
            "Deadline for a single fetch run; an overrunning run fails and frees the scheduler."
        ),
    )

    # Logging.
    log_dir: Path = Field(
        default=_default_in_data_dir(Path("logs")),
        description=f"Directory for backend log files. {_data_dir_default_note(Path('logs'))}",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level (stdout).",
    )
    log_max_bytes: int = Field(
        default=10 * 1024 * 1024,
        ge=0,
        description="Rotate the backend log file after this many bytes (0 disables rotation).",
    )
    log_backup_count: int = Field(
        default=5,
        ge=0,
        description="Number of rotated backend log files to keep.",
    )

    # Telemetry.
    telemetry_enabled: bool = Field(
        default=True,
        description="Enable lightweight internal telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description=(
            "Telemetry sink backend. `log` emits structured telemetry locally; "
            "`none` disables sink output."
        ),
    )

    @field_validator("youtube_api_keys", mode="before")
    @classmethod
    def _normalize_api_keys(cls, value: Any) -> tuple[str, ...]:
        return _split_key_list(value)

    @field_validator("youtube_quota_reset_timezone", mode="before")
    @classmethod
    def _normalize_reset_timezone(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("TUBEFEED_YOUTUBE_QUOTA_RESET_TIMEZONE must be a non-empty string.")
        normalized = value.strip()
        try:
            ZoneInfo(normalized)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(
                f"TUBEFEED_YOUTUBE_QUOTA_RESET_TIMEZONE is not a known timezone: {normalized}"
            ) from exc
        return normalized

    @field_validator("youtube_api_base_url", mode="before")
    @classmethod
    def _normalize_base_url(cls, value: Any) -> str | None:
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValueError("TUBEFEED_YOUTUBE_API_BASE_URL must be a string.")
        normalized = value.strip().rstrip("/")
        return normalized or None

    @field_validator("search_query", mode="before")
    @classmethod
    def _normalize_search_query(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("TUBEFEED_SEARCH_QUERY must be a string.")
        normalized = " ".join(value.split())
        if not normalized:
            raise ValueError("TUBEFEED_SEARCH_QUERY must not be empty.")
        return normalized

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("TUBEFEED_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("TUBEFEED_TELEMETRY_SINK must be set to: none, log.")

    @field_validator(*_PATH_FIELDS, mode="before")
    @classmethod
    def _normalize_paths(cls, value: Any) -> Any:
        if value is None:
            return None
        return _resolve_path(value)

    @field_validator(*_BOOLEAN_COERCION_FIELDS, mode="before")
    @classmethod
    def _normalize_booleans(cls, value: Any, info: ValidationInfo) -> bool:
        field_name = info.field_name
        assert field_name is not None
        default_value = cls.model_fields[field_name].default
        assert isinstance(default_value, bool)
        return _parse_bool_with_default(value, default=default_value)

    @model_validator(mode="after")
    def _check_costs_fit_quota(self) -> AppSettings:
        for env_name, cost in (
            ("TUBEFEED_YOUTUBE_SEARCH_COST", self.youtube_search_cost),
            ("TUBEFEED_YOUTUBE_DETAILS_COST", self.youtube_details_cost),
        ):
            if cost > self.youtube_key_quota_limit:
                raise ValueError(
                    f"{env_name}={cost} exceeds TUBEFEED_YOUTUBE_KEY_QUOTA_LIMIT="
                    f"{self.youtube_key_quota_limit}; no key could ever afford the call."
                )
        return self


def _apply_path_defaults(settings: AppSettings) -> AppSettings:
    updates: dict[str, Path] = {}
    for field_name, relative_default in _DATA_DIR_RELATIVE_DEFAULTS:
        if field_name in settings.model_fields_set:
            continue
        updates[field_name] = settings.data_dir / relative_default
    if not updates:
        return settings
    return settings.model_copy(update=updates)


def _resolve_path_fields(settings: AppSettings) -> AppSettings:
    resolved_updates = {
        field_name: _resolve_path(getattr(settings, field_name))
        for field_name in _PATH_FIELDS
    }
    return settings.model_copy(update=resolved_updates)


def load_settings(*, require_api_keys: bool = True) -> AppSettings:
    settings = AppSettings()
    settings = _apply_path_defaults(settings)
    settings = _resolve_path_fields(settings)

    if require_api_keys and not settings.youtube_api_keys:
        raise ValueError(
            "Invalid configuration: TUBEFEED_YOUTUBE_API_KEYS must list at least one API key."
        )

    return settings
