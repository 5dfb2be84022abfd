from __future__ import annotations

from datetime import UTC, datetime
from zoneinfo import ZoneInfo


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def quota_epoch_for(moment: datetime, timezone_name: str) -> str:
    """Calendar date, in the quota reset timezone, that `moment` falls into."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(ZoneInfo(timezone_name)).date().isoformat()


def mask_api_key(value: str) -> str:
    if len(value) <= 8:
        return "*" * len(value)
    return f"{value[:4]}...{value[-4:]}"
