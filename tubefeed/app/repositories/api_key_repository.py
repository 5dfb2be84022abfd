from __future__ import annotations

from dataclasses import dataclass
from sqlite3 import Row

from tubefeed.app.repositories.common import utc_now_iso
from tubefeed.app.repositories.database import Database


@dataclass(frozen=True)
class ApiKeyRecord:
    key_value: str
    quota_used: int
    quota_limit: int
    quota_epoch: str
    created_at: str
    updated_at: str


class ApiKeyRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def find_by_value(self, key_value: str) -> ApiKeyRecord | None:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT key_value, quota_used, quota_limit, quota_epoch, created_at, updated_at
                FROM api_keys
                WHERE key_value = ?
                """,
                (key_value,),
            ).fetchone()
        if row is None:
            return None
        return _row_to_record(row)

    def create(self, key_value: str, *, quota_limit: int, quota_epoch: str) -> ApiKeyRecord:
        now_iso = utc_now_iso()
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO api_keys
                (key_value, quota_used, quota_limit, quota_epoch, created_at, updated_at)
                VALUES (?, 0, ?, ?, ?, ?)
                ON CONFLICT(key_value) DO NOTHING
                """,
                (key_value, quota_limit, quota_epoch, now_iso, now_iso),
            )
            row = conn.execute(
                """
                SELECT key_value, quota_used, quota_limit, quota_epoch, created_at, updated_at
                FROM api_keys
                WHERE key_value = ?
                """,
                (key_value,),
            ).fetchone()
        return _row_to_record(row)

    def increment_quota(self, key_value: str, cost: int) -> int:
        with self._db.connection() as conn:
            conn.execute(
                """
                UPDATE api_keys
                SET quota_used = quota_used + ?, updated_at = ?
                WHERE key_value = ?
                """,
                (max(0, cost), utc_now_iso(), key_value),
            )
            row = conn.execute(
                "SELECT quota_used FROM api_keys WHERE key_value = ?",
                (key_value,),
            ).fetchone()
        return int(row["quota_used"]) if row is not None else 0

    def set_quota_used(self, key_value: str, *, quota_used: int, quota_epoch: str) -> None:
        with self._db.connection() as conn:
            conn.execute(
                """
                UPDATE api_keys
                SET quota_used = ?, quota_epoch = ?, updated_at = ?
                WHERE key_value = ?
                """,
                (max(0, quota_used), quota_epoch, utc_now_iso(), key_value),
            )

    def reset_all(self, *, quota_epoch: str) -> int:
        with self._db.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE api_keys
                SET quota_used = 0, quota_epoch = ?, updated_at = ?
                WHERE quota_epoch != ?
                """,
                (quota_epoch, utc_now_iso(), quota_epoch),
            )
        return int(cursor.rowcount)


def _row_to_record(row: Row) -> ApiKeyRecord:
    return ApiKeyRecord(
        key_value=str(row["key_value"]),
        quota_used=int(row["quota_used"]),
        quota_limit=int(row["quota_limit"]),
        quota_epoch=str(row["quota_epoch"]),
        created_at=str(row["created_at"]),
        updated_at=str(row["updated_at"]),
    )
