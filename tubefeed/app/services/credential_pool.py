from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from threading import Lock

from tubefeed.app.repositories.api_key_repository import ApiKeyRepository
from tubefeed.app.repositories.common import mask_api_key, quota_epoch_for

LOGGER = logging.getLogger("tubefeed.credentials")


@dataclass(frozen=True)
class Credential:
    value: str
    quota_used: int
    quota_limit: int

    @property
    def exhausted(self) -> bool:
        return self.quota_used >= self.quota_limit

    @property
    def masked(self) -> str:
        return mask_api_key(self.value)

    def can_afford(self, cost: int) -> bool:
        return not self.exhausted and self.quota_used + max(0, cost) <= self.quota_limit


@dataclass(frozen=True)
class CredentialUsage:
    masked_value: str
    quota_used: int
    quota_limit: int
    exhausted: bool
    active: bool


class CredentialPoolError(Exception):
    pass


class AllCredentialsExhaustedError(CredentialPoolError):
    def __init__(
        self,
        message: str,
        *,
        pool_size: int,
        quota_epoch: str,
        attempts: int = 0,
        last_key: str | None = None,
    ) -> None:
        super().__init__(message)
        self.pool_size = pool_size
        self.quota_epoch = quota_epoch
        self.attempts = attempts
        self.last_key = last_key


class CredentialPool:
    """
    Quota-aware rotation over a fixed, ordered list of API keys.

    The rotation cursor and every quota counter live behind one lock; callers
    only see `Credential` snapshots. Usage accumulates per quota epoch (the
    calendar day in `reset_timezone`) and drops back to zero, together with the
    cursor, when the epoch changes.
    """

    def __init__(
        self,
        keys: Sequence[str],
        *,
        quota_limit: int,
        repository: ApiKeyRepository | None = None,
        reset_timezone: str = "America/Los_Angeles",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        ordered_keys: list[str] = []
        for key in keys:
            normalized = key.strip()
            if normalized and normalized not in ordered_keys:
                ordered_keys.append(normalized)
        if not ordered_keys:
            raise CredentialPoolError("Credential pool requires at least one API key.")
        if quota_limit <= 0:
            raise CredentialPoolError("Credential quota limit must be positive.")

        self._keys: tuple[str, ...] = tuple(ordered_keys)
        self._quota_limit = quota_limit
        self._repository = repository
        self._reset_timezone = reset_timezone
        self._clock = clock if clock is not None else _utc_now
        self._lock = Lock()
        self._cursor = 0
        self._credentials: dict[str, Credential] = {}
        self._epoch = self._current_epoch()

    @property
    def size(self) -> int:
        return len(self._keys)

    @property
    def quota_limit(self) -> int:
        return self._quota_limit

    def acquire(self, cost: int = 1) -> Credential:
        with self._lock:
            self._roll_epoch_if_needed()
            for _ in range(len(self._keys)):
                credential = self._load(self._keys[self._cursor])
                if credential.can_afford(cost):
                    return credential
                LOGGER.info(
                    "credential unusable; rotating key=%s quota_used=%s quota_limit=%s cost=%s",
                    credential.masked,
                    credential.quota_used,
                    credential.quota_limit,
                    cost,
                )
                self._advance()

        raise AllCredentialsExhaustedError(
            f"All {len(self._keys)} API keys are exhausted for quota epoch {self._epoch}.",
            pool_size=len(self._keys),
            quota_epoch=self._epoch,
        )

    def record_usage(self, credential: Credential, cost: int) -> Credential:
        if cost <= 0:
            return credential
        with self._lock:
            self._roll_epoch_if_needed()
            current = self._load(credential.value)
            updated = replace(current, quota_used=current.quota_used + cost)
            self._credentials[credential.value] = updated
            if self._repository is not None:
                self._repository.increment_quota(credential.value, cost)
            return updated

    def mark_exhausted(self, credential: Credential) -> None:
        with self._lock:
            self._roll_epoch_if_needed()
            current = self._load(credential.value)
            updated = replace(current, quota_used=max(current.quota_used, current.quota_limit))
            self._credentials[credential.value] = updated
            if self._repository is not None:
                self._repository.set_quota_used(
                    credential.value,
                    quota_used=updated.quota_used,
                    quota_epoch=self._epoch,
                )
            if self._keys[self._cursor] == credential.value:
                self._advance()
            LOGGER.warning(
                "credential reported quota exhaustion key=%s quota_epoch=%s",
                credential.masked,
                self._epoch,
            )

    def snapshot(self) -> list[CredentialUsage]:
        with self._lock:
            self._roll_epoch_if_needed()
            usages: list[CredentialUsage] = []
            for index, key in enumerate(self._keys):
                credential = self._load(key)
                usages.append(
                    CredentialUsage(
                        masked_value=credential.masked,
                        quota_used=credential.quota_used,
                        quota_limit=credential.quota_limit,
                        exhausted=credential.exhausted,
                        active=index == self._cursor,
                    )
                )
            return usages

    @property
    def quota_epoch(self) -> str:
        with self._lock:
            self._roll_epoch_if_needed()
            return self._epoch

    def _advance(self) -> None:
        self._cursor = (self._cursor + 1) % len(self._keys)

    def _current_epoch(self) -> str:
        return quota_epoch_for(self._clock(), self._reset_timezone)

    def _roll_epoch_if_needed(self) -> None:
        epoch = self._current_epoch()
        if epoch == self._epoch:
            return
        LOGGER.info(
            "quota epoch rolled over previous=%s current=%s keys=%s",
            self._epoch,
            epoch,
            len(self._keys),
        )
        self._epoch = epoch
        self._cursor = 0
        self._credentials.clear()
        if self._repository is not None:
            self._repository.reset_all(quota_epoch=epoch)

    def _load(self, key: str) -> Credential:
        cached = self._credentials.get(key)
        if cached is not None:
            return cached

        quota_used = 0
        if self._repository is not None:
            record = self._repository.find_by_value(key)
            if record is None:
                self._repository.create(key, quota_limit=self._quota_limit, quota_epoch=self._epoch)
            elif record.quota_epoch != self._epoch:
                self._repository.set_quota_used(key, quota_used=0, quota_epoch=self._epoch)
            else:
                quota_used = record.quota_used

        credential = Credential(value=key, quota_used=quota_used, quota_limit=self._quota_limit)
        self._credentials[key] = credential
        return credential


def _utc_now() -> datetime:
    return datetime.now(UTC)
