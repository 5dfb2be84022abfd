from __future__ import annotations

import errno
import logging
import os
import threading
import time
from enum import StrEnum
from pathlib import Path
from typing import Any

from tubefeed.app.services.credential_pool import AllCredentialsExhaustedError
from tubefeed.app.services.fetch_pipeline import FetchPipeline
from tubefeed.app.services.video_writer import VideoStoreUnavailableError
from tubefeed.app.services.youtube_fetcher import FetchDeadlineExceededError, YouTubeApiError
from tubefeed.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("tubefeed.scheduler")

try:
    import fcntl
except ImportError:  # pragma: no cover - non-POSIX fallback
    fcntl = None


class SchedulerState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"


class SchedulerService:
    """
    Fires one fetch run per interval, never more than one at a time.

    The timer thread only decides whether a tick starts a run; the run itself
    executes on a worker thread so a slow run cannot delay later ticks. A tick
    that lands while a run is in flight is dropped, not queued.
    """

    def __init__(
        self,
        pipeline: FetchPipeline,
        *,
        query: str,
        interval_seconds: int,
        run_timeout_seconds: float | None = None,
        telemetry: TelemetryClient | None = None,
        lock_path: Path | None = None,
    ) -> None:
        self._pipeline = pipeline
        self._query = query
        self._interval_seconds = max(1, interval_seconds)
        self._run_timeout_seconds = run_timeout_seconds
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._run_guard = threading.Lock()
        self._state = SchedulerState.IDLE
        self._runs_started = 0
        self._ticks_skipped = 0
        self._worker: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock_path = lock_path
        self._lock_file: Any | None = None
        self._lock_acquired = False

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def runs_started(self) -> int:
        return self._runs_started

    @property
    def ticks_skipped(self) -> int:
        return self._ticks_skipped

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        if not self._try_acquire_process_lock():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="tubefeed-scheduler")
        self._thread.daemon = True
        self._thread.start()
        LOGGER.info(
            "scheduler started query=%s interval_seconds=%s run_timeout_seconds=%s",
            self._query,
            self._interval_seconds,
            self._run_timeout_seconds,
        )

    def stop(self, *, wait_seconds: float = 3.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=wait_seconds)
            self._thread = None
        worker = self._worker
        if worker is not None:
            worker.join(timeout=wait_seconds)
        self._release_process_lock()

    def tick(self) -> bool:
        """Start a run unless one is already in flight. Returns whether a run started."""
        if not self._run_guard.acquire(blocking=False):
            self._ticks_skipped += 1
            LOGGER.info("fetch tick skipped; previous run still running query=%s", self._query)
            self._telemetry.emit("fetch.tick.skipped", query=self._query)
            return False

        self._state = SchedulerState.RUNNING
        self._runs_started += 1
        try:
            worker = threading.Thread(
                target=self._execute_run,
                name="tubefeed-fetch-run",
                daemon=True,
            )
            self._worker = worker
            worker.start()
        except BaseException:
            self._finish_run()
            raise
        return True

    def wait_until_idle(self, timeout_seconds: float) -> bool:
        deadline = time.monotonic() + timeout_seconds
        while time.monotonic() < deadline:
            if self._state is SchedulerState.IDLE:
                return True
            time.sleep(0.01)
        return self._state is SchedulerState.IDLE

    def _execute_run(self) -> None:
        try:
            self._pipeline.run(self._query, timeout_seconds=self._run_timeout_seconds)
        except AllCredentialsExhaustedError as exc:
            LOGGER.error(
                "fetch run aborted; all API keys exhausted query=%s attempts=%s pool_size=%s "
                "last_key=%s quota_epoch=%s",
                self._query,
                exc.attempts,
                exc.pool_size,
                exc.last_key,
                exc.quota_epoch,
            )
        except FetchDeadlineExceededError:
            LOGGER.error(
                "fetch run aborted; deadline exceeded query=%s timeout_seconds=%s",
                self._query,
                self._run_timeout_seconds,
                exc_info=True,
            )
        except VideoStoreUnavailableError:
            LOGGER.error(
                "fetch run aborted; video store unavailable query=%s",
                self._query,
                exc_info=True,
            )
        except YouTubeApiError as exc:
            LOGGER.error(
                "fetch run aborted; youtube call failed query=%s status_code=%s reason=%s",
                self._query,
                exc.status_code,
                exc.reason,
                exc_info=True,
            )
        except Exception:
            LOGGER.exception("fetch run failed query=%s", self._query)
        finally:
            self._finish_run()

    def _finish_run(self) -> None:
        self._state = SchedulerState.IDLE
        self._run_guard.release()

    def _run_loop(self) -> None:
        next_tick = 0.0
        while not self._stop_event.is_set():
            now = time.monotonic()
            if now >= next_tick:
                self.tick()
                next_tick = now + self._interval_seconds
            self._stop_event.wait(max(0.0, next_tick - now))

    def _try_acquire_process_lock(self) -> bool:
        if self._lock_path is None:
            return True

        if fcntl is None:
            LOGGER.warning(
                "scheduler single-instance lock unavailable on this platform; starting scheduler"
            )
            return True

        lock_path = self._lock_path
        lock_file: Any | None = None
        try:
            lock_path.parent.mkdir(parents=True, exist_ok=True)
            lock_file = lock_path.open("a+", encoding="utf-8")
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as exc:
            if lock_file is not None:
                try:
                    lock_file.close()
                except OSError:
                    pass
            if exc.errno in (errno.EACCES, errno.EAGAIN):
                LOGGER.info(
                    "scheduler start skipped; lock held by another process path=%s",
                    lock_path,
                )
                return False
            LOGGER.warning(
                "scheduler lock acquisition failed path=%s; starting scheduler anyway",
                lock_path,
                exc_info=True,
            )
            return True

        try:
            lock_file.seek(0)
            lock_file.truncate()
            lock_file.write(f"{os.getpid()}\n")
            lock_file.flush()
        except OSError:
            LOGGER.debug("scheduler lock file metadata write failed path=%s", lock_path, exc_info=True)

        self._lock_file = lock_file
        self._lock_acquired = True
        return True

    def _release_process_lock(self) -> None:
        lock_file = self._lock_file
        if lock_file is None:
            self._lock_acquired = False
            return

        try:
            if self._lock_acquired and fcntl is not None:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
        except OSError:
            LOGGER.debug("scheduler lock release failed path=%s", self._lock_path, exc_info=True)
        finally:
            try:
                lock_file.close()
            except OSError:
                pass
            self._lock_file = None
            self._lock_acquired = False
