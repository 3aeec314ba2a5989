"""Suspend/resume host — pending continuations keyed by an opaque token.

A suspended computation is rescheduled at most once: either explicitly via
``resume`` or by its timeout job firing ``expire``. Timeouts are APScheduler
``DateTrigger`` jobs, so the host needs a scheduler to time anything out;
without one, continuations stay pending until resumed or expired by hand.

Work requested inside ``batch()`` (new suspensions, resumes) is deferred
until the batch exits cleanly and discarded if it raises.
"""

from __future__ import annotations

import logging
import secrets
import threading
from collections.abc import Callable, Iterator
from concurrent.futures import Future
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from apscheduler.jobstores.base import JobLookupError
from apscheduler.triggers.date import DateTrigger

if TYPE_CHECKING:
    from apscheduler.schedulers.base import BaseScheduler

logger = logging.getLogger(__name__)

TOKEN_SIZE = 32

Continuation = Future


class Outcome(str, Enum):
    RESUMED = "resumed"
    TIMED_OUT = "timed_out"


@dataclass
class _Suspension:
    callback_id: str
    request_id: int
    continuation: Continuation
    job_id: str | None = None


@dataclass
class _Batch:
    suspended: list[bytes] = field(default_factory=list)
    resumed: list[bytes] = field(default_factory=list)


class ContinuationHost:
    def __init__(
        self,
        timeout_secs: float,
        scheduler: BaseScheduler | None = None,
        lock: threading.RLock | None = None,
    ) -> None:
        self._timeout_secs = timeout_secs
        self._scheduler = scheduler
        self._lock = lock or threading.RLock()
        self._callbacks: dict[str, Callable[[int, Outcome], Any]] = {}
        self._pending: dict[bytes, _Suspension] = {}
        self._batch: _Batch | None = None

    def register_callback(
        self, callback_id: str, callback: Callable[[int, Outcome], Any]
    ) -> None:
        self._callbacks[callback_id] = callback

    def is_pending(self, token: bytes) -> bool:
        return token in self._pending

    def pending_count(self) -> int:
        return len(self._pending)

    # ------------------------------------------------------------------
    # Suspend / resume
    # ------------------------------------------------------------------

    def suspend(self, callback_id: str, request_id: int) -> tuple[bytes, Continuation]:
        """Record interest in a later resume. Returns the token and the caller's continuation."""
        if callback_id not in self._callbacks:
            raise ValueError(
                f"Unknown callback '{callback_id}'. "
                f"Available: {sorted(self._callbacks)}"
            )

        with self._lock:
            token = secrets.token_bytes(TOKEN_SIZE)
            while token in self._pending:
                token = secrets.token_bytes(TOKEN_SIZE)

            suspension = _Suspension(
                callback_id=callback_id,
                request_id=request_id,
                continuation=Continuation(),
            )
            self._pending[token] = suspension

            if self._batch is not None:
                self._batch.suspended.append(token)
            else:
                self._arm_timer(token, suspension)

            return token, suspension.continuation

    def resume(self, token: bytes) -> bool:
        """Reschedule the continuation for ``token``. False if it is no longer pending."""
        with self._lock:
            if token not in self._pending:
                return False
            if self._batch is not None:
                self._batch.resumed.append(token)
                return True
            return self._settle(token, Outcome.RESUMED)

    def expire(self, token: bytes) -> bool:
        """Timeout path. Invoked by the scheduler job, or directly by tests."""
        with self._lock:
            return self._settle(token, Outcome.TIMED_OUT)

    @contextmanager
    def batch(self) -> Iterator[None]:
        with self._lock:
            if self._batch is not None:
                # nested: the outer batch decides
                yield
                return

            batch = _Batch()
            self._batch = batch
            try:
                yield
            except BaseException:
                self._batch = None
                for token in batch.suspended:
                    suspension = self._pending.pop(token, None)
                    if suspension is not None:
                        suspension.continuation.cancel()
                raise

            self._batch = None
            for token in batch.suspended:
                suspension = self._pending.get(token)
                if suspension is not None:
                    self._arm_timer(token, suspension)
            for token in batch.resumed:
                self._settle(token, Outcome.RESUMED)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _settle(self, token: bytes, outcome: Outcome) -> bool:
        suspension = self._pending.pop(token, None)
        if suspension is None:
            return False

        if outcome is Outcome.RESUMED:
            self._cancel_timer(suspension)

        callback = self._callbacks[suspension.callback_id]
        logger.debug(
            f"Settling request {suspension.request_id} via "
            f"'{suspension.callback_id}' ({outcome.value})"
        )
        try:
            result = callback(suspension.request_id, outcome)
        except Exception as e:
            logger.error(
                f"Callback '{suspension.callback_id}' failed for request "
                f"{suspension.request_id}: {e}",
                exc_info=True,
            )
            if suspension.continuation.set_running_or_notify_cancel():
                suspension.continuation.set_exception(e)
            return True

        if suspension.continuation.set_running_or_notify_cancel():
            suspension.continuation.set_result(result)
        else:
            logger.info(f"Caller of request {suspension.request_id} stopped waiting")
        return True

    def _arm_timer(self, token: bytes, suspension: _Suspension) -> None:
        if self._scheduler is None:
            return
        run_date = datetime.now(timezone.utc) + timedelta(seconds=self._timeout_secs)
        job = self._scheduler.add_job(
            self.expire,
            trigger=DateTrigger(run_date=run_date),
            args=[token],
            id=f"continuation_{token.hex()}",
            replace_existing=True,
        )
        suspension.job_id = job.id

    def _cancel_timer(self, suspension: _Suspension) -> None:
        if self._scheduler is None or suspension.job_id is None:
            return
        try:
            self._scheduler.remove_job(suspension.job_id)
        except JobLookupError:
            logger.debug(f"Timeout job {suspension.job_id} already gone")
