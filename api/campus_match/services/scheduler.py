from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable

from sqlalchemy.exc import SQLAlchemyError

from .. import repo
from ..config import MatchingConfig
from ..database import SessionLocal
from ..errors import MatchingExecutionError, MatchingInProgressError, ScheduleError
from ..tags import TagIndex
from . import matching
from .state_machine import SCHEDULE_PENDING, is_due, transition_schedule_status

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ScheduleError("Scheduled time must include a timezone")
    return value.astimezone(timezone.utc)


def get_next_scheduled_time(db, now: datetime | None = None) -> datetime | None:
    return repo.next_pending_scheduled_time(db, now or _now_utc())


def create_scheduled_matches(db, scheduled_times: Iterable[datetime], now: datetime | None = None) -> list[dict[str, Any]]:
    now = now or _now_utc()
    times = [_as_utc(t) for t in scheduled_times]
    if not times:
        raise ScheduleError("At least one scheduled time is required")
    for t in times:
        if t <= now:
            raise ScheduleError("Scheduled time must be in the future")

    created = [repo.insert_scheduled_match(db, t) for t in times]
    db.commit()
    logger.info("[SCHEDULER] Scheduled %s final match run(s)", len(created))
    return created


def list_scheduled_matches(db) -> list[dict[str, Any]]:
    return repo.list_scheduled_matches(db)


def cancel_scheduled_match(db, scheduled_id: str) -> bool:
    deleted = repo.delete_pending_scheduled_match(db, scheduled_id)
    db.commit()
    return deleted


def execute_scheduled_final_match(
    scheduled_id: str,
    tag_index: TagIndex,
    cfg: MatchingConfig,
    session_factory: Callable = SessionLocal,
    now: datetime | None = None,
) -> dict[str, Any] | None:
    """Run one scheduled entry and move it to a terminal status.

    The ``completed`` status is written in the same transaction as the
    matches. A run that fails writes nothing, and the entry is then marked
    ``failed`` on its own. Returns None when the entry is no longer pending or
    another final run holds the lock; in the latter case it stays pending for
    the next sweep.
    """
    now = now or _now_utc()
    with session_factory() as db:
        if not repo.mark_scheduled_executing(db, scheduled_id, now):
            db.rollback()
            logger.warning("[SCHEDULER] Scheduled match %s is no longer pending, skipping", scheduled_id)
            return None
        db.commit()

    def record_completed(db, matches) -> None:
        status = transition_schedule_status(SCHEDULE_PENDING, "succeeded")
        if not repo.finish_scheduled_match(db, scheduled_id, status, matches_created=len(matches)):
            raise MatchingExecutionError(f"Scheduled match {scheduled_id} is no longer pending")

    with session_factory() as db:
        try:
            result = matching.run_final_matching(db, tag_index, cfg, on_commit=record_completed)
        except MatchingInProgressError:
            logger.warning("[SCHEDULER] Another final matching run is in progress, leaving %s pending", scheduled_id)
            return None
        except Exception as exc:
            logger.exception("[SCHEDULER] Scheduled final match %s failed", scheduled_id)
            error_message = str(exc) or exc.__class__.__name__
        else:
            logger.info(
                "[SCHEDULER] Scheduled final match %s completed, matches_created=%s",
                scheduled_id,
                result.matches_created,
            )
            return {
                "id": scheduled_id,
                "status": transition_schedule_status(SCHEDULE_PENDING, "succeeded"),
                "executed_at": now,
                "matches_created": result.matches_created,
                "error_message": None,
            }

    status = transition_schedule_status(SCHEDULE_PENDING, "failed")
    with session_factory() as db:
        repo.finish_scheduled_match(db, scheduled_id, status, error_message=error_message)
        db.commit()
    return {
        "id": scheduled_id,
        "status": status,
        "executed_at": now,
        "matches_created": None,
        "error_message": error_message,
    }


def check_and_execute_scheduled_matches(
    tag_index: TagIndex,
    cfg: MatchingConfig,
    session_factory: Callable = SessionLocal,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Run every pending entry whose time has passed, oldest first.

    Overdue entries from missed ticks are picked up here too. A failed entry
    is recorded and the sweep moves on to the next one; a store error while
    handling an entry is logged and leaves that entry for the next tick.
    """
    now = now or _now_utc()
    with session_factory() as db:
        due = repo.fetch_due_scheduled_matches(db, now)

    outcomes: list[dict[str, Any]] = []
    for entry in due:
        if not is_due(entry["status"], entry["scheduled_time"], now):
            continue
        try:
            outcome = execute_scheduled_final_match(
                str(entry["id"]), tag_index, cfg, session_factory=session_factory, now=now
            )
        except SQLAlchemyError:
            logger.exception("[SCHEDULER] Could not record scheduled final match %s", entry["id"])
            continue
        if outcome is not None:
            outcomes.append(outcome)
    return outcomes


def auto_accept_expired_matches(
    timeout: timedelta,
    session_factory: Callable = SessionLocal,
    now: datetime | None = None,
) -> int:
    now = now or _now_utc()
    cutoff = now - timeout
    with session_factory() as db:
        expired = repo.fetch_expired_final_matches(db, cutoff)

    accepted = 0
    for match in expired:
        with session_factory() as db:
            a_rows = repo.confirm_if_matched(db, match["user_a_id"])
            b_rows = repo.confirm_if_matched(db, match["user_b_id"])
            if a_rows > 0 or b_rows > 0:
                db.commit()
                accepted += 1
                logger.info(
                    "[AUTO_ACCEPT] Auto-accepted final match %s user_a=%s user_b=%s",
                    match["id"],
                    match["user_a_id"],
                    match["user_b_id"],
                )
            else:
                db.rollback()
                logger.error("[AUTO_ACCEPT] Data race detected while auto-accepting final match %s", match["id"])
    return accepted


class PeriodicTask:
    """Calls ``func`` every ``interval_seconds`` on a daemon thread.

    The first call happens one interval after ``start``. A tick that arrives
    while the previous call is still running is skipped.
    """

    def __init__(self, name: str, interval_seconds: float, func: Callable[[], Any]):
        self.name = name
        self.interval_seconds = interval_seconds
        self.func = func
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def run_once(self) -> bool:
        if not self._lock.acquire(blocking=False):
            logger.warning("[SCHEDULER] %s is still running, skipping this tick", self.name)
            return False
        try:
            self.func()
        except Exception:
            logger.exception("[SCHEDULER] %s failed", self.name)
        finally:
            self._lock.release()
        return True

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            self.run_once()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()
        logger.info("[SCHEDULER] Started %s (every %ss)", self.name, self.interval_seconds)

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)


def _run_previews(tag_index: TagIndex, cfg: MatchingConfig, session_factory: Callable) -> None:
    with session_factory() as db:
        matching.generate_match_previews(db, tag_index, cfg)


def build_background_tasks(
    tag_index: TagIndex,
    cfg: MatchingConfig,
    *,
    preview_interval: float,
    schedule_interval: float,
    auto_accept_interval: float,
    auto_accept_timeout: timedelta,
    session_factory: Callable = SessionLocal,
) -> list[PeriodicTask]:
    return [
        PeriodicTask(
            "match-previews",
            preview_interval,
            lambda: _run_previews(tag_index, cfg, session_factory),
        ),
        PeriodicTask(
            "scheduled-final-matches",
            schedule_interval,
            lambda: check_and_execute_scheduled_matches(tag_index, cfg, session_factory=session_factory),
        ),
        PeriodicTask(
            "auto-accept",
            auto_accept_interval,
            lambda: auto_accept_expired_matches(auto_accept_timeout, session_factory=session_factory),
        ),
    ]
