from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models import RoutinePerformanceStat, RoutineSession, RoutineSessionStatus


@dataclass(slots=True)
class PerformanceOutcome:
    stat: RoutinePerformanceStat
    previous_best_seconds: int | None
    streak_days: int


def get_performance_stat(db: Session, *, child_profile_id: int, routine_id: int) -> RoutinePerformanceStat | None:
    return db.scalar(
        select(RoutinePerformanceStat).where(
            RoutinePerformanceStat.child_profile_id == child_profile_id,
            RoutinePerformanceStat.routine_id == routine_id,
        ),
    )


def list_routine_performance(
    db: Session,
    *,
    child_profile_id: int,
    routine_id: int | None = None,
) -> list[RoutinePerformanceStat]:
    query = select(RoutinePerformanceStat).where(RoutinePerformanceStat.child_profile_id == child_profile_id)
    if routine_id is not None:
        query = query.where(RoutinePerformanceStat.routine_id == routine_id)
    query = query.order_by(RoutinePerformanceStat.updated_at.desc(), RoutinePerformanceStat.id.desc())
    return list(db.scalars(query).all())


def is_best_time_beaten(duration_seconds: int | None, previous_best_seconds: int | None) -> bool:
    if duration_seconds is None or previous_best_seconds is None:
        return False
    return duration_seconds > 0 and previous_best_seconds > 0 and duration_seconds < previous_best_seconds


def resolve_best_duration(
    *,
    duration_seconds: int | None,
    previous_best_seconds: int | None,
    previous_best_session_id: int | None,
    session_id: int,
) -> tuple[int | None, int | None]:
    if duration_seconds is not None and (
        previous_best_seconds is None or previous_best_seconds <= 0 or duration_seconds < previous_best_seconds
    ):
        return duration_seconds, session_id
    return previous_best_seconds, previous_best_session_id


def compute_streak_days(
    *,
    previous_session_date: date | None,
    session_date: date,
    previous_streak: int,
) -> int:
    if previous_session_date is None:
        return 1

    gap = (session_date - previous_session_date).days
    if gap == 1:
        return max(previous_streak, 0) + 1
    if gap == 0:
        return previous_streak if previous_streak > 0 else 1
    return 1


def find_previous_completed_session(
    db: Session,
    *,
    child_profile_id: int,
    routine_id: int,
    before: date,
) -> RoutineSession | None:
    return db.scalar(
        select(RoutineSession)
        .where(
            RoutineSession.child_profile_id == child_profile_id,
            RoutineSession.routine_id == routine_id,
            RoutineSession.status == RoutineSessionStatus.COMPLETED,
            RoutineSession.session_date < before,
        )
        .order_by(RoutineSession.session_date.desc(), RoutineSession.id.desc())
        .limit(1),
    )


def _get_or_create_stat(db: Session, *, child_profile_id: int, routine_id: int) -> RoutinePerformanceStat:
    stat = get_performance_stat(db, child_profile_id=child_profile_id, routine_id=routine_id)
    if stat is not None:
        return stat

    stat = RoutinePerformanceStat(child_profile_id=child_profile_id, routine_id=routine_id, streak_days=0)
    try:
        with db.begin_nested():
            db.add(stat)
            db.flush()
    except IntegrityError:
        stat = get_performance_stat(db, child_profile_id=child_profile_id, routine_id=routine_id)
        if stat is None:
            raise
    return stat


def record_completed_session(
    db: Session,
    *,
    session: RoutineSession,
    previous_best_seconds: int | None,
    completed_at: datetime,
    now: datetime,
) -> PerformanceOutcome:
    """Fold a freshly completed session into the child's routine statistics."""
    existing = get_performance_stat(db, child_profile_id=session.child_profile_id, routine_id=session.routine_id)
    previous_streak = existing.streak_days if existing is not None else 0
    previous_best_session_id = existing.best_session_id if existing is not None else None

    previous_session = find_previous_completed_session(
        db,
        child_profile_id=session.child_profile_id,
        routine_id=session.routine_id,
        before=session.session_date,
    )
    streak_days = compute_streak_days(
        previous_session_date=previous_session.session_date if previous_session is not None else None,
        session_date=session.session_date,
        previous_streak=previous_streak,
    )
    best_seconds, best_session_id = resolve_best_duration(
        duration_seconds=session.duration_seconds,
        previous_best_seconds=previous_best_seconds,
        previous_best_session_id=previous_best_session_id,
        session_id=session.id,
    )

    stat = existing or _get_or_create_stat(
        db,
        child_profile_id=session.child_profile_id,
        routine_id=session.routine_id,
    )
    stat.best_duration_seconds = best_seconds
    stat.best_session_id = best_session_id
    stat.last_completed_session_id = session.id
    stat.last_completed_at = completed_at
    stat.streak_days = streak_days
    stat.updated_at = now
    db.flush()

    return PerformanceOutcome(stat=stat, previous_best_seconds=previous_best_seconds, streak_days=streak_days)
