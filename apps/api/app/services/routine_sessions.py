"""Routine session lifecycle.

A session moves ``scheduled -> in_progress -> completed`` or leaves early as
``skipped`` / ``expired``. ``completed`` is terminal. Every operation here is a
single request: state lives in the store between calls, services flush and the
caller commits.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Literal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.clock import Clock, ensure_utc, utc_now
from app.core.config import settings
from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models import (
    PointTransactionType,
    RoutinePerformanceStat,
    RoutineSession,
    RoutineSessionStatus,
    RoutineTask,
    TaskCompletion,
)
from app.services.achievement_engine import (
    FIRST_ROUTINE,
    SPEEDSTER,
    AchievementCandidate,
    award_if_eligible,
    streak_code,
)
from app.services.catalog import get_profile, get_routine, list_active_tasks, resolve_family_id
from app.services.performance import get_performance_stat, is_best_time_beaten, record_completed_session
from app.services.points import post_points
from app.services.task_completion import (
    TaskAlreadyCompletedError,
    delete_task_completion,
    list_session_completions,
    record_task_completion,
)

logger = logging.getLogger("routinely.api.sessions")

SESSION_REFERENCE_TABLE = "routine_sessions"
CLOSING_STATUSES = frozenset({RoutineSessionStatus.SKIPPED, RoutineSessionStatus.EXPIRED})

SessionSort = Literal["session_date", "started_at", "completed_at"]
SortOrder = Literal["asc", "desc"]


@dataclass(slots=True)
class TaskOrderEntry:
    task_id: int
    position: int


@dataclass(slots=True)
class StartSessionResult:
    session: RoutineSession
    task_order: list[TaskOrderEntry]


@dataclass(slots=True)
class CompletedTaskEntry:
    task_id: int
    completed_at: datetime | str


@dataclass(slots=True)
class CompletionResult:
    session_id: int
    status: RoutineSessionStatus
    completed_at: datetime
    duration_seconds: int | None
    points_awarded: int
    bonus_multiplier: int
    best_time_beaten: bool
    streak_days: int
    point_transaction_id: int | None
    unlocked_achievements: list[str] = field(default_factory=list)


@dataclass(slots=True)
class SessionTaskView:
    task: RoutineTask
    completion: TaskCompletion | None

    @property
    def status(self) -> str:
        return "completed" if self.completion is not None else "pending"


@dataclass(slots=True)
class SessionDetails:
    session: RoutineSession
    tasks: list[SessionTaskView] | None
    performance: RoutinePerformanceStat | None


def get_session(db: Session, session_id: int, *, for_update: bool = False) -> RoutineSession:
    query = select(RoutineSession).where(RoutineSession.id == session_id)
    if for_update:
        query = query.with_for_update()
    session = db.scalar(query)
    if session is None:
        raise NotFoundError("Session not found")
    return session


def ensure_session_writable(db: Session, session_id: int) -> RoutineSession:
    session = get_session(db, session_id, for_update=True)
    if session.status != RoutineSessionStatus.IN_PROGRESS:
        raise ConflictError("Session is not in progress")
    return session


def fetch_task_order(db: Session, *, routine_id: int, child_profile_id: int) -> list[TaskOrderEntry]:
    return [
        TaskOrderEntry(task_id=task.id, position=task.position)
        for task in list_active_tasks(db, routine_id=routine_id, child_profile_id=child_profile_id)
    ]


def list_child_sessions(
    db: Session,
    *,
    child_profile_id: int,
    status: RoutineSessionStatus | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
    routine_id: int | None = None,
    limit: int = 20,
    offset: int = 0,
    sort: SessionSort = "session_date",
    order: SortOrder = "desc",
) -> tuple[list[RoutineSession], int]:
    conditions = [RoutineSession.child_profile_id == child_profile_id]
    if status is not None:
        conditions.append(RoutineSession.status == status)
    if from_date is not None:
        conditions.append(RoutineSession.session_date >= from_date)
    if to_date is not None:
        conditions.append(RoutineSession.session_date <= to_date)
    if routine_id is not None:
        conditions.append(RoutineSession.routine_id == routine_id)

    sort_column = {
        "session_date": RoutineSession.session_date,
        "started_at": RoutineSession.started_at,
        "completed_at": RoutineSession.completed_at,
    }[sort]
    ordering = (
        [sort_column.asc(), RoutineSession.id.asc()]
        if order == "asc"
        else [sort_column.desc(), RoutineSession.id.desc()]
    )

    total = db.scalar(select(func.count(RoutineSession.id)).where(*conditions)) or 0
    rows = db.scalars(
        select(RoutineSession).where(*conditions).order_by(*ordering).offset(offset).limit(limit),
    ).all()
    return list(rows), int(total)


def _find_session_for_day(
    db: Session,
    *,
    routine_id: int,
    child_profile_id: int,
    session_date: date,
) -> RoutineSession | None:
    return db.scalar(
        select(RoutineSession)
        .where(
            RoutineSession.routine_id == routine_id,
            RoutineSession.child_profile_id == child_profile_id,
            RoutineSession.session_date == session_date,
        )
        .with_for_update(),
    )


def _reopen_session(session: RoutineSession, *, now: datetime, planned_end_at: datetime | None) -> None:
    if session.status == RoutineSessionStatus.IN_PROGRESS:
        raise ConflictError("Session already in progress for this day")
    if session.status == RoutineSessionStatus.COMPLETED:
        raise ConflictError("Session already completed for this day")

    # points_awarded is carried over untouched.
    session.status = RoutineSessionStatus.IN_PROGRESS
    session.started_at = now
    session.planned_end_at = planned_end_at
    session.bonus_multiplier = 1
    session.auto_closed_at = None
    session.completion_reason = None
    session.updated_at = now


def start_session(
    db: Session,
    *,
    child_profile_id: int,
    routine_id: int,
    session_date: date,
    clock: Clock = utc_now,
) -> StartSessionResult:
    profile = get_profile(db, child_profile_id)
    routine = get_routine(db, routine_id, family_id=profile.family_id)

    now = clock()
    auto_close = routine.auto_close_after_minutes
    planned_end_at = now + timedelta(minutes=auto_close) if auto_close and auto_close > 0 else None

    session = _find_session_for_day(
        db,
        routine_id=routine_id,
        child_profile_id=child_profile_id,
        session_date=session_date,
    )
    if session is not None:
        _reopen_session(session, now=now, planned_end_at=planned_end_at)
        db.flush()
    else:
        session = RoutineSession(
            routine_id=routine_id,
            child_profile_id=child_profile_id,
            session_date=session_date,
            status=RoutineSessionStatus.IN_PROGRESS,
            started_at=now,
            planned_end_at=planned_end_at,
            bonus_multiplier=1,
            points_awarded=0,
            best_time_beaten=False,
            created_at=now,
            updated_at=now,
        )
        try:
            with db.begin_nested():
                db.add(session)
                db.flush()
        except IntegrityError:
            # Lost the insert race; whoever won decides what happens next.
            session = _find_session_for_day(
                db,
                routine_id=routine_id,
                child_profile_id=child_profile_id,
                session_date=session_date,
            )
            if session is None:
                raise
            _reopen_session(session, now=now, planned_end_at=planned_end_at)
            db.flush()

    logger.info(
        "routine_session.started",
        extra={
            "session_id": session.id,
            "routine_id": routine_id,
            "child_id": child_profile_id,
        },
    )
    return StartSessionResult(
        session=session,
        task_order=fetch_task_order(db, routine_id=routine_id, child_profile_id=child_profile_id),
    )


def complete_task(
    db: Session,
    *,
    session_id: int,
    task_id: int,
    completed_at: datetime | None = None,
    notes: dict[str, Any] | None = None,
    clock: Clock = utc_now,
) -> TaskCompletion:
    session = ensure_session_writable(db, session_id)
    return record_task_completion(
        db,
        session=session,
        task_id=task_id,
        completed_at=completed_at,
        notes=notes,
        clock=clock,
    )


def undo_task_completion(db: Session, *, session_id: int, completion_id: int) -> None:
    session = get_session(db, session_id)
    delete_task_completion(db, session_id=session.id, completion_id=completion_id)


def _parse_timestamp(value: datetime | str) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        try:
            return ensure_utc(datetime.fromisoformat(value))
        except ValueError as exc:
            raise ValidationError("Invalid completedAt timestamp", details={"value": value}) from exc
    raise ValidationError("Invalid completedAt timestamp")


def _has_other_completed_session(db: Session, *, session: RoutineSession) -> bool:
    other_id = db.scalar(
        select(RoutineSession.id)
        .where(
            RoutineSession.child_profile_id == session.child_profile_id,
            RoutineSession.routine_id == session.routine_id,
            RoutineSession.status == RoutineSessionStatus.COMPLETED,
            RoutineSession.id != session.id,
        )
        .limit(1),
    )
    return other_id is not None


def _achievement_candidates(
    *,
    session: RoutineSession,
    is_first_completion: bool,
    best_time_beaten: bool,
    base_points: int,
    streak_days: int,
) -> list[AchievementCandidate]:
    metadata = {
        "session_id": session.id,
        "routine_id": session.routine_id,
        "session_date": session.session_date.isoformat(),
    }
    candidates: list[AchievementCandidate] = []
    if is_first_completion:
        candidates.append(AchievementCandidate(code=FIRST_ROUTINE, metadata=dict(metadata)))
    if best_time_beaten and base_points > 0:
        candidates.append(
            AchievementCandidate(
                code=SPEEDSTER,
                metadata={**metadata, "duration_seconds": session.duration_seconds},
            ),
        )
    for threshold in settings.streak_thresholds:
        if streak_days >= threshold:
            candidates.append(
                AchievementCandidate(code=streak_code(threshold), metadata={**metadata, "streak_days": streak_days}),
            )
    return candidates


def _award_achievements_best_effort(
    db: Session,
    *,
    session: RoutineSession,
    family_id: int,
    candidates: Sequence[AchievementCandidate],
    clock: Clock,
) -> list[str]:
    if not candidates:
        return []
    try:
        return award_if_eligible(
            db,
            profile_id=session.child_profile_id,
            family_id=family_id,
            candidates=candidates,
            clock=clock,
        )
    except Exception:
        logger.exception(
            "achievement.evaluation_failed",
            extra={"session_id": session.id, "child_id": session.child_profile_id, "family_id": family_id},
        )
        return []


def complete_session(
    db: Session,
    *,
    session_id: int,
    completed_tasks: Iterable[CompletedTaskEntry],
    clock: Clock = utc_now,
) -> CompletionResult:
    session = ensure_session_writable(db, session_id)
    now = clock()

    entries = list(completed_tasks)
    timestamps = [_parse_timestamp(entry.completed_at) for entry in entries]

    active_tasks = list_active_tasks(
        db,
        routine_id=session.routine_id,
        child_profile_id=session.child_profile_id,
    )
    points_by_task = {task.id: task.points for task in active_tasks}
    position_by_task = {task.id: task.position for task in active_tasks}

    first_seen: dict[int, datetime] = {}
    for entry, timestamp in zip(entries, timestamps):
        first_seen.setdefault(entry.task_id, timestamp)
    base_points = max(0, round(sum(points_by_task.get(task_id, 0) for task_id in first_seen)))

    ordered = sorted(first_seen.items(), key=lambda item: (position_by_task.get(item[0], math.inf), item[0]))
    for task_id, timestamp in ordered:
        try:
            record_task_completion(db, session=session, task_id=task_id, completed_at=timestamp, clock=clock)
        except TaskAlreadyCompletedError as exc:
            logger.info(
                "routine_session.task_completion_skipped",
                extra={"session_id": session.id, "task_id": task_id, "reason": exc.message},
            )

    completed_at = max([*timestamps, now])
    duration_seconds: int | None = None
    if session.started_at is not None:
        duration_seconds = max(0, round((completed_at - ensure_utc(session.started_at)).total_seconds()))

    stat = get_performance_stat(db, child_profile_id=session.child_profile_id, routine_id=session.routine_id)
    previous_best = stat.best_duration_seconds if stat is not None else None
    best_time_beaten = is_best_time_beaten(duration_seconds, previous_best)
    bonus_multiplier = settings.best_time_bonus_multiplier if best_time_beaten else 1
    total_points = base_points * bonus_multiplier
    is_first_completion = not _has_other_completed_session(db, session=session)

    session.status = RoutineSessionStatus.COMPLETED
    session.completed_at = completed_at
    session.duration_seconds = duration_seconds
    session.best_time_beaten = best_time_beaten
    session.points_awarded = total_points
    session.bonus_multiplier = bonus_multiplier
    session.updated_at = now
    db.flush()

    outcome = record_completed_session(
        db,
        session=session,
        previous_best_seconds=previous_best,
        completed_at=completed_at,
        now=now,
    )

    family_id = resolve_family_id(db, session.child_profile_id)
    base_tx_id: int | None = None
    if base_points > 0:
        posting_metadata = {"routine_id": session.routine_id, "session_date": session.session_date.isoformat()}
        base_tx = post_points(
            db,
            profile_id=session.child_profile_id,
            family_id=family_id,
            delta=base_points,
            transaction_type=PointTransactionType.TASK_COMPLETION,
            reason="Routine session completed",
            reference_id=session.id,
            reference_table=SESSION_REFERENCE_TABLE,
            metadata=posting_metadata,
            clock=clock,
        )
        base_tx_id = base_tx.id
        if best_time_beaten:
            post_points(
                db,
                profile_id=session.child_profile_id,
                family_id=family_id,
                delta=total_points - base_points,
                transaction_type=PointTransactionType.ROUTINE_BONUS,
                reason="Best time bonus",
                reference_id=session.id,
                reference_table=SESSION_REFERENCE_TABLE,
                metadata={**posting_metadata, "bonus_multiplier": bonus_multiplier},
                clock=clock,
            )

    unlocked = _award_achievements_best_effort(
        db,
        session=session,
        family_id=family_id,
        candidates=_achievement_candidates(
            session=session,
            is_first_completion=is_first_completion,
            best_time_beaten=best_time_beaten,
            base_points=base_points,
            streak_days=outcome.streak_days,
        ),
        clock=clock,
    )

    logger.info(
        "routine_session.completed",
        extra={
            "session_id": session.id,
            "routine_id": session.routine_id,
            "child_id": session.child_profile_id,
            "family_id": family_id,
            "duration_seconds": duration_seconds,
            "points_awarded": total_points,
            "bonus_multiplier": bonus_multiplier,
            "streak_days": outcome.streak_days,
        },
    )
    return CompletionResult(
        session_id=session.id,
        status=session.status,
        completed_at=completed_at,
        duration_seconds=duration_seconds,
        points_awarded=total_points,
        bonus_multiplier=bonus_multiplier,
        best_time_beaten=best_time_beaten,
        streak_days=outcome.streak_days,
        point_transaction_id=base_tx_id,
        unlocked_achievements=unlocked,
    )


def skip_session(
    db: Session,
    *,
    session_id: int,
    status: RoutineSessionStatus,
    reason: str | None = None,
    clock: Clock = utc_now,
) -> RoutineSession:
    if status not in CLOSING_STATUSES:
        raise ValidationError("status must be skipped or expired")

    session = get_session(db, session_id, for_update=True)
    if session.status == RoutineSessionStatus.COMPLETED:
        raise ConflictError("Completed session cannot be skipped")

    now = clock()
    session.status = status
    session.completion_reason = reason
    session.auto_closed_at = now if status == RoutineSessionStatus.EXPIRED else None
    session.updated_at = now
    db.flush()

    logger.info(
        "routine_session.closed",
        extra={"session_id": session.id, "child_id": session.child_profile_id, "status": status.value},
    )
    return session


def get_session_details(
    db: Session,
    session_id: int,
    *,
    include_tasks: bool = True,
    include_performance: bool = True,
) -> SessionDetails:
    session = get_session(db, session_id)

    tasks: list[SessionTaskView] | None = None
    if include_tasks:
        completions = {
            item.routine_task_id: item for item in list_session_completions(db, session_id=session.id)
        }
        tasks = [
            SessionTaskView(task=task, completion=completions.get(task.id))
            for task in list_active_tasks(
                db,
                routine_id=session.routine_id,
                child_profile_id=session.child_profile_id,
            )
        ]

    performance: RoutinePerformanceStat | None = None
    if include_performance:
        performance = get_performance_stat(
            db,
            child_profile_id=session.child_profile_id,
            routine_id=session.routine_id,
        )

    return SessionDetails(session=session, tasks=tasks, performance=performance)
