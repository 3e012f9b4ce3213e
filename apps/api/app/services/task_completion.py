from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.clock import Clock, ensure_utc, utc_now
from app.core.exceptions import ConflictError, NotFoundError
from app.models import RoutineSession, RoutineTask, TaskCompletion
from app.services.catalog import get_active_task

logger = logging.getLogger("routinely.api.sessions")


class TaskAlreadyCompletedError(ConflictError):
    pass


class TaskOrderError(ConflictError):
    pass


def list_session_completions(db: Session, *, session_id: int) -> list[TaskCompletion]:
    return list(
        db.scalars(
            select(TaskCompletion)
            .where(TaskCompletion.routine_session_id == session_id)
            .order_by(TaskCompletion.position.asc(), TaskCompletion.id.asc()),
        ).all(),
    )


def get_task_completion(db: Session, *, session_id: int, task_id: int) -> TaskCompletion | None:
    return db.scalar(
        select(TaskCompletion).where(
            TaskCompletion.routine_session_id == session_id,
            TaskCompletion.routine_task_id == task_id,
        ),
    )


def ensure_task_order_respected(db: Session, *, session: RoutineSession, task: RoutineTask) -> None:
    """Every mandatory task positioned before ``task`` must already be done in this session."""
    mandatory_ids = list(
        db.scalars(
            select(RoutineTask.id).where(
                RoutineTask.routine_id == session.routine_id,
                RoutineTask.child_profile_id == session.child_profile_id,
                RoutineTask.position < task.position,
                RoutineTask.is_optional.is_(False),
                RoutineTask.is_active.is_(True),
                RoutineTask.deleted_at.is_(None),
            ),
        ).all(),
    )
    if not mandatory_ids:
        return

    completed_ids = set(
        db.scalars(
            select(TaskCompletion.routine_task_id).where(
                TaskCompletion.routine_session_id == session.id,
                TaskCompletion.routine_task_id.in_(mandatory_ids),
            ),
        ).all(),
    )
    missing = sorted(task_id for task_id in mandatory_ids if task_id not in completed_ids)
    if missing:
        raise TaskOrderError("Previous mandatory task not completed", details={"missing_task_ids": missing})


def record_task_completion(
    db: Session,
    *,
    session: RoutineSession,
    task_id: int,
    completed_at: datetime | None = None,
    notes: dict[str, Any] | None = None,
    clock: Clock = utc_now,
) -> TaskCompletion:
    task = get_active_task(
        db,
        routine_id=session.routine_id,
        child_profile_id=session.child_profile_id,
        task_id=task_id,
    )
    if get_task_completion(db, session_id=session.id, task_id=task.id) is not None:
        raise TaskAlreadyCompletedError("Task already completed")
    ensure_task_order_respected(db, session=session, task=task)

    completed_at_utc = ensure_utc(completed_at) if completed_at is not None else clock()
    elapsed: int | None = None
    if session.started_at is not None:
        elapsed = max(0, round((completed_at_utc - ensure_utc(session.started_at)).total_seconds()))

    completion = TaskCompletion(
        routine_session_id=session.id,
        routine_task_id=task.id,
        completed_at=completed_at_utc,
        position=task.position,
        points_awarded=task.points,
        duration_since_session_start_seconds=elapsed,
        metadata_json=notes or {},
    )
    try:
        with db.begin_nested():
            db.add(completion)
            db.flush()
    except IntegrityError as exc:
        raise TaskAlreadyCompletedError("Task already completed") from exc

    logger.info(
        "routine_session.task_completed",
        extra={
            "session_id": session.id,
            "task_id": task.id,
            "child_id": session.child_profile_id,
            "points_awarded": task.points,
        },
    )
    return completion


def delete_task_completion(db: Session, *, session_id: int, completion_id: int) -> None:
    completion = db.scalar(
        select(TaskCompletion).where(
            TaskCompletion.id == completion_id,
            TaskCompletion.routine_session_id == session_id,
        ),
    )
    if completion is None:
        raise NotFoundError("Task completion not found")

    db.delete(completion)
    db.flush()
    logger.info(
        "routine_session.task_undone",
        extra={"session_id": session_id, "task_id": completion.routine_task_id},
    )
