"""Read-side lookups into the catalogs the session core depends on.

Routines, routine tasks, profiles and achievements are maintained elsewhere;
the routine session core only ever reads them through these helpers.
"""

from __future__ import annotations

from sqlalchemy import case, select
from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError
from app.models import Achievement, Profile, Routine, RoutineTask


def get_profile(db: Session, profile_id: int) -> Profile:
    profile = db.scalar(
        select(Profile).where(
            Profile.id == profile_id,
            Profile.deleted_at.is_(None),
        ),
    )
    if profile is None:
        raise NotFoundError("Profile not found")
    return profile


def resolve_family_id(db: Session, profile_id: int) -> int:
    return get_profile(db, profile_id).family_id


def lock_profile(db: Session, profile_id: int) -> Profile:
    # Row lock serialises ledger writers for one profile; a no-op on SQLite.
    profile = db.scalar(
        select(Profile).where(Profile.id == profile_id).with_for_update(),
    )
    if profile is None:
        raise NotFoundError("Profile not found")
    return profile


def get_routine(db: Session, routine_id: int, *, family_id: int | None = None) -> Routine:
    query = select(Routine).where(
        Routine.id == routine_id,
        Routine.deleted_at.is_(None),
    )
    if family_id is not None:
        query = query.where(Routine.family_id == family_id)
    routine = db.scalar(query)
    if routine is None:
        raise NotFoundError("Routine not found")
    return routine


def list_active_tasks(db: Session, *, routine_id: int, child_profile_id: int) -> list[RoutineTask]:
    return list(
        db.scalars(
            select(RoutineTask)
            .where(
                RoutineTask.routine_id == routine_id,
                RoutineTask.child_profile_id == child_profile_id,
                RoutineTask.is_active.is_(True),
                RoutineTask.deleted_at.is_(None),
            )
            .order_by(RoutineTask.position.asc(), RoutineTask.id.asc()),
        ).all(),
    )


def get_active_task(
    db: Session,
    *,
    routine_id: int,
    child_profile_id: int,
    task_id: int,
) -> RoutineTask:
    task = db.scalar(
        select(RoutineTask).where(
            RoutineTask.id == task_id,
            RoutineTask.routine_id == routine_id,
            RoutineTask.child_profile_id == child_profile_id,
        ),
    )
    if task is None or task.deleted_at is not None or not task.is_active:
        raise NotFoundError("Task not found for this session")
    return task


def find_achievement_by_code(db: Session, *, code: str, family_id: int) -> Achievement | None:
    """Family-specific rows win over a global row sharing the same code."""
    return db.scalar(
        select(Achievement)
        .where(
            Achievement.code == code,
            Achievement.is_active.is_(True),
            Achievement.deleted_at.is_(None),
            (Achievement.family_id == family_id) | Achievement.family_id.is_(None),
        )
        .order_by(case((Achievement.family_id.is_(None), 1), else_=0), Achievement.id.asc())
        .limit(1),
    )
