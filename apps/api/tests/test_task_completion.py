from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.exceptions import ConflictError, NotFoundError
from app.models import RoutineTask, TaskCompletion
from app.services.routine_sessions import complete_task, start_session, undo_task_completion
from app.services.task_completion import TaskAlreadyCompletedError, TaskOrderError
from conftest import Household, MutableClock

SESSION_DATE = date(2026, 3, 2)


def _start(db: Session, household: Household, clock: MutableClock) -> int:
    result = start_session(
        db,
        child_profile_id=household.child.id,
        routine_id=household.routine.id,
        session_date=SESSION_DATE,
        clock=clock,
    )
    return result.session.id


def test_completion_copies_task_points_and_elapsed_time(
    db: Session,
    household: Household,
    clock: MutableClock,
) -> None:
    session_id = _start(db, household, clock)
    clock.advance(seconds=95)

    completion = complete_task(db, session_id=session_id, task_id=household.brush_teeth.id, clock=clock)

    assert completion.points_awarded == 15
    assert completion.position == 1
    assert completion.duration_since_session_start_seconds == 95


def test_mandatory_predecessor_blocks_later_task(db: Session, household: Household, clock: MutableClock) -> None:
    session_id = _start(db, household, clock)

    with pytest.raises(TaskOrderError) as excinfo:
        complete_task(db, session_id=session_id, task_id=household.get_dressed.id, clock=clock)

    assert excinfo.value.message == "Previous mandatory task not completed"
    assert excinfo.value.details == {"missing_task_ids": [household.brush_teeth.id]}


def test_optional_predecessor_does_not_block(db: Session, household: Household, clock: MutableClock) -> None:
    household.brush_teeth.is_optional = True
    db.flush()
    session_id = _start(db, household, clock)

    completion = complete_task(db, session_id=session_id, task_id=household.get_dressed.id, clock=clock)

    assert completion.routine_task_id == household.get_dressed.id


def test_same_task_twice_keeps_one_row(db: Session, household: Household, clock: MutableClock) -> None:
    session_id = _start(db, household, clock)
    complete_task(db, session_id=session_id, task_id=household.brush_teeth.id, clock=clock)

    with pytest.raises(TaskAlreadyCompletedError):
        complete_task(db, session_id=session_id, task_id=household.brush_teeth.id, clock=clock)

    count = db.scalar(select(func.count(TaskCompletion.id)).where(TaskCompletion.routine_session_id == session_id))
    assert count == 1


def test_task_of_another_child_is_not_found(db: Session, household: Household, clock: MutableClock) -> None:
    foreign = RoutineTask(
        routine_id=household.routine.id,
        child_profile_id=household.sibling.id,
        name="Feed the cat",
        points=5,
        position=1,
    )
    db.add(foreign)
    db.flush()
    session_id = _start(db, household, clock)

    with pytest.raises(NotFoundError):
        complete_task(db, session_id=session_id, task_id=foreign.id, clock=clock)


def test_soft_deleted_task_is_not_found(db: Session, household: Household, clock: MutableClock) -> None:
    household.brush_teeth.deleted_at = clock()
    db.flush()
    session_id = _start(db, household, clock)

    with pytest.raises(NotFoundError):
        complete_task(db, session_id=session_id, task_id=household.brush_teeth.id, clock=clock)


def test_complete_task_unknown_session(db: Session, household: Household, clock: MutableClock) -> None:
    with pytest.raises(NotFoundError):
        complete_task(db, session_id=4242, task_id=household.brush_teeth.id, clock=clock)


def test_undo_removes_completion_and_unblocks_retry(db: Session, household: Household, clock: MutableClock) -> None:
    session_id = _start(db, household, clock)
    completion = complete_task(db, session_id=session_id, task_id=household.brush_teeth.id, clock=clock)

    undo_task_completion(db, session_id=session_id, completion_id=completion.id)

    assert db.get(TaskCompletion, completion.id) is None
    again = complete_task(db, session_id=session_id, task_id=household.brush_teeth.id, clock=clock)
    assert again.routine_task_id == household.brush_teeth.id


def test_undo_unknown_completion(db: Session, household: Household, clock: MutableClock) -> None:
    session_id = _start(db, household, clock)
    with pytest.raises(NotFoundError):
        undo_task_completion(db, session_id=session_id, completion_id=999)


def test_task_conflicts_are_conflict_errors() -> None:
    assert issubclass(TaskAlreadyCompletedError, ConflictError)
    assert issubclass(TaskOrderError, ConflictError)
