from __future__ import annotations

from datetime import date
from typing import Annotated, Literal

from fastapi import APIRouter, Query, status

from app.api.deps import CurrentAuth, DBSession, ParentAuth, RequestClock, ensure_child_access
from app.models import RoutinePerformanceStat, RoutineSession, RoutineSessionStatus, TaskCompletion
from app.schemas.sessions import (
    MessageResponse,
    PageMeta,
    PerformanceSnapshotOut,
    SessionCompleteRequest,
    SessionCompletionOut,
    SessionDetailsOut,
    SessionListResponse,
    SessionSkipRequest,
    SessionSkipResponse,
    SessionStartRequest,
    SessionStartResponse,
    SessionSummaryOut,
    SessionTaskOut,
    TaskCompletionOut,
    TaskCompletionRequest,
    TaskOrderEntryOut,
)
from app.services import routine_sessions
from app.services.routine_sessions import CompletedTaskEntry

router = APIRouter(tags=["sessions"])


def _summary_out(session: RoutineSession) -> SessionSummaryOut:
    return SessionSummaryOut(
        id=session.id,
        routine_id=session.routine_id,
        session_date=session.session_date,
        status=session.status.value,
        started_at=session.started_at,
        completed_at=session.completed_at,
        duration_seconds=session.duration_seconds,
        points_awarded=session.points_awarded,
        bonus_multiplier=session.bonus_multiplier,
    )


def _completion_out(completion: TaskCompletion) -> TaskCompletionOut:
    return TaskCompletionOut(
        id=completion.id,
        session_id=completion.routine_session_id,
        task_id=completion.routine_task_id,
        completed_at=completion.completed_at,
        position=completion.position,
        points_awarded=completion.points_awarded,
        duration_since_session_start_seconds=completion.duration_since_session_start_seconds,
    )


def performance_out(stat: RoutinePerformanceStat) -> PerformanceSnapshotOut:
    return PerformanceSnapshotOut(
        routine_id=stat.routine_id,
        child_profile_id=stat.child_profile_id,
        best_duration_seconds=stat.best_duration_seconds,
        best_session_id=stat.best_session_id,
        last_completed_session_id=stat.last_completed_session_id,
        last_completed_at=stat.last_completed_at,
        streak_days=stat.streak_days,
        updated_at=stat.updated_at,
    )


def _load_accessible_session(db: DBSession, auth: CurrentAuth, session_id: int) -> RoutineSession:
    session = routine_sessions.get_session(db, session_id)
    ensure_child_access(db, auth, session.child_profile_id)
    return session


@router.post(
    "/api/v1/children/{child_id}/sessions",
    response_model=SessionStartResponse,
    status_code=status.HTTP_201_CREATED,
)
def start_session(
    child_id: int,
    payload: SessionStartRequest,
    db: DBSession,
    auth: CurrentAuth,
    clock: RequestClock,
) -> SessionStartResponse:
    ensure_child_access(db, auth, child_id)
    result = routine_sessions.start_session(
        db,
        child_profile_id=child_id,
        routine_id=payload.routine_id,
        session_date=payload.session_date,
        clock=clock,
    )
    db.commit()
    return SessionStartResponse(
        id=result.session.id,
        status=result.session.status.value,
        started_at=result.session.started_at,
        planned_end_at=result.session.planned_end_at,
        task_order=[TaskOrderEntryOut(task_id=item.task_id, position=item.position) for item in result.task_order],
    )


@router.get("/api/v1/children/{child_id}/sessions", response_model=SessionListResponse)
def list_sessions(
    child_id: int,
    db: DBSession,
    auth: CurrentAuth,
    status_value: Annotated[RoutineSessionStatus | None, Query(alias="status")] = None,
    from_date: Annotated[date | None, Query(alias="fromDate")] = None,
    to_date: Annotated[date | None, Query(alias="toDate")] = None,
    routine_id: Annotated[int | None, Query(alias="routineId")] = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
    sort: Literal["session_date", "started_at", "completed_at"] = "session_date",
    order: Literal["asc", "desc"] = "desc",
) -> SessionListResponse:
    ensure_child_access(db, auth, child_id)
    rows, total = routine_sessions.list_child_sessions(
        db,
        child_profile_id=child_id,
        status=status_value,
        from_date=from_date,
        to_date=to_date,
        routine_id=routine_id,
        limit=limit,
        offset=offset,
        sort=sort,
        order=order,
    )
    return SessionListResponse(
        data=[_summary_out(row) for row in rows],
        meta=PageMeta(page=offset // limit + 1, page_size=limit, total=total),
    )


@router.get("/api/v1/sessions/{session_id}", response_model=SessionDetailsOut)
def get_session_details(
    session_id: int,
    db: DBSession,
    auth: CurrentAuth,
    include_tasks: Annotated[bool, Query(alias="includeTasks")] = True,
    include_performance: Annotated[bool, Query(alias="includePerformance")] = True,
) -> SessionDetailsOut:
    _load_accessible_session(db, auth, session_id)
    details = routine_sessions.get_session_details(
        db,
        session_id,
        include_tasks=include_tasks,
        include_performance=include_performance,
    )
    session = details.session
    return SessionDetailsOut(
        id=session.id,
        routine_id=session.routine_id,
        child_profile_id=session.child_profile_id,
        session_date=session.session_date,
        status=session.status.value,
        started_at=session.started_at,
        completed_at=session.completed_at,
        auto_closed_at=session.auto_closed_at,
        planned_end_at=session.planned_end_at,
        duration_seconds=session.duration_seconds,
        points_awarded=session.points_awarded,
        bonus_multiplier=session.bonus_multiplier,
        best_time_beaten=session.best_time_beaten,
        completion_reason=session.completion_reason,
        notes=session.notes,
        tasks=(
            [
                SessionTaskOut(
                    task_id=item.task.id,
                    name=item.task.name,
                    position=item.task.position,
                    is_optional=item.task.is_optional,
                    points=item.task.points,
                    status=item.status,
                    completion_id=item.completion.id if item.completion is not None else None,
                    completed_at=item.completion.completed_at if item.completion is not None else None,
                )
                for item in details.tasks
            ]
            if details.tasks is not None
            else None
        ),
        performance=performance_out(details.performance) if details.performance is not None else None,
    )


@router.post(
    "/api/v1/sessions/{session_id}/tasks/{task_id}/complete",
    response_model=TaskCompletionOut,
    status_code=status.HTTP_201_CREATED,
)
def complete_task(
    session_id: int,
    task_id: int,
    payload: TaskCompletionRequest,
    db: DBSession,
    auth: CurrentAuth,
    clock: RequestClock,
) -> TaskCompletionOut:
    _load_accessible_session(db, auth, session_id)
    completion = routine_sessions.complete_task(
        db,
        session_id=session_id,
        task_id=task_id,
        completed_at=payload.completed_at,
        notes=payload.notes,
        clock=clock,
    )
    db.commit()
    return _completion_out(completion)


@router.post("/api/v1/sessions/{session_id}/tasks/{completion_id}/undo", response_model=MessageResponse)
def undo_task_completion(
    session_id: int,
    completion_id: int,
    db: DBSession,
    auth: ParentAuth,
) -> MessageResponse:
    _load_accessible_session(db, auth, session_id)
    routine_sessions.undo_task_completion(db, session_id=session_id, completion_id=completion_id)
    db.commit()
    return MessageResponse(message="Task completion reverted")


@router.post("/api/v1/sessions/{session_id}/complete", response_model=SessionCompletionOut)
def complete_session(
    session_id: int,
    payload: SessionCompleteRequest,
    db: DBSession,
    auth: CurrentAuth,
    clock: RequestClock,
) -> SessionCompletionOut:
    _load_accessible_session(db, auth, session_id)
    result = routine_sessions.complete_session(
        db,
        session_id=session_id,
        completed_tasks=[
            CompletedTaskEntry(task_id=item.task_id, completed_at=item.completed_at)
            for item in payload.completed_tasks
        ],
        clock=clock,
    )
    db.commit()
    return SessionCompletionOut(
        status=result.status.value,
        completed_at=result.completed_at,
        duration_seconds=result.duration_seconds,
        points_awarded=result.points_awarded,
        bonus_multiplier=result.bonus_multiplier,
        best_time_beaten=result.best_time_beaten,
        streak_days=result.streak_days,
        point_transaction_id=result.point_transaction_id,
        unlocked_achievements=result.unlocked_achievements,
    )


@router.post("/api/v1/sessions/{session_id}/skip", response_model=SessionSkipResponse)
def skip_session(
    session_id: int,
    payload: SessionSkipRequest,
    db: DBSession,
    auth: ParentAuth,
    clock: RequestClock,
) -> SessionSkipResponse:
    _load_accessible_session(db, auth, session_id)
    target = RoutineSessionStatus(payload.status)
    routine_sessions.skip_session(db, session_id=session_id, status=target, reason=payload.reason, clock=clock)
    db.commit()
    return SessionSkipResponse(
        message="Session skipped" if target == RoutineSessionStatus.SKIPPED else "Session expired",
    )
