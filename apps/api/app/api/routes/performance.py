from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query

from app.api.deps import CurrentAuth, DBSession, ensure_child_access
from app.api.routes.sessions import performance_out
from app.schemas.performance import RoutinePerformanceListResponse
from app.services.performance import list_routine_performance

router = APIRouter(tags=["performance"])


@router.get("/api/v1/children/{child_id}/performance/routines", response_model=RoutinePerformanceListResponse)
def list_child_routine_performance(
    child_id: int,
    db: DBSession,
    auth: CurrentAuth,
    routine_id: Annotated[int | None, Query(alias="routineId")] = None,
) -> RoutinePerformanceListResponse:
    ensure_child_access(db, auth, child_id)
    stats = list_routine_performance(db, child_profile_id=child_id, routine_id=routine_id)
    return RoutinePerformanceListResponse(data=[performance_out(stat) for stat in stats])
