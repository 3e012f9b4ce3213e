from __future__ import annotations

from pydantic import BaseModel

from app.schemas.sessions import PerformanceSnapshotOut


class RoutinePerformanceListResponse(BaseModel):
    data: list[PerformanceSnapshotOut]
