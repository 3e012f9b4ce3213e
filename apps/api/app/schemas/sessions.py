from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class SessionStartRequest(BaseModel):
    routine_id: int
    session_date: date


class TaskOrderEntryOut(BaseModel):
    task_id: int
    position: int


class SessionStartResponse(BaseModel):
    id: int
    status: str
    started_at: datetime | None
    planned_end_at: datetime | None
    task_order: list[TaskOrderEntryOut]


class SessionSummaryOut(BaseModel):
    id: int
    routine_id: int
    session_date: date
    status: str
    started_at: datetime | None
    completed_at: datetime | None
    duration_seconds: int | None
    points_awarded: int
    bonus_multiplier: int


class PageMeta(BaseModel):
    page: int
    page_size: int
    total: int


class SessionListResponse(BaseModel):
    data: list[SessionSummaryOut]
    meta: PageMeta


class TaskCompletionRequest(BaseModel):
    completed_at: datetime | None = None
    notes: dict[str, Any] | None = None


class TaskCompletionOut(BaseModel):
    id: int
    session_id: int
    task_id: int
    completed_at: datetime
    position: int
    points_awarded: int
    duration_since_session_start_seconds: int | None


class CompletedTaskIn(BaseModel):
    task_id: int
    # Kept as a string so an unparseable value surfaces as a domain validation error.
    completed_at: str


class SessionCompleteRequest(BaseModel):
    completed_tasks: list[CompletedTaskIn] = Field(default_factory=list)


class SessionCompletionOut(BaseModel):
    status: str
    completed_at: datetime
    duration_seconds: int | None
    points_awarded: int
    bonus_multiplier: int
    best_time_beaten: bool
    streak_days: int
    point_transaction_id: int | None
    unlocked_achievements: list[str]


class SessionSkipRequest(BaseModel):
    status: Literal["skipped", "expired"]
    reason: str | None = None


class SessionSkipResponse(BaseModel):
    message: str


class SessionTaskOut(BaseModel):
    task_id: int
    name: str
    position: int
    is_optional: bool
    points: int
    status: Literal["completed", "pending"]
    completion_id: int | None
    completed_at: datetime | None


class PerformanceSnapshotOut(BaseModel):
    routine_id: int
    child_profile_id: int
    best_duration_seconds: int | None
    best_session_id: int | None
    last_completed_session_id: int | None
    last_completed_at: datetime | None
    streak_days: int
    updated_at: datetime


class SessionDetailsOut(BaseModel):
    id: int
    routine_id: int
    child_profile_id: int
    session_date: date
    status: str
    started_at: datetime | None
    completed_at: datetime | None
    auto_closed_at: datetime | None
    planned_end_at: datetime | None
    duration_seconds: int | None
    points_awarded: int
    bonus_multiplier: int
    best_time_beaten: bool
    completion_reason: str | None
    notes: str | None
    tasks: list[SessionTaskOut] | None = None
    performance: PerformanceSnapshotOut | None = None


class MessageResponse(BaseModel):
    message: str
