from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class UserAchievementOut(BaseModel):
    achievement_id: int
    code: str
    name: str
    description: str | None
    icon_url: str | None
    awarded_at: datetime
    metadata: dict[str, Any]


class UserAchievementListResponse(BaseModel):
    child_id: int
    achievements: list[UserAchievementOut]
