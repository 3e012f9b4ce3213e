from __future__ import annotations

from fastapi import APIRouter

from app.api.deps import CurrentAuth, DBSession, ensure_child_access
from app.schemas.achievements import UserAchievementListResponse, UserAchievementOut
from app.services.achievement_engine import list_child_achievements

router = APIRouter(tags=["achievements"])


@router.get("/api/v1/children/{child_id}/achievements", response_model=UserAchievementListResponse)
def list_achievements(
    child_id: int,
    db: DBSession,
    auth: CurrentAuth,
) -> UserAchievementListResponse:
    ensure_child_access(db, auth, child_id)
    grants = list_child_achievements(db, profile_id=child_id)
    return UserAchievementListResponse(
        child_id=child_id,
        achievements=[
            UserAchievementOut(
                achievement_id=achievement.id,
                code=achievement.code,
                name=achievement.name,
                description=achievement.description,
                icon_url=achievement.icon_url,
                awarded_at=grant.awarded_at,
                metadata=grant.metadata_json,
            )
            for grant, achievement in grants
        ],
    )
