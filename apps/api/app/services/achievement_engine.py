from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.clock import Clock, utc_now
from app.core.exceptions import ConflictError, NotFoundError
from app.models import Achievement, UserAchievement
from app.services.catalog import find_achievement_by_code

logger = logging.getLogger("routinely.api.achievements")

FIRST_ROUTINE = "first_routine"
SPEEDSTER = "speedster"

DEFAULT_ACHIEVEMENTS: list[dict[str, Any]] = [
    {
        "code": FIRST_ROUTINE,
        "name": "First Routine",
        "description": "Finish a routine for the very first time.",
        "criteria": {"type": "routine_completed", "count": 1},
    },
    {
        "code": SPEEDSTER,
        "name": "Speedster",
        "description": "Beat your best time on a routine.",
        "criteria": {"type": "best_time_beaten"},
    },
    {
        "code": "streak_3",
        "name": "3 Day Streak",
        "description": "Complete the same routine three days in a row.",
        "criteria": {"type": "streak_days", "value": 3},
    },
    {
        "code": "streak_7",
        "name": "7 Day Streak",
        "description": "Complete the same routine seven days in a row.",
        "criteria": {"type": "streak_days", "value": 7},
    },
]


@dataclass(slots=True)
class AchievementCandidate:
    code: str
    metadata: dict[str, Any] = field(default_factory=dict)


def streak_code(threshold: int) -> str:
    return f"streak_{threshold}"


def ensure_default_achievements(db: Session) -> None:
    for item in DEFAULT_ACHIEVEMENTS:
        existing = db.scalar(
            select(Achievement).where(
                Achievement.code == item["code"],
                Achievement.family_id.is_(None),
            ),
        )
        if existing is not None:
            continue
        db.add(
            Achievement(
                family_id=None,
                code=item["code"],
                name=item["name"],
                description=item["description"],
                criteria=item["criteria"],
                is_active=True,
            ),
        )
    db.flush()


def award_achievement(
    db: Session,
    *,
    profile_id: int,
    achievement_id: int,
    metadata: dict[str, Any] | None = None,
    clock: Clock = utc_now,
) -> UserAchievement:
    if db.get(Achievement, achievement_id) is None:
        raise NotFoundError("Achievement not found")

    existing = db.scalar(
        select(UserAchievement).where(
            UserAchievement.profile_id == profile_id,
            UserAchievement.achievement_id == achievement_id,
        ),
    )
    if existing is not None:
        raise ConflictError("Achievement already awarded")

    grant = UserAchievement(
        profile_id=profile_id,
        achievement_id=achievement_id,
        awarded_at=clock(),
        metadata_json=metadata or {},
    )
    try:
        with db.begin_nested():
            db.add(grant)
            db.flush()
    except IntegrityError as exc:
        raise ConflictError("Achievement already awarded") from exc
    return grant


def award_if_eligible(
    db: Session,
    *,
    profile_id: int,
    family_id: int,
    candidates: Iterable[AchievementCandidate],
    clock: Clock = utc_now,
) -> list[str]:
    """Grant every resolvable candidate; never raises.

    Duplicate grants are expected and skipped quietly. Anything else is logged
    and the remaining candidates are still attempted.
    """
    unlocked: list[str] = []
    for candidate in candidates:
        try:
            with db.begin_nested():
                achievement = find_achievement_by_code(db, code=candidate.code, family_id=family_id)
                if achievement is None:
                    continue
                award_achievement(
                    db,
                    profile_id=profile_id,
                    achievement_id=achievement.id,
                    metadata=candidate.metadata,
                    clock=clock,
                )
        except ConflictError:
            continue
        except Exception:
            logger.exception(
                "achievement.award_failed",
                extra={"profile_id": profile_id, "family_id": family_id, "achievement_code": candidate.code},
            )
            continue

        unlocked.append(candidate.code)
        logger.info(
            "achievement.awarded",
            extra={"profile_id": profile_id, "family_id": family_id, "achievement_code": candidate.code},
        )
    return unlocked


def list_child_achievements(db: Session, *, profile_id: int) -> list[tuple[UserAchievement, Achievement]]:
    rows = db.execute(
        select(UserAchievement, Achievement)
        .join(Achievement, Achievement.id == UserAchievement.achievement_id)
        .where(UserAchievement.profile_id == profile_id)
        .order_by(UserAchievement.awarded_at.asc(), UserAchievement.id.asc()),
    ).all()
    return [(row[0], row[1]) for row in rows]
