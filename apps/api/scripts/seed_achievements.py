from __future__ import annotations

from sqlalchemy import func, select

from app.db.session import SessionLocal
from app.models import Achievement
from app.services.achievement_engine import ensure_default_achievements


def run_seed() -> None:
    with SessionLocal() as db:
        before = db.scalar(select(func.count(Achievement.id)).where(Achievement.family_id.is_(None))) or 0
        ensure_default_achievements(db)
        db.commit()
        after = db.scalar(select(func.count(Achievement.id)).where(Achievement.family_id.is_(None))) or 0

    print("=== ACHIEVEMENTS SEED RESULT ===")
    print(f"global_achievements_before: {before}")
    print(f"created: {after - before}")


def main() -> None:
    run_seed()


if __name__ == "__main__":
    main()
