from __future__ import annotations

import os

os.environ.setdefault("ROUTINELY_DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("ROUTINELY_JWT_SECRET", "test-secret")
os.environ.setdefault("ROUTINELY_APP_ENV", "test")
os.environ.setdefault("ROUTINELY_SEED_DEFAULT_ACHIEVEMENTS", "false")

from collections.abc import Iterator  # noqa: E402
from dataclasses import dataclass  # noqa: E402
from datetime import UTC, datetime, timedelta  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.engine import Engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app import models  # noqa: E402,F401
from app.db.base import Base  # noqa: E402
from app.models import Family, Profile, ProfileRole, Routine, RoutineTask  # noqa: E402
from app.services.achievement_engine import ensure_default_achievements  # noqa: E402

T0 = datetime(2026, 3, 2, 7, 0, tzinfo=UTC)


class MutableClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@dataclass
class Household:
    family: Family
    parent: Profile
    child: Profile
    sibling: Profile
    routine: Routine
    brush_teeth: RoutineTask
    get_dressed: RoutineTask


@pytest.fixture
def engine() -> Iterator[Engine]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite needs explicit BEGIN for SAVEPOINT support.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _record) -> None:  # type: ignore[no-untyped-def]
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn) -> None:  # type: ignore[no-untyped-def]
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=True, expire_on_commit=False)


@pytest.fixture
def db(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock(T0)


@pytest.fixture
def household(db: Session) -> Household:
    family = Family(name="Rivera")
    db.add(family)
    db.flush()

    parent = Profile(family_id=family.id, display_name="Ana", role=ProfileRole.PARENT)
    child = Profile(family_id=family.id, display_name="Leo", role=ProfileRole.CHILD)
    sibling = Profile(family_id=family.id, display_name="Mia", role=ProfileRole.CHILD)
    db.add_all([parent, child, sibling])
    db.flush()

    routine = Routine(family_id=family.id, name="Morning", auto_close_after_minutes=30)
    db.add(routine)
    db.flush()

    brush_teeth = RoutineTask(
        routine_id=routine.id,
        child_profile_id=child.id,
        name="Brush teeth",
        points=15,
        position=1,
    )
    get_dressed = RoutineTask(
        routine_id=routine.id,
        child_profile_id=child.id,
        name="Get dressed",
        points=20,
        position=2,
    )
    db.add_all([brush_teeth, get_dressed])
    db.flush()

    ensure_default_achievements(db)
    db.commit()
    return Household(
        family=family,
        parent=parent,
        child=child,
        sibling=sibling,
        routine=routine,
        brush_teeth=brush_teeth,
        get_dressed=get_dressed,
    )
