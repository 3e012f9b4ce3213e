from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError, ValidationError
from app.models import Family, PointTransaction, PointTransactionType
from app.services.points import (
    create_manual_adjustment,
    get_balance,
    get_child_wallet,
    list_point_transactions,
    post_points,
)
from conftest import Household, MutableClock


def _post(db: Session, household: Household, clock: MutableClock, delta: int) -> PointTransaction:
    clock.advance(minutes=1)
    return post_points(
        db,
        profile_id=household.child.id,
        family_id=household.family.id,
        delta=delta,
        transaction_type=PointTransactionType.TASK_COMPLETION,
        reason="test",
        clock=clock,
    )


def test_balance_is_zero_without_history(db: Session, household: Household) -> None:
    assert get_balance(db, profile_id=household.child.id, family_id=household.family.id) == 0


def test_balance_after_is_running_total(db: Session, household: Household, clock: MutableClock) -> None:
    deltas = [35, 35, -10, 5]
    rows = [_post(db, household, clock, delta) for delta in deltas]

    running = 0
    for row, delta in zip(rows, deltas):
        running += delta
        assert row.balance_after == running
    assert get_balance(db, profile_id=household.child.id, family_id=household.family.id) == 65


def test_balance_is_scoped_to_family(db: Session, household: Household, clock: MutableClock) -> None:
    _post(db, household, clock, 40)
    other = Family(name="Other")
    db.add(other)
    db.flush()

    assert get_balance(db, profile_id=household.child.id, family_id=other.id) == 0


def test_post_rejects_profile_from_another_family(db: Session, household: Household, clock: MutableClock) -> None:
    other = Family(name="Other")
    db.add(other)
    db.flush()

    with pytest.raises(NotFoundError):
        post_points(
            db,
            profile_id=household.child.id,
            family_id=other.id,
            delta=10,
            transaction_type=PointTransactionType.MANUAL_ADJUSTMENT,
            reason="wrong family",
            clock=clock,
        )


def test_manual_adjustment_requires_non_zero_delta(db: Session, household: Household, clock: MutableClock) -> None:
    with pytest.raises(ValidationError):
        create_manual_adjustment(
            db,
            family_id=household.family.id,
            profile_id=household.child.id,
            points_delta=0,
            reason="nothing",
            clock=clock,
        )
    assert db.scalars(select(PointTransaction)).all() == []


def test_manual_adjustment_records_author(db: Session, household: Household, clock: MutableClock) -> None:
    _post(db, household, clock, 20)
    tx = create_manual_adjustment(
        db,
        family_id=household.family.id,
        profile_id=household.child.id,
        points_delta=-5,
        reason="Broke a rule",
        created_by_profile_id=household.parent.id,
        clock=clock,
    )

    assert tx.transaction_type == PointTransactionType.MANUAL_ADJUSTMENT
    assert tx.balance_after == 15
    assert tx.created_by_profile_id == household.parent.id


def test_list_transactions_filters_and_paginates(db: Session, household: Household, clock: MutableClock) -> None:
    for delta in (10, 20, 30):
        _post(db, household, clock, delta)
    post_points(
        db,
        profile_id=household.sibling.id,
        family_id=household.family.id,
        delta=99,
        transaction_type=PointTransactionType.ROUTINE_BONUS,
        reason="sibling",
        clock=clock,
    )

    rows, total = list_point_transactions(db, family_id=household.family.id, child_profile_id=household.child.id)
    assert total == 3
    assert [row.points_delta for row in rows] == [30, 20, 10]

    rows, total = list_point_transactions(
        db,
        family_id=household.family.id,
        sort="points_delta",
        order="asc",
        limit=2,
        offset=1,
    )
    assert total == 4
    assert [row.points_delta for row in rows] == [20, 30]

    rows, total = list_point_transactions(
        db,
        family_id=household.family.id,
        transaction_type=PointTransactionType.ROUTINE_BONUS,
    )
    assert total == 1
    assert rows[0].profile_id == household.sibling.id


def test_list_transactions_date_window(db: Session, household: Household, clock: MutableClock) -> None:
    first = _post(db, household, clock, 10)
    _post(db, household, clock, 20)

    rows, total = list_point_transactions(
        db,
        family_id=household.family.id,
        created_to=first.created_at + timedelta(seconds=30),
    )
    assert total == 1
    assert rows[0].id == first.id


def test_child_wallet_returns_recent_transactions(db: Session, household: Household, clock: MutableClock) -> None:
    for delta in (5, 10, 15, 20):
        _post(db, household, clock, delta)

    wallet = get_child_wallet(
        db,
        family_id=household.family.id,
        child_profile_id=household.child.id,
        recent_limit=2,
    )

    assert wallet.balance == 50
    assert [tx.points_delta for tx in wallet.recent_transactions] == [20, 15]
