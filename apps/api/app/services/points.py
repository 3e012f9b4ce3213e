from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.clock import Clock, utc_now
from app.core.exceptions import NotFoundError, ValidationError
from app.models import PointTransaction, PointTransactionType
from app.services.catalog import lock_profile

logger = logging.getLogger("routinely.api.points")

TransactionSort = Literal["created_at", "points_delta"]
SortOrder = Literal["asc", "desc"]


@dataclass(slots=True)
class WalletSnapshot:
    profile_id: int
    balance: int
    recent_transactions: list[PointTransaction]


def get_balance(db: Session, *, profile_id: int, family_id: int) -> int:
    total = db.scalar(
        select(func.coalesce(func.sum(PointTransaction.points_delta), 0)).where(
            PointTransaction.profile_id == profile_id,
            PointTransaction.family_id == family_id,
        ),
    )
    return int(total or 0)


def post_points(
    db: Session,
    *,
    profile_id: int,
    family_id: int,
    delta: int,
    transaction_type: PointTransactionType,
    reason: str | None,
    reference_id: int | None = None,
    reference_table: str | None = None,
    metadata: dict[str, Any] | None = None,
    created_by_profile_id: int | None = None,
    clock: Clock = utc_now,
) -> PointTransaction:
    """Append one immutable ledger row.

    The profile row is locked before the balance is read so that two writers
    for the same profile cannot compute the same ``balance_after``.
    """
    profile = lock_profile(db, profile_id)
    if profile.family_id != family_id:
        raise NotFoundError("Profile not found in family")

    balance_after = get_balance(db, profile_id=profile_id, family_id=family_id) + delta
    tx = PointTransaction(
        family_id=family_id,
        profile_id=profile_id,
        transaction_type=transaction_type,
        points_delta=delta,
        balance_after=balance_after,
        reason=reason,
        reference_id=reference_id,
        reference_table=reference_table,
        created_by_profile_id=created_by_profile_id,
        metadata_json=metadata or {},
        created_at=clock(),
    )
    db.add(tx)
    db.flush()

    logger.info(
        "points.posted",
        extra={
            "family_id": family_id,
            "profile_id": profile_id,
            "points_delta": delta,
            "balance_after": balance_after,
        },
    )
    return tx


def create_manual_adjustment(
    db: Session,
    *,
    family_id: int,
    profile_id: int,
    points_delta: int,
    reason: str,
    created_by_profile_id: int | None = None,
    clock: Clock = utc_now,
) -> PointTransaction:
    if points_delta == 0:
        raise ValidationError("pointsDelta must be non-zero")
    return post_points(
        db,
        profile_id=profile_id,
        family_id=family_id,
        delta=points_delta,
        transaction_type=PointTransactionType.MANUAL_ADJUSTMENT,
        reason=reason,
        created_by_profile_id=created_by_profile_id,
        clock=clock,
    )


def list_point_transactions(
    db: Session,
    *,
    family_id: int,
    child_profile_id: int | None = None,
    transaction_type: PointTransactionType | None = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
    limit: int = 20,
    offset: int = 0,
    sort: TransactionSort = "created_at",
    order: SortOrder = "desc",
) -> tuple[list[PointTransaction], int]:
    conditions = [PointTransaction.family_id == family_id]
    if child_profile_id is not None:
        conditions.append(PointTransaction.profile_id == child_profile_id)
    if transaction_type is not None:
        conditions.append(PointTransaction.transaction_type == transaction_type)
    if created_from is not None:
        conditions.append(PointTransaction.created_at >= created_from)
    if created_to is not None:
        conditions.append(PointTransaction.created_at <= created_to)

    sort_column = PointTransaction.points_delta if sort == "points_delta" else PointTransaction.created_at
    ordering = (
        [sort_column.asc(), PointTransaction.id.asc()]
        if order == "asc"
        else [sort_column.desc(), PointTransaction.id.desc()]
    )

    total = db.scalar(select(func.count(PointTransaction.id)).where(*conditions)) or 0
    rows = db.scalars(
        select(PointTransaction).where(*conditions).order_by(*ordering).offset(offset).limit(limit),
    ).all()
    return list(rows), int(total)


def get_child_wallet(
    db: Session,
    *,
    family_id: int,
    child_profile_id: int,
    recent_limit: int = 5,
) -> WalletSnapshot:
    recent = db.scalars(
        select(PointTransaction)
        .where(
            PointTransaction.family_id == family_id,
            PointTransaction.profile_id == child_profile_id,
        )
        .order_by(PointTransaction.created_at.desc(), PointTransaction.id.desc())
        .limit(recent_limit),
    ).all()
    return WalletSnapshot(
        profile_id=child_profile_id,
        balance=get_balance(db, profile_id=child_profile_id, family_id=family_id),
        recent_transactions=list(recent),
    )
