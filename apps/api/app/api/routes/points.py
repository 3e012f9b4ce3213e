from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal

from fastapi import APIRouter, Query, status

from app.api.deps import CurrentAuth, DBSession, ParentAuth, RequestClock, ensure_child_access, ensure_profile_in_family
from app.core.config import settings
from app.core.exceptions import ForbiddenError
from app.models import PointTransaction, PointTransactionType
from app.schemas.points import (
    ChildWalletResponse,
    ManualPointTransactionRequest,
    ManualPointTransactionResponse,
    PointTransactionListMeta,
    PointTransactionListResponse,
    PointTransactionOut,
    WalletTransactionOut,
)
from app.services import points

router = APIRouter(tags=["points"])


def _transaction_out(tx: PointTransaction) -> PointTransactionOut:
    return PointTransactionOut(
        id=tx.id,
        profile_id=tx.profile_id,
        transaction_type=tx.transaction_type.value,
        points_delta=tx.points_delta,
        balance_after=tx.balance_after,
        reason=tx.reason,
        reference_id=tx.reference_id,
        reference_table=tx.reference_table,
        metadata=tx.metadata_json,
        created_at=tx.created_at,
    )


def _ensure_family(auth: CurrentAuth, family_id: int) -> None:
    if auth.family_id != family_id:
        raise ForbiddenError("Profile not associated with family")


@router.get("/api/v1/families/{family_id}/points/transactions", response_model=PointTransactionListResponse)
def list_point_transactions(
    family_id: int,
    db: DBSession,
    auth: CurrentAuth,
    child_profile_id: Annotated[int | None, Query(alias="childProfileId")] = None,
    transaction_type: Annotated[PointTransactionType | None, Query(alias="transactionType")] = None,
    created_from: Annotated[datetime | None, Query(alias="from")] = None,
    created_to: Annotated[datetime | None, Query(alias="to")] = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
    sort: Literal["created_at", "points_delta"] = "created_at",
    order: Literal["asc", "desc"] = "desc",
) -> PointTransactionListResponse:
    _ensure_family(auth, family_id)
    if not auth.is_parent:
        # Children only ever see their own ledger.
        child_profile_id = auth.profile_id

    rows, total = points.list_point_transactions(
        db,
        family_id=family_id,
        child_profile_id=child_profile_id,
        transaction_type=transaction_type,
        created_from=created_from,
        created_to=created_to,
        limit=limit,
        offset=offset,
        sort=sort,
        order=order,
    )
    return PointTransactionListResponse(
        data=[_transaction_out(row) for row in rows],
        meta=PointTransactionListMeta(page=offset // limit + 1, page_size=limit, total=total),
    )


@router.post(
    "/api/v1/families/{family_id}/points/transactions",
    response_model=ManualPointTransactionResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_manual_point_transaction(
    family_id: int,
    payload: ManualPointTransactionRequest,
    db: DBSession,
    auth: ParentAuth,
    clock: RequestClock,
) -> ManualPointTransactionResponse:
    _ensure_family(auth, family_id)
    ensure_profile_in_family(db, profile_id=payload.profile_id, family_id=family_id)
    tx = points.create_manual_adjustment(
        db,
        family_id=family_id,
        profile_id=payload.profile_id,
        points_delta=payload.points_delta,
        reason=payload.reason,
        created_by_profile_id=auth.profile_id,
        clock=clock,
    )
    db.commit()
    return ManualPointTransactionResponse(id=tx.id, balance_after=tx.balance_after, created_at=tx.created_at)


@router.get("/api/v1/children/{child_id}/wallet", response_model=ChildWalletResponse)
def get_child_wallet(
    child_id: int,
    db: DBSession,
    auth: CurrentAuth,
) -> ChildWalletResponse:
    ensure_child_access(db, auth, child_id)
    wallet = points.get_child_wallet(
        db,
        family_id=auth.family_id,
        child_profile_id=child_id,
        recent_limit=settings.session_recent_transactions_limit,
    )
    return ChildWalletResponse(
        child_id=child_id,
        balance=wallet.balance,
        recent_transactions=[
            WalletTransactionOut(
                id=tx.id,
                transaction_type=tx.transaction_type.value,
                points_delta=tx.points_delta,
                created_at=tx.created_at,
            )
            for tx in wallet.recent_transactions
        ],
    )
