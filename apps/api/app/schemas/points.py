from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class PointTransactionOut(BaseModel):
    id: int
    profile_id: int
    transaction_type: str
    points_delta: int
    balance_after: int
    reason: str | None
    reference_id: int | None
    reference_table: str | None
    metadata: dict[str, Any]
    created_at: datetime


class PointTransactionListMeta(BaseModel):
    page: int
    page_size: int
    total: int


class PointTransactionListResponse(BaseModel):
    data: list[PointTransactionOut]
    meta: PointTransactionListMeta


class ManualPointTransactionRequest(BaseModel):
    profile_id: int
    points_delta: int
    reason: str = Field(min_length=1, max_length=500)


class ManualPointTransactionResponse(BaseModel):
    id: int
    balance_after: int
    created_at: datetime


class WalletTransactionOut(BaseModel):
    id: int
    transaction_type: str
    points_delta: int
    created_at: datetime


class ChildWalletResponse(BaseModel):
    child_id: int
    balance: int
    recent_transactions: list[WalletTransactionOut]
