from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import Field

from ..states import TransactionStatus
from .common import CamelModel


class TimelineEvent(CamelModel):
    status: str
    timestamp: datetime
    description: str


class TransactionOut(CamelModel):
    id: UUID
    product_id: int
    buyer_id: int
    seller_id: int
    trade_offer_id: Optional[int] = None
    amount: int
    platform_fee: int
    fee_rate: Decimal
    shipping: int
    status: str
    type: str
    trade_details: dict[str, Any] = Field(default_factory=dict)
    timeline: list[TimelineEvent] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class PurchaseCreate(CamelModel):
    product_id: int
    shipping: int = 0


class TransactionUpdate(CamelModel):
    status: TransactionStatus
    note: Optional[str] = None
