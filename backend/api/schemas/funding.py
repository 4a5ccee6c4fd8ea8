from __future__ import annotations

from datetime import datetime

from .common import CamelModel


class FundingRequest(CamelModel):
    amount: int
    method: str


class DepositOut(CamelModel):
    id: int
    user_id: int
    amount: int
    method: str
    status: str
    created_at: datetime


class WithdrawalOut(DepositOut):
    pass
