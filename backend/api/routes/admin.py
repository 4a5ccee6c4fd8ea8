from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..dependencies import (
    get_admin_user,
    get_db_session,
    get_funding_service,
    get_purchase_service,
    get_trade_engine,
)
from ..models import LogEntry, User
from ..schemas.common import ErrorOut, LogOut
from ..schemas.funding import DepositOut
from ..schemas.trade import ExpireOffersResponse
from ..schemas.transactions import TransactionOut
from ..services.funding import FundingService
from ..services.purchases import PurchaseService
from ..services.trade_offers import TradeOfferEngine

router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    responses={403: {"model": ErrorOut}, 404: {"model": ErrorOut}, 409: {"model": ErrorOut}},
)


@router.post("/deposits/{deposit_id}/approve", response_model=DepositOut)
async def approve_deposit(
    deposit_id: int,
    admin: User = Depends(get_admin_user),
    session: AsyncSession = Depends(get_db_session),
    funding: FundingService = Depends(get_funding_service),
) -> DepositOut:
    deposit = await funding.review_deposit(session, deposit_id, approve=True, admin=admin)
    return DepositOut.model_validate(deposit)


@router.post("/deposits/{deposit_id}/reject", response_model=DepositOut)
async def reject_deposit(
    deposit_id: int,
    admin: User = Depends(get_admin_user),
    session: AsyncSession = Depends(get_db_session),
    funding: FundingService = Depends(get_funding_service),
) -> DepositOut:
    deposit = await funding.review_deposit(session, deposit_id, approve=False, admin=admin)
    return DepositOut.model_validate(deposit)


@router.post("/trade-offers/expire", response_model=ExpireOffersResponse)
async def expire_trade_offers(
    _: User = Depends(get_admin_user),
    session: AsyncSession = Depends(get_db_session),
    engine: TradeOfferEngine = Depends(get_trade_engine),
) -> ExpireOffersResponse:
    return ExpireOffersResponse(expired=await engine.expire_stale_offers(session))


@router.post("/transactions/{transaction_id}/release-escrow", response_model=TransactionOut)
async def release_disputed_escrow(
    transaction_id: uuid.UUID,
    admin: User = Depends(get_admin_user),
    session: AsyncSession = Depends(get_db_session),
    purchases: PurchaseService = Depends(get_purchase_service),
) -> TransactionOut:
    transaction = await purchases.release_disputed(session, transaction_id, actor=admin)
    return TransactionOut.model_validate(transaction)


@router.get("/logs", response_model=list[LogOut])
async def list_audit_logs(
    source: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=500),
    _: User = Depends(get_admin_user),
    session: AsyncSession = Depends(get_db_session),
) -> list[LogOut]:
    stmt = select(LogEntry).order_by(LogEntry.created_at.desc()).limit(limit)
    if source:
        stmt = stmt.where(LogEntry.source == source)
    result = await session.execute(stmt)
    return [LogOut.model_validate(entry) for entry in result.scalars().all()]
