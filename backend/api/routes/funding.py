from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings
from ..dependencies import get_current_user, get_db_session, get_funding_service, get_settings_dependency
from ..models import User
from ..schemas.common import AccountOut, EscrowTicketOut
from ..schemas.funding import DepositOut, FundingRequest, WithdrawalOut
from ..services import ledger
from ..services.funding import FundingService

router = APIRouter(prefix="/api", tags=["funding"])


@router.get("/account", response_model=AccountOut)
async def get_account(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    funding: FundingService = Depends(get_funding_service),
    settings: Settings = Depends(get_settings_dependency),
) -> AccountOut:
    balances = await ledger.get_balances(session, user.id)
    tickets = await funding.held_tickets(session, user.id)
    return AccountOut(
        user_id=user.id,
        username=user.username,
        balance=balances.balance,
        escrow_balance=balances.escrow_balance,
        currency=settings.currency,
        held_tickets=[EscrowTicketOut.model_validate(ticket) for ticket in tickets],
    )


@router.post("/deposits", response_model=DepositOut, status_code=status.HTTP_201_CREATED)
async def request_deposit(
    payload: FundingRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    funding: FundingService = Depends(get_funding_service),
) -> DepositOut:
    deposit = await funding.request_deposit(session, user.id, payload.amount, payload.method)
    return DepositOut.model_validate(deposit)


@router.post("/withdrawals", response_model=WithdrawalOut, status_code=status.HTTP_201_CREATED)
async def request_withdrawal(
    payload: FundingRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    funding: FundingService = Depends(get_funding_service),
) -> WithdrawalOut:
    withdrawal = await funding.withdraw(session, user.id, payload.amount, payload.method)
    return WithdrawalOut.model_validate(withdrawal)
