from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..dependencies import get_current_user, get_db_session, get_trade_engine
from ..models import User
from ..schemas.messages import trade_offer_out
from ..schemas.trade import TradeConfirmRequest, TradeConfirmResponse
from ..schemas.transactions import TransactionOut
from ..services.trade_offers import TradeOfferEngine

router = APIRouter(prefix="/api/trade", tags=["trade"])


@router.post("/confirm", response_model=TradeConfirmResponse, status_code=status.HTTP_200_OK)
async def confirm_trade(
    payload: TradeConfirmRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    engine: TradeOfferEngine = Depends(get_trade_engine),
) -> TradeConfirmResponse:
    result = await engine.confirm_trade(session, payload.message_id, user.id, payload.role)
    return TradeConfirmResponse(
        is_fully_confirmed=result.is_fully_confirmed,
        settled=result.settled,
        message=trade_offer_out(result.offer),
        transaction=TransactionOut.model_validate(result.transaction) if result.transaction else None,
    )
