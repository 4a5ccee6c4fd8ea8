from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..dependencies import get_current_user, get_db_session, get_trade_engine
from ..models import User
from ..schemas.common import ErrorOut
from ..schemas.messages import trade_offer_out
from ..schemas.trade import TradeAcceptResponse, TradeOfferCreate, TradeOfferCreated, TradeOfferMessageOut
from ..schemas.transactions import TransactionOut
from ..services.trade_offers import TradeOfferEngine

router = APIRouter(
    prefix="/api",
    tags=["trade-offers"],
    responses={400: {"model": ErrorOut}, 403: {"model": ErrorOut}, 404: {"model": ErrorOut}, 409: {"model": ErrorOut}},
)


@router.post("/direct-trade-offers", response_model=TradeOfferCreated, status_code=status.HTTP_201_CREATED)
async def propose_trade(
    payload: TradeOfferCreate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    engine: TradeOfferEngine = Depends(get_trade_engine),
) -> TradeOfferCreated:
    offer = await engine.propose_trade(session, user.id, payload)
    message = trade_offer_out(offer)
    return TradeOfferCreated(
        trade_offer_id=offer.id,
        conversation_id=offer.conversation_id,
        escrow_amount=message.trade_offer.escrow_amount,
        message=message,
    )


@router.get("/trade-offers", response_model=list[TradeOfferMessageOut])
async def list_trade_offers(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    engine: TradeOfferEngine = Depends(get_trade_engine),
) -> list[TradeOfferMessageOut]:
    offers = await engine.list_offers(session, user.id)
    return [trade_offer_out(offer) for offer in offers]


@router.get("/trade-offers/{offer_id}", response_model=TradeOfferMessageOut)
async def get_trade_offer(
    offer_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    engine: TradeOfferEngine = Depends(get_trade_engine),
) -> TradeOfferMessageOut:
    return trade_offer_out(await engine.get_offer(session, offer_id, user.id))


@router.post("/trade-offers/{offer_id}/accept", response_model=TradeAcceptResponse)
async def accept_trade_offer(
    offer_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    engine: TradeOfferEngine = Depends(get_trade_engine),
) -> TradeAcceptResponse:
    result = await engine.accept_trade(session, offer_id, user.id)
    if result.is_fully_confirmed:
        text = "Trade completed and escrow released to the seller"
    else:
        text = "Trade accepted, waiting for the buyer to confirm"
    return TradeAcceptResponse(
        message=text,
        is_fully_confirmed=result.is_fully_confirmed,
        trade_offer=trade_offer_out(result.offer),
        transaction=TransactionOut.model_validate(result.transaction) if result.transaction else None,
    )


@router.post("/trade-offers/{offer_id}/cancel", response_model=TradeOfferMessageOut)
async def cancel_trade_offer(
    offer_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    engine: TradeOfferEngine = Depends(get_trade_engine),
) -> TradeOfferMessageOut:
    return trade_offer_out(await engine.cancel_trade(session, offer_id, user.id))
