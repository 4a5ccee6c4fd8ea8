from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import Field

from ..models import Message
from ..states import TradeOfferState, buyer_confirmed, seller_confirmed
from .common import CamelModel
from .trade import MessageOut, PlainMessageOut, TradeOfferMessageOut, TradeOfferPayload


class MessageCreate(CamelModel):
    receiver_id: int
    content: str


class ConversationOut(CamelModel):
    id: int
    other_user_id: int
    last_message_id: Optional[int] = None
    unread_count: int = 0
    updated_at: datetime


class ConversationDetail(CamelModel):
    conversation: ConversationOut
    messages: list[MessageOut] = Field(default_factory=list)


def trade_offer_out(message: Message) -> TradeOfferMessageOut:
    state = TradeOfferState(message.trade_state)
    return TradeOfferMessageOut(
        id=message.id,
        conversation_id=message.conversation_id,
        sender_id=message.sender_id,
        receiver_id=message.receiver_id,
        content=message.content,
        is_read=message.is_read,
        created_at=message.created_at,
        product_id=message.product_id,
        state=state,
        trade_confirmed_buyer=buyer_confirmed(state),
        trade_confirmed_seller=seller_confirmed(state),
        trade_offer=TradeOfferPayload.model_validate(message.trade_details),
        expires_at=message.expires_at,
    )


def message_out(message: Message) -> PlainMessageOut | TradeOfferMessageOut:
    if message.is_trade:
        return trade_offer_out(message)
    return PlainMessageOut.model_validate(message)
