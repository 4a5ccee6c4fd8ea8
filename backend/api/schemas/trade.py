from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import Field

from ..states import TradeOfferState
from .common import CamelModel
from .transactions import TransactionOut


class TradeOfferPayload(CamelModel):
    """Typed body of a trade-offer message, stored as JSON on the message row."""

    product_id: int
    product_title: str
    product_image: Optional[str] = None
    seller_id: int
    offer_item_name: str
    offer_item_description: str = ""
    offer_item_value: int
    offer_item_images: list[str] = Field(default_factory=list)
    notes: Optional[str] = None
    escrow_amount: int


class TradeOfferCreate(CamelModel):
    product_id: int
    offered_item_name: str
    offered_item_description: str = ""
    offered_item_value: int
    offered_item_images: list[str] = Field(default_factory=list)
    notes: Optional[str] = None


class TradeOfferCreated(CamelModel):
    trade_offer_id: int
    conversation_id: int
    escrow_amount: int
    message: "TradeOfferMessageOut"


class TradeConfirmRequest(CamelModel):
    message_id: int
    role: str


class MessageBase(CamelModel):
    id: int
    conversation_id: Optional[int] = None
    sender_id: int
    receiver_id: int
    content: str
    is_read: bool
    created_at: datetime


class PlainMessageOut(MessageBase):
    kind: Literal["plain"] = "plain"


class TradeOfferMessageOut(MessageBase):
    kind: Literal["trade_offer"] = "trade_offer"
    product_id: int
    state: TradeOfferState
    trade_confirmed_buyer: bool
    trade_confirmed_seller: bool
    trade_offer: TradeOfferPayload
    expires_at: Optional[datetime] = None


MessageOut = Annotated[Union[PlainMessageOut, TradeOfferMessageOut], Field(discriminator="kind")]


class TradeConfirmResponse(CamelModel):
    is_fully_confirmed: bool
    settled: bool
    message: TradeOfferMessageOut
    transaction: Optional[TransactionOut] = None


class TradeAcceptResponse(CamelModel):
    message: str
    is_fully_confirmed: bool
    trade_offer: TradeOfferMessageOut
    transaction: Optional[TransactionOut] = None


class ExpireOffersResponse(CamelModel):
    expired: int


TradeOfferCreated.model_rebuild()
