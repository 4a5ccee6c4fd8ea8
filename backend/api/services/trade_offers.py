"""Dual-confirmation trade offers.

A trade offer is a ``trade_offer`` message. The proposer (buyer) locks escrow
when proposing; when the buyer and the product's seller have both confirmed,
the escrow is settled and a completed transaction is written, all inside one
database transaction. Work on one offer is serialised with keyed locks and
every state change is a compare-and-swap on ``trade_state``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings
from ..errors import AlreadyFinalizedError, ForbiddenError, InvalidTransitionError, NotFoundError, ValidationError
from ..models import EscrowTicket, Message, Product, Transaction, as_utc, utcnow
from ..schemas.trade import TradeOfferCreate, TradeOfferPayload
from ..states import OPEN_OFFER_STATES, TradeOfferState, TradeRole, close, confirm
from . import audit
from .escrow import EscrowManager, trade_escrow_amount
from .finalizer import TransactionFinalizer
from .locks import KeyedLockManager, offer_key, product_key, user_key
from .relay import ConversationRelay

logger = logging.getLogger(__name__)

TRADE_OFFER = "trade_offer"
_CAS_ATTEMPTS = 3


@dataclass
class ConfirmationResult:
    offer: Message
    is_fully_confirmed: bool
    changed: bool = False
    settled: bool = False
    transaction: Optional[Transaction] = None


class _OfferClosed(Exception):
    """Raised inside the confirm lock after an offer that can no longer settle was closed."""

    def __init__(self, state: TradeOfferState, reason: str) -> None:
        super().__init__(reason)
        self.state = state
        self.reason = reason


class TradeOfferEngine:
    def __init__(
        self,
        settings: Settings,
        *,
        locks: KeyedLockManager,
        escrow: EscrowManager,
        finalizer: TransactionFinalizer,
        relay: ConversationRelay,
    ) -> None:
        self._settings = settings
        self._locks = locks
        self._escrow = escrow
        self._finalizer = finalizer
        self._relay = relay

    # -- queries -----------------------------------------------------------

    async def _load_offer(self, session: AsyncSession, offer_id: int) -> Message:
        offer = await session.get(Message, offer_id, populate_existing=True)
        if offer is None or offer.kind != TRADE_OFFER:
            raise NotFoundError("Trade offer not found")
        return offer

    async def get_offer(self, session: AsyncSession, offer_id: int, user_id: int) -> Message:
        offer = await self._load_offer(session, offer_id)
        if user_id not in (offer.sender_id, offer.receiver_id):
            raise ForbiddenError("You are not a party to this trade offer")
        return offer

    async def list_offers(self, session: AsyncSession, user_id: int) -> list[Message]:
        stmt = (
            select(Message)
            .where(Message.kind == TRADE_OFFER, or_(Message.sender_id == user_id, Message.receiver_id == user_id))
            .order_by(Message.created_at.desc(), Message.id.desc())
        )
        return list((await session.execute(stmt)).scalars().all())

    # -- propose -----------------------------------------------------------

    async def propose_trade(self, session: AsyncSession, proposer_id: int, request: TradeOfferCreate) -> Message:
        product = await session.get(Product, request.product_id)
        if product is None:
            raise NotFoundError("Product not found")
        if product.seller_id == proposer_id:
            raise ForbiddenError("You cannot propose a trade for your own product")
        self._validate_offered_item(request)

        async with self._locks.hold(product_key(product.id), user_key(proposer_id)):
            try:
                await session.refresh(product)
                if not product.allow_trade:
                    raise ValidationError("This product does not accept trade offers")
                if product.status != "active":
                    raise ValidationError(f"Product is {product.status}")

                escrow_amount = trade_escrow_amount(request.offered_item_value, product.trade_value)
                ticket = await self._escrow.reserve(session, proposer_id, escrow_amount, purpose=TRADE_OFFER)
                payload = TradeOfferPayload(
                    product_id=product.id,
                    product_title=product.title,
                    product_image=(product.images or [None])[0],
                    seller_id=product.seller_id,
                    offer_item_name=request.offered_item_name.strip(),
                    offer_item_description=request.offered_item_description,
                    offer_item_value=request.offered_item_value,
                    offer_item_images=list(request.offered_item_images),
                    notes=request.notes,
                    escrow_amount=escrow_amount,
                )
                offer = Message(
                    kind=TRADE_OFFER,
                    sender_id=proposer_id,
                    receiver_id=product.seller_id,
                    content=f"Trade offer for {product.title}: {payload.offer_item_name} ({payload.offer_item_value:,} {self._settings.currency})",
                    product_id=product.id,
                    trade_details=payload.model_dump(mode="json", by_alias=True),
                    trade_state=TradeOfferState.PROPOSED.value,
                    escrow_ticket_id=ticket.id,
                    expires_at=utcnow() + timedelta(hours=self._settings.trade_offer_ttl_hours),
                )
                await self._relay.append(session, offer)
                ticket.reference = str(offer.id)
                audit.record(
                    session,
                    "trade_proposed",
                    source="trade",
                    trade_offer_id=offer.id,
                    product_id=product.id,
                    proposer_id=proposer_id,
                    escrow_amount=escrow_amount,
                )
                await session.commit()
            except Exception:
                await session.rollback()
                raise

        logger.info("Trade offer %s proposed on product %s by user %s", offer.id, product.id, proposer_id)
        await self._relay.announce(
            [offer.receiver_id],
            {"type": "trade_offer.proposed", "trade_offer_id": offer.id, "conversation_id": offer.conversation_id},
        )
        return offer

    @staticmethod
    def _validate_offered_item(request: TradeOfferCreate) -> None:
        if not request.offered_item_name or not request.offered_item_name.strip():
            raise ValidationError("Offered item name is required")
        if request.offered_item_value <= 0:
            raise ValidationError("Offered item value must be greater than zero")
        if not request.offered_item_images:
            raise ValidationError("At least one image of the offered item is required")

    # -- confirm / accept --------------------------------------------------

    async def confirm_trade(
        self, session: AsyncSession, offer_id: int, user_id: int, role: TradeRole | str
    ) -> ConfirmationResult:
        role = role if isinstance(role, TradeRole) else TradeRole.parse(role)
        offer = await self._load_offer(session, offer_id)
        payload = TradeOfferPayload.model_validate(offer.trade_details)
        buyer_id, seller_id = offer.sender_id, payload.seller_id
        if user_id not in (buyer_id, seller_id):
            raise ForbiddenError("You are not a party to this trade offer")
        if role is TradeRole.BUYER and user_id != buyer_id:
            raise ForbiddenError("Only the proposer can confirm as buyer")
        if role is TradeRole.SELLER and user_id != seller_id:
            raise ForbiddenError("Only the product owner can confirm as seller")

        keys = (offer_key(offer_id), product_key(payload.product_id), user_key(buyer_id), user_key(seller_id))
        async with self._locks.hold(*keys):
            try:
                closed = None
                result = await self._confirm_locked(session, offer_id, role, payload)
                await session.commit()
            except _OfferClosed as exc:
                await session.commit()
                closed = exc
            except AlreadyFinalizedError:
                # Another worker settled this offer first; report the settled state.
                await session.rollback()
                offer = await self._load_offer(session, offer_id)
                transaction = await self._finalizer.find_for_offer(session, offer_id)
                return ConfirmationResult(offer=offer, is_fully_confirmed=True, transaction=transaction)
            except Exception:
                await session.rollback()
                raise

        if closed is not None:
            await self._relay.announce(
                [buyer_id, seller_id], {"type": f"trade_offer.{closed.state.value}", "trade_offer_id": offer_id}
            )
            raise InvalidTransitionError(closed.reason)

        if result.settled:
            logger.info("Trade offer %s settled as transaction %s", offer_id, result.transaction.id)
            await self._relay.announce(
                [buyer_id, seller_id],
                {
                    "type": "trade_offer.completed",
                    "trade_offer_id": offer_id,
                    "transaction_id": result.transaction.id,
                },
            )
        elif result.changed:
            await self._relay.announce(
                [buyer_id, seller_id],
                {"type": "trade_offer.confirmed", "trade_offer_id": offer_id, "role": role.value},
                exclude=user_id,
            )
        return result

    async def _confirm_locked(
        self, session: AsyncSession, offer_id: int, role: TradeRole, payload: TradeOfferPayload
    ) -> ConfirmationResult:
        for _ in range(_CAS_ATTEMPTS):
            offer = await self._load_offer(session, offer_id)
            current = TradeOfferState(offer.trade_state)
            if current in OPEN_OFFER_STATES:
                await self._close_if_unavailable(session, offer, payload.product_id)
            target = confirm(current, role)
            if target is current:
                transaction = None
                if current is TradeOfferState.FULLY_CONFIRMED:
                    transaction = await self._finalizer.find_for_offer(session, offer_id)
                return ConfirmationResult(
                    offer=offer,
                    is_fully_confirmed=current is TradeOfferState.FULLY_CONFIRMED,
                    transaction=transaction,
                )
            if not await self._swap_state(session, offer_id, current, target):
                continue
            await session.refresh(offer)
            audit.record(
                session, "trade_confirmed", source="trade", trade_offer_id=offer_id, role=role.value, state=target.value
            )
            if target is not TradeOfferState.FULLY_CONFIRMED:
                return ConfirmationResult(offer=offer, is_fully_confirmed=False, changed=True)
            transaction = await self._settle(session, offer, payload)
            return ConfirmationResult(offer=offer, is_fully_confirmed=True, changed=True, settled=True, transaction=transaction)
        raise InvalidTransitionError("Trade offer is being updated concurrently, please retry")

    async def _close_if_unavailable(self, session: AsyncSession, offer: Message, product_id: int) -> None:
        if offer.expires_at is not None and as_utc(offer.expires_at) <= utcnow():
            state, reason = TradeOfferState.EXPIRED, "Trade offer has expired"
        else:
            product = await session.get(Product, product_id, populate_existing=True)
            if product is not None and product.status == "active":
                return
            state, reason = TradeOfferState.CANCELLED, "Product is no longer available"
        await self._close_offer(session, offer, state)
        audit.record(session, f"trade_{state.value}", source="trade", trade_offer_id=offer.id, reason=reason)
        raise _OfferClosed(state, reason)

    async def _settle(self, session: AsyncSession, offer: Message, payload: TradeOfferPayload) -> Transaction:
        await self._finalizer.ensure_not_finalized(session, offer.id)
        ticket = await session.get(EscrowTicket, offer.escrow_ticket_id, populate_existing=True)
        if ticket is None:
            raise NotFoundError("Escrow ticket for trade offer not found")
        fee_rate = self._settings.trade_fee_rate
        settlement = await self._escrow.settle(session, ticket, seller_id=payload.seller_id, fee_rate=fee_rate)
        transaction = await self._finalizer.finalize_trade(
            session, offer, payload, settlement, ticket, fee_rate=fee_rate
        )
        product = await session.get(Product, payload.product_id, populate_existing=True)
        if product is not None:
            product.status = "sold"
        await self._close_competing(session, payload.product_id, exclude=offer.id)
        return transaction

    async def accept_trade(self, session: AsyncSession, offer_id: int, user_id: int) -> ConfirmationResult:
        offer = await self._load_offer(session, offer_id)
        if offer.sender_id == user_id:
            raise ForbiddenError("You cannot accept your own trade offer")
        payload = TradeOfferPayload.model_validate(offer.trade_details)
        if user_id != payload.seller_id:
            raise ForbiddenError("Only the product owner can accept this trade offer")
        return await self.confirm_trade(session, offer_id, user_id, TradeRole.SELLER)

    # -- cancel / expire ---------------------------------------------------

    async def cancel_trade(self, session: AsyncSession, offer_id: int, user_id: int) -> Message:
        offer = await self.get_offer(session, offer_id, user_id)
        payload = TradeOfferPayload.model_validate(offer.trade_details)
        keys = (offer_key(offer_id), product_key(payload.product_id), user_key(offer.sender_id))
        async with self._locks.hold(*keys):
            try:
                offer = await self._load_offer(session, offer_id)
                if offer.trade_state == TradeOfferState.CANCELLED.value:
                    return offer
                await self._close_offer(session, offer, TradeOfferState.CANCELLED)
                audit.record(session, "trade_cancelled", source="trade", trade_offer_id=offer_id, user_id=user_id)
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        await self._relay.announce(
            [offer.sender_id, offer.receiver_id],
            {"type": "trade_offer.cancelled", "trade_offer_id": offer_id},
            exclude=user_id,
        )
        return offer

    async def expire_stale_offers(self, session: AsyncSession, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        stmt = select(Message.id, Message.product_id, Message.sender_id).where(
            Message.kind == TRADE_OFFER,
            Message.trade_state.in_([state.value for state in OPEN_OFFER_STATES]),
            Message.expires_at < now,
        )
        rows = list((await session.execute(stmt)).all())
        expired = 0
        for offer_id, product_id, sender_id in rows:
            async with self._locks.hold(offer_key(offer_id), product_key(product_id), user_key(sender_id)):
                try:
                    offer = await self._load_offer(session, offer_id)
                    if TradeOfferState(offer.trade_state) not in OPEN_OFFER_STATES:
                        continue
                    await self._close_offer(session, offer, TradeOfferState.EXPIRED)
                    audit.record(session, "trade_expired", source="trade", trade_offer_id=offer_id)
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise
            expired += 1
            await self._relay.announce(
                [offer.sender_id, offer.receiver_id], {"type": "trade_offer.expired", "trade_offer_id": offer_id}
            )
        if expired:
            logger.info("Expired %d stale trade offers", expired)
        return expired

    async def _close_competing(self, session: AsyncSession, product_id: int, *, exclude: int) -> None:
        stmt = select(Message).where(
            Message.kind == TRADE_OFFER,
            Message.product_id == product_id,
            Message.id != exclude,
            Message.trade_state.in_([state.value for state in OPEN_OFFER_STATES]),
        )
        for other in (await session.execute(stmt)).scalars().all():
            await self._close_offer(session, other, TradeOfferState.CANCELLED)
            audit.record(session, "trade_cancelled", source="trade", trade_offer_id=other.id, reason="product_sold")

    async def _close_offer(self, session: AsyncSession, offer: Message, target: TradeOfferState) -> None:
        current = TradeOfferState(offer.trade_state)
        close(current, target)
        if not await self._swap_state(session, offer.id, current, target):
            raise InvalidTransitionError("Trade offer changed while closing, please retry")
        await session.refresh(offer)
        if offer.escrow_ticket_id is not None:
            ticket = await session.get(EscrowTicket, offer.escrow_ticket_id, populate_existing=True)
            if ticket is not None:
                await self._escrow.release(session, ticket)

    async def _swap_state(
        self, session: AsyncSession, offer_id: int, expected: TradeOfferState, target: TradeOfferState
    ) -> bool:
        stmt = (
            update(Message)
            .where(Message.id == offer_id, Message.trade_state == expected.value)
            .values(trade_state=target.value)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1
