from __future__ import annotations

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import AlreadyFinalizedError, ForbiddenError, InvalidTransitionError, NotFoundError
from ..models import EscrowTicket, Message, Product, Transaction, User, utcnow
from ..schemas.trade import TradeOfferPayload
from ..states import TransactionStatus, TransactionType, check_transaction_transition
from . import audit
from .escrow import EscrowManager, Settlement, compute_fee

logger = logging.getLogger(__name__)


def timeline_event(timeline: list[dict], status: str, description: str, *, now: Optional[datetime] = None) -> dict:
    """Build the next timeline entry, never earlier than the last one."""
    timestamp = now or utcnow()
    if timeline:
        previous = datetime.fromisoformat(timeline[-1]["timestamp"])
        if previous > timestamp:
            timestamp = previous
    return {"status": status, "timestamp": timestamp.isoformat(), "description": description}


class TransactionFinalizer:
    """Writes settled trades and purchases as transactions and moves them through their lifecycle."""

    def __init__(self, escrow: EscrowManager) -> None:
        self._escrow = escrow

    async def find_for_offer(self, session: AsyncSession, offer_id: int) -> Optional[Transaction]:
        stmt = select(Transaction).where(Transaction.trade_offer_id == offer_id)
        return (await session.execute(stmt)).scalars().first()

    async def ensure_not_finalized(self, session: AsyncSession, offer_id: int) -> None:
        existing = await self.find_for_offer(session, offer_id)
        if existing is not None:
            raise AlreadyFinalizedError(existing)

    async def finalize_trade(
        self,
        session: AsyncSession,
        offer: Message,
        payload: TradeOfferPayload,
        settlement: Settlement,
        ticket: EscrowTicket,
        *,
        fee_rate: Decimal,
    ) -> Transaction:
        # Dual confirmation already is mutual agreement, so trades start completed.
        await self.ensure_not_finalized(session, offer.id)
        timeline: list[dict] = []
        timeline.append(
            timeline_event(
                timeline,
                TransactionStatus.COMPLETED.value,
                f"Trade confirmed by both parties. Fee: {settlement.fee}, released to seller: {settlement.net_to_seller}",
            )
        )
        transaction = Transaction(
            product_id=payload.product_id,
            buyer_id=offer.sender_id,
            seller_id=payload.seller_id,
            trade_offer_id=offer.id,
            escrow_ticket_id=ticket.id,
            amount=settlement.amount,
            platform_fee=settlement.fee,
            fee_rate=Decimal(str(fee_rate)),
            shipping=0,
            status=TransactionStatus.COMPLETED.value,
            type=TransactionType.TRADE.value,
            trade_details={
                "tradeOfferId": offer.id,
                "productTitle": payload.product_title,
                "offerItemName": payload.offer_item_name,
                "offerItemDescription": payload.offer_item_description,
                "offerItemValue": payload.offer_item_value,
                "escrowAmount": settlement.amount,
                "escrowReleased": settlement.net_to_seller,
            },
            timeline=timeline,
        )
        session.add(transaction)
        await session.flush()
        audit.record(
            session,
            "trade_finalized",
            source="finalizer",
            transaction_id=transaction.id,
            trade_offer_id=offer.id,
            amount=settlement.amount,
            fee=settlement.fee,
        )
        return transaction

    async def finalize_purchase(
        self,
        session: AsyncSession,
        product: Product,
        buyer_id: int,
        ticket: EscrowTicket,
        *,
        shipping: int,
        fee_rate: Decimal,
    ) -> Transaction:
        amount = ticket.amount
        timeline: list[dict] = []
        timeline.append(timeline_event(timeline, TransactionStatus.PENDING.value, "Payment held in escrow"))
        transaction = Transaction(
            product_id=product.id,
            buyer_id=buyer_id,
            seller_id=product.seller_id,
            escrow_ticket_id=ticket.id,
            amount=amount,
            platform_fee=compute_fee(amount, fee_rate),
            fee_rate=Decimal(str(fee_rate)),
            shipping=shipping,
            status=TransactionStatus.PENDING.value,
            type=TransactionType.PURCHASE.value,
            trade_details={"productTitle": product.title, "price": product.price},
            timeline=timeline,
        )
        session.add(transaction)
        await session.flush()
        audit.record(
            session, "purchase_created", source="finalizer", transaction_id=transaction.id, amount=amount, buyer_id=buyer_id
        )
        return transaction

    async def get_for_party(self, session: AsyncSession, transaction_id: uuid.UUID, actor: User) -> Transaction:
        transaction = await session.get(Transaction, transaction_id, populate_existing=True)
        if transaction is None:
            raise NotFoundError("Transaction not found")
        if actor.id not in (transaction.buyer_id, transaction.seller_id) and not actor.is_admin:
            raise ForbiddenError("You are not a party to this transaction")
        return transaction

    async def transition(
        self,
        session: AsyncSession,
        transaction_id: uuid.UUID,
        new_status: TransactionStatus,
        *,
        actor: User,
        note: Optional[str] = None,
    ) -> Transaction:
        """Move a pending transaction to a terminal status, applying escrow side effects.

        The caller commits; any error leaves escrow exactly as it was.
        """
        transaction = await self.get_for_party(session, transaction_id, actor)
        current = TransactionStatus(transaction.status)
        check_transaction_transition(current, new_status)
        if (
            new_status is TransactionStatus.COMPLETED
            and transaction.type == TransactionType.PURCHASE.value
            and actor.id != transaction.buyer_id
            and not actor.is_admin
        ):
            raise ForbiddenError("Only the buyer can confirm receipt")

        if transaction.type == TransactionType.PURCHASE.value:
            await self._apply_purchase_side_effects(session, transaction, new_status)

        description = note or f"Transaction {new_status.value}"
        transaction.timeline.append(timeline_event(transaction.timeline, new_status.value, description))
        transaction.status = new_status.value
        transaction.updated_at = utcnow()
        audit.record(
            session,
            "transaction_transition",
            source="finalizer",
            transaction_id=transaction.id,
            from_status=current.value,
            to_status=new_status.value,
            actor_id=actor.id,
        )
        return transaction

    async def release_disputed(self, session: AsyncSession, transaction_id: uuid.UUID, *, actor: User) -> Transaction:
        if not actor.is_admin:
            raise ForbiddenError("Only administrators can release disputed escrow")
        transaction = await self.get_for_party(session, transaction_id, actor)
        if transaction.status != TransactionStatus.DISPUTED.value:
            raise InvalidTransitionError("Only disputed transactions can have escrow released")
        ticket = await self._ticket(session, transaction)
        await self._escrow.release(session, ticket)
        product = await session.get(Product, transaction.product_id)
        if product is not None and product.status == "reserved":
            product.status = "active"
        transaction.timeline.append(
            timeline_event(transaction.timeline, TransactionStatus.DISPUTED.value, "Escrow released to buyer by administrator")
        )
        transaction.updated_at = utcnow()
        audit.record(session, "dispute_escrow_released", source="finalizer", transaction_id=transaction.id, actor_id=actor.id)
        return transaction

    async def _apply_purchase_side_effects(
        self, session: AsyncSession, transaction: Transaction, new_status: TransactionStatus
    ) -> None:
        if new_status is TransactionStatus.DISPUTED:
            return
        ticket = await self._ticket(session, transaction)
        product = await session.get(Product, transaction.product_id)
        if new_status is TransactionStatus.COMPLETED:
            settlement = await self._escrow.settle(
                session, ticket, seller_id=transaction.seller_id, fee_rate=transaction.fee_rate
            )
            transaction.platform_fee = settlement.fee
            if product is not None:
                product.status = "sold"
        elif new_status is TransactionStatus.CANCELLED:
            await self._escrow.release(session, ticket)
            if product is not None and product.status == "reserved":
                product.status = "active"

    async def _ticket(self, session: AsyncSession, transaction: Transaction) -> EscrowTicket:
        ticket = None
        if transaction.escrow_ticket_id is not None:
            ticket = await session.get(EscrowTicket, transaction.escrow_ticket_id, populate_existing=True)
        if ticket is None:
            raise NotFoundError("Escrow ticket for transaction not found")
        return ticket
