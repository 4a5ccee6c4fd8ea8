from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings
from ..errors import ForbiddenError, NotFoundError, ValidationError
from ..models import Product, Transaction, User
from ..states import TransactionStatus
from .escrow import EscrowManager
from .finalizer import TransactionFinalizer
from .locks import KeyedLockManager, product_key, user_key
from .relay import ConversationRelay

logger = logging.getLogger(__name__)


class PurchaseService:
    """Buy-now purchases: escrow on checkout, settlement when the buyer confirms receipt."""

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

    async def create_purchase(self, session: AsyncSession, buyer_id: int, product_id: int, shipping: int = 0) -> Transaction:
        product = await session.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product not found")
        if product.seller_id == buyer_id:
            raise ForbiddenError("You cannot buy your own product")
        if shipping < 0:
            raise ValidationError("Shipping cannot be negative")

        async with self._locks.hold(product_key(product_id), user_key(buyer_id)):
            try:
                await session.refresh(product)
                if not product.allow_buy:
                    raise ValidationError("This product is not for sale")
                if not product.price or product.price <= 0:
                    raise ValidationError("This product has no price")
                if product.status != "active":
                    raise ValidationError(f"Product is {product.status}")
                ticket = await self._escrow.reserve(
                    session, buyer_id, product.price + shipping, purpose="purchase"
                )
                transaction = await self._finalizer.finalize_purchase(
                    session, product, buyer_id, ticket, shipping=shipping, fee_rate=self._settings.purchase_fee_rate
                )
                ticket.reference = str(transaction.id)
                product.status = "reserved"
                await session.commit()
            except Exception:
                await session.rollback()
                raise

        logger.info("Purchase %s of product %s by user %s", transaction.id, product_id, buyer_id)
        await self._relay.announce(
            [product.seller_id], {"type": "transaction.created", "transaction_id": transaction.id}
        )
        return transaction

    async def list_transactions(self, session: AsyncSession, user: User) -> list[Transaction]:
        stmt = select(Transaction).order_by(Transaction.created_at.desc())
        if not user.is_admin:
            stmt = stmt.where(or_(Transaction.buyer_id == user.id, Transaction.seller_id == user.id))
        return list((await session.execute(stmt)).scalars().all())

    async def get_transaction(self, session: AsyncSession, transaction_id: uuid.UUID, user: User) -> Transaction:
        return await self._finalizer.get_for_party(session, transaction_id, user)

    async def update_status(
        self,
        session: AsyncSession,
        transaction_id: uuid.UUID,
        new_status: TransactionStatus,
        *,
        actor: User,
        note: Optional[str] = None,
    ) -> Transaction:
        transaction = await self._finalizer.get_for_party(session, transaction_id, actor)
        keys = (product_key(transaction.product_id), user_key(transaction.buyer_id), user_key(transaction.seller_id))
        async with self._locks.hold(*keys):
            try:
                transaction = await self._finalizer.transition(
                    session, transaction_id, new_status, actor=actor, note=note
                )
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        await self._relay.announce(
            [transaction.buyer_id, transaction.seller_id],
            {"type": "transaction.updated", "transaction_id": transaction.id, "status": transaction.status},
            exclude=actor.id,
        )
        return transaction

    async def release_disputed(self, session: AsyncSession, transaction_id: uuid.UUID, *, actor: User) -> Transaction:
        transaction = await self._finalizer.get_for_party(session, transaction_id, actor)
        async with self._locks.hold(product_key(transaction.product_id), user_key(transaction.buyer_id)):
            try:
                transaction = await self._finalizer.release_disputed(session, transaction_id, actor=actor)
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        await self._relay.announce(
            [transaction.buyer_id], {"type": "transaction.escrow_released", "transaction_id": transaction.id}
        )
        return transaction
