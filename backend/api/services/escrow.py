from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import InvalidTransitionError, ValidationError
from ..models import EscrowTicket, PlatformFee, utcnow
from . import audit, ledger

logger = logging.getLogger(__name__)

HELD = "held"
RELEASED = "released"
SETTLED = "settled"


@dataclass(frozen=True)
class Settlement:
    amount: int
    fee: int
    net_to_seller: int


def trade_escrow_amount(offer_value: int, trade_value: Optional[int]) -> int:
    """Escrow for a trade is the larger of the two valuations."""
    return max(offer_value, trade_value or 0)


def compute_fee(amount: int, fee_rate: Union[Decimal, str, int]) -> int:
    rate = Decimal(str(fee_rate))
    if rate < 0 or rate > 1:
        raise ValidationError(f"Fee rate must be between 0 and 1, got {rate}")
    fee = int((Decimal(amount) * rate).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    return min(max(fee, 0), amount)


class EscrowManager:
    """Locks funds against pending trades and purchases and settles them."""

    async def reserve(
        self,
        session: AsyncSession,
        user_id: int,
        amount: int,
        *,
        purpose: str,
        reference: Optional[str] = None,
    ) -> EscrowTicket:
        await ledger.hold(session, user_id, amount)
        ticket = EscrowTicket(user_id=user_id, amount=amount, status=HELD, purpose=purpose, reference=reference)
        session.add(ticket)
        await session.flush()
        audit.record(session, "escrow_reserved", source="escrow", ticket_id=ticket.id, user_id=user_id, amount=amount)
        return ticket

    async def release(self, session: AsyncSession, ticket: EscrowTicket) -> EscrowTicket:
        await self._close(session, ticket, RELEASED)
        await ledger.unhold(session, ticket.user_id, ticket.amount)
        audit.record(
            session, "escrow_released", source="escrow", ticket_id=ticket.id, user_id=ticket.user_id, amount=ticket.amount
        )
        return ticket

    async def settle(
        self,
        session: AsyncSession,
        buyer_ticket: EscrowTicket,
        *,
        seller_id: int,
        fee_rate: Union[Decimal, str],
        seller_ticket: Optional[EscrowTicket] = None,
    ) -> Settlement:
        """Pay the buyer's escrow to the seller, minus the platform fee.

        A seller collateral ticket, when present, goes back to the seller.
        """
        if seller_ticket is not None and seller_ticket.user_id != seller_id:
            raise ValidationError("Seller ticket does not belong to the seller")
        amount = buyer_ticket.amount
        fee = compute_fee(amount, fee_rate)
        settlement = Settlement(amount=amount, fee=fee, net_to_seller=amount - fee)

        await self._close(session, buyer_ticket, SETTLED)
        await ledger.consume_escrow(session, buyer_ticket.user_id, amount)
        if settlement.net_to_seller:
            await ledger.credit(session, seller_id, settlement.net_to_seller)
        session.add(PlatformFee(ticket_id=buyer_ticket.id, amount=fee))

        if seller_ticket is not None:
            await self._close(session, seller_ticket, SETTLED)
            await ledger.unhold(session, seller_id, seller_ticket.amount)

        audit.record(
            session,
            "escrow_settled",
            source="escrow",
            ticket_id=buyer_ticket.id,
            buyer_id=buyer_ticket.user_id,
            seller_id=seller_id,
            amount=amount,
            fee=fee,
            net_to_seller=settlement.net_to_seller,
        )
        return settlement

    async def _close(self, session: AsyncSession, ticket: EscrowTicket, status: str) -> None:
        # Compare-and-swap on the ticket row: only one caller can move it out of "held".
        stmt = (
            update(EscrowTicket)
            .where(EscrowTicket.id == ticket.id, EscrowTicket.status == HELD)
            .values(status=status, closed_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if result.rowcount != 1:
            raise InvalidTransitionError(f"Escrow ticket {ticket.id} is no longer held")
        await session.refresh(ticket)
        logger.debug("escrow ticket %s -> %s", ticket.id, status)
