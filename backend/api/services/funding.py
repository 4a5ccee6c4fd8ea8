from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import ForbiddenError, InvalidTransitionError, NotFoundError, ValidationError
from ..models import Deposit, EscrowTicket, User, Withdrawal
from . import audit, ledger
from .locks import KeyedLockManager, user_key


def _check_request(amount: int, method: str) -> None:
    if amount <= 0:
        raise ValidationError("Amount must be positive")
    if not method or not method.strip():
        raise ValidationError("Payment method is required")


class FundingService:
    """External money in and out of spendable balances."""

    def __init__(self, locks: KeyedLockManager) -> None:
        self._locks = locks

    async def request_deposit(self, session: AsyncSession, user_id: int, amount: int, method: str) -> Deposit:
        _check_request(amount, method)
        deposit = Deposit(user_id=user_id, amount=amount, method=method.strip(), status="pending")
        session.add(deposit)
        await session.flush()
        audit.record(session, "deposit_requested", source="funding", deposit_id=deposit.id, user_id=user_id, amount=amount)
        await session.commit()
        return deposit

    async def review_deposit(self, session: AsyncSession, deposit_id: int, *, approve: bool, admin: User) -> Deposit:
        if not admin.is_admin:
            raise ForbiddenError("Administrator access required")
        deposit = await session.get(Deposit, deposit_id)
        if deposit is None:
            raise NotFoundError("Deposit not found")
        async with self._locks.hold(user_key(deposit.user_id)):
            try:
                target = "completed" if approve else "rejected"
                stmt = (
                    update(Deposit)
                    .where(Deposit.id == deposit_id, Deposit.status == "pending")
                    .values(status=target)
                    .execution_options(synchronize_session=False)
                )
                if (await session.execute(stmt)).rowcount != 1:
                    raise InvalidTransitionError("Deposit is not pending")
                if approve:
                    await ledger.credit(session, deposit.user_id, deposit.amount)
                audit.record(session, f"deposit_{target}", source="funding", deposit_id=deposit_id, admin_id=admin.id)
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        await session.refresh(deposit)
        return deposit

    async def withdraw(self, session: AsyncSession, user_id: int, amount: int, method: str) -> Withdrawal:
        _check_request(amount, method)
        async with self._locks.hold(user_key(user_id)):
            try:
                await ledger.debit(session, user_id, amount)
                withdrawal = Withdrawal(user_id=user_id, amount=amount, method=method.strip(), status="pending")
                session.add(withdrawal)
                await session.flush()
                audit.record(session, "withdrawal_requested", source="funding", withdrawal_id=withdrawal.id, amount=amount)
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        return withdrawal

    async def held_tickets(self, session: AsyncSession, user_id: int) -> list[EscrowTicket]:
        stmt = (
            select(EscrowTicket)
            .where(EscrowTicket.user_id == user_id, EscrowTicket.status == "held")
            .order_by(EscrowTicket.created_at)
        )
        return list((await session.execute(stmt)).scalars().all())
