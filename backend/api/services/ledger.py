"""Balance store for user accounts.

Every mutation is a single conditional ``UPDATE`` touching ``balance`` and
``escrow_balance`` together, so neither column can go negative and a move
between them is never visible half-applied. Callers own the surrounding
database transaction.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import InsufficientFundsError, NotFoundError, ValidationError
from ..models import User


@dataclass(frozen=True)
class Balances:
    user_id: int
    balance: int
    escrow_balance: int


async def get_balances(session: AsyncSession, user_id: int) -> Balances:
    user = await session.get(User, user_id, populate_existing=True)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    return Balances(user_id=user.id, balance=user.balance, escrow_balance=user.escrow_balance)


def _require_positive(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError("Amounts must be whole currency units")
    if amount <= 0:
        raise ValidationError("Amount must be positive")


async def _apply(session: AsyncSession, stmt) -> bool:
    result = await session.execute(stmt.execution_options(synchronize_session=False))
    return result.rowcount == 1


async def credit(session: AsyncSession, user_id: int, amount: int) -> None:
    _require_positive(amount)
    stmt = update(User).where(User.id == user_id).values(balance=User.balance + amount)
    if not await _apply(session, stmt):
        raise NotFoundError(f"User {user_id} not found")


async def debit(session: AsyncSession, user_id: int, amount: int) -> None:
    _require_positive(amount)
    stmt = (
        update(User)
        .where(User.id == user_id, User.balance >= amount)
        .values(balance=User.balance - amount)
    )
    if not await _apply(session, stmt):
        current = await get_balances(session, user_id)
        raise InsufficientFundsError(required=amount, available=current.balance)


async def hold(session: AsyncSession, user_id: int, amount: int) -> None:
    """Move ``amount`` from spendable balance into escrow."""
    _require_positive(amount)
    stmt = (
        update(User)
        .where(User.id == user_id, User.balance >= amount)
        .values(balance=User.balance - amount, escrow_balance=User.escrow_balance + amount)
    )
    if not await _apply(session, stmt):
        current = await get_balances(session, user_id)
        raise InsufficientFundsError(required=amount, available=current.balance)


async def unhold(session: AsyncSession, user_id: int, amount: int) -> None:
    """Return ``amount`` from escrow to spendable balance."""
    _require_positive(amount)
    stmt = (
        update(User)
        .where(User.id == user_id, User.escrow_balance >= amount)
        .values(balance=User.balance + amount, escrow_balance=User.escrow_balance - amount)
    )
    if not await _apply(session, stmt):
        raise ValidationError(f"User {user_id} has less than {amount} in escrow")


async def consume_escrow(session: AsyncSession, user_id: int, amount: int) -> None:
    _require_positive(amount)
    stmt = (
        update(User)
        .where(User.id == user_id, User.escrow_balance >= amount)
        .values(escrow_balance=User.escrow_balance - amount)
    )
    if not await _apply(session, stmt):
        raise ValidationError(f"User {user_id} has less than {amount} in escrow")
