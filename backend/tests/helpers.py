from typing import Optional

from sqlalchemy import select

from backend.api.database import session_factory
from backend.api.models import EscrowTicket, LogEntry, PlatformFee, Product, Transaction, User


def as_user(user_id: int) -> dict[str, str]:
    return {"X-User-ID": str(user_id)}


async def _seed_user(username: str, balance: int = 0, *, is_admin: bool = False) -> int:
    async with session_factory()() as session:
        user = User(username=username, balance=balance, escrow_balance=0, is_admin=is_admin)
        session.add(user)
        await session.commit()
        return user.id


async def _seed_product(
    seller_id: int,
    *,
    title: str = "Vintage camera",
    price: Optional[int] = 5000,
    trade_value: Optional[int] = 8000,
    allow_buy: bool = True,
    allow_trade: bool = True,
    status: str = "active",
) -> int:
    async with session_factory()() as session:
        product = Product(
            title=title,
            description="Good condition",
            images=["https://img.example/camera.jpg"],
            seller_id=seller_id,
            price=price,
            trade_value=trade_value,
            allow_buy=allow_buy,
            allow_trade=allow_trade,
            status=status,
        )
        session.add(product)
        await session.commit()
        return product.id


async def _fetch_user(user_id: int) -> User:
    async with session_factory()() as session:
        return await session.get(User, user_id)


async def _fetch_product(product_id: int) -> Product:
    async with session_factory()() as session:
        return await session.get(Product, product_id)


async def _fetch_all(model) -> list:
    async with session_factory()() as session:
        result = await session.execute(select(model))
        return list(result.scalars().all())


async def _fetch_transactions() -> list[Transaction]:
    return await _fetch_all(Transaction)


async def _fetch_tickets() -> list[EscrowTicket]:
    return await _fetch_all(EscrowTicket)


async def _fetch_fees() -> list[PlatformFee]:
    return await _fetch_all(PlatformFee)


async def _fetch_logs() -> list[LogEntry]:
    return await _fetch_all(LogEntry)
