from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from .config import Settings, get_settings
from .database import get_session
from .errors import ForbiddenError, UnauthorizedError
from .models import User
from .services.escrow import EscrowManager
from .services.finalizer import TransactionFinalizer
from .services.funding import FundingService
from .services.locks import KeyedLockManager
from .services.notifications import NotificationService
from .services.purchases import PurchaseService
from .services.relay import ConversationRelay
from .services.trade_offers import TradeOfferEngine


_settings = get_settings()
_notification_service = NotificationService(
    _settings.redis_url,
    _settings.notification_namespace,
    backlog=_settings.notification_backlog,
)
_locks = KeyedLockManager()
_escrow = EscrowManager()
_finalizer = TransactionFinalizer(_escrow)


def get_settings_dependency() -> Settings:
    return _settings


def get_notification_service() -> NotificationService:
    return _notification_service


def get_relay() -> ConversationRelay:
    return ConversationRelay(_notification_service)


def get_trade_engine() -> TradeOfferEngine:
    return TradeOfferEngine(
        _settings,
        locks=_locks,
        escrow=_escrow,
        finalizer=_finalizer,
        relay=get_relay(),
    )


def get_purchase_service() -> PurchaseService:
    return PurchaseService(
        _settings,
        locks=_locks,
        escrow=_escrow,
        finalizer=_finalizer,
        relay=get_relay(),
    )


def get_funding_service() -> FundingService:
    return FundingService(_locks)


async def get_db_session() -> AsyncIterator[AsyncSession]:
    async for session in get_session():
        yield session


async def get_current_user(
    x_user_id: Optional[str] = Header(default=None),
    session: AsyncSession = Depends(get_db_session),
) -> User:
    if not x_user_id:
        raise UnauthorizedError("Authentication required")
    try:
        user_id = int(x_user_id)
    except ValueError as exc:
        raise UnauthorizedError("Invalid user id") from exc
    user = await session.get(User, user_id)
    if user is None:
        raise UnauthorizedError("Unknown user")
    return user


async def get_admin_user(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise ForbiddenError("Administrator access required")
    return user


async def connect_notifications() -> None:
    await _notification_service.connect()


async def close_notifications() -> None:
    await _notification_service.close()
