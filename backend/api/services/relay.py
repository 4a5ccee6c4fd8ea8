from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any, Optional

from redis.exceptions import RedisError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import ForbiddenError, NotFoundError, ValidationError
from ..models import Conversation, Message, User, utcnow

logger = logging.getLogger(__name__)


class ConversationRelay:
    """Attaches messages to conversations and tells participants to refresh."""

    def __init__(self, notifier) -> None:
        self._notifier = notifier

    async def get_or_create(self, session: AsyncSession, user_a: int, user_b: int) -> Conversation:
        if user_a == user_b:
            raise ValidationError("A conversation needs two different participants")
        low, high = sorted((user_a, user_b))
        stmt = select(Conversation).where(Conversation.user_low_id == low, Conversation.user_high_id == high)
        conversation = (await session.execute(stmt)).scalars().first()
        if conversation is None:
            conversation = Conversation(user_low_id=low, user_high_id=high)
            session.add(conversation)
            await session.flush()
        return conversation

    async def append(self, session: AsyncSession, message: Message) -> Conversation:
        conversation = await self.get_or_create(session, message.sender_id, message.receiver_id)
        message.conversation_id = conversation.id
        session.add(message)
        await session.flush()
        conversation.last_message_id = message.id
        conversation.updated_at = utcnow()
        return conversation

    async def send_plain(self, session: AsyncSession, sender_id: int, receiver_id: int, content: str) -> Message:
        if not content.strip():
            raise ValidationError("Message content is required")
        if await session.get(User, receiver_id) is None:
            raise NotFoundError(f"User {receiver_id} not found")
        message = Message(kind="plain", sender_id=sender_id, receiver_id=receiver_id, content=content)
        try:
            await self.append(session, message)
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        await self.announce([receiver_id], {"type": "message", "message_id": message.id, "conversation_id": message.conversation_id})
        return message

    async def list_conversations(self, session: AsyncSession, user_id: int) -> list[Conversation]:
        stmt = (
            select(Conversation)
            .where((Conversation.user_low_id == user_id) | (Conversation.user_high_id == user_id))
            .order_by(Conversation.updated_at.desc())
        )
        return list((await session.execute(stmt)).scalars().all())

    async def open_conversation(
        self, session: AsyncSession, conversation_id: int, user_id: int
    ) -> tuple[Conversation, list[Message]]:
        conversation = await session.get(Conversation, conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")
        if not conversation.has_participant(user_id):
            raise ForbiddenError("You are not part of this conversation")
        stmt = select(Message).where(Message.conversation_id == conversation_id).order_by(Message.id)
        messages = list((await session.execute(stmt)).scalars().all())
        changed = False
        for message in messages:
            if message.receiver_id == user_id and not message.is_read:
                message.is_read = True
                changed = True
        if changed:
            await session.commit()
        return conversation, messages

    async def unread_count(self, session: AsyncSession, conversation_id: int, user_id: int) -> int:
        stmt = select(Message.id).where(
            Message.conversation_id == conversation_id,
            Message.receiver_id == user_id,
            Message.is_read.is_(False),
        )
        return len((await session.execute(stmt)).all())

    async def announce(self, user_ids: Iterable[int], event: dict[str, Any], *, exclude: Optional[int] = None) -> None:
        """Notify participants after commit; delivery problems never undo the change."""
        for user_id in dict.fromkeys(user_ids):
            if user_id == exclude:
                continue
            try:
                await self._notifier.notify(user_id, event)
            except (RedisError, RuntimeError, OSError) as exc:
                logger.warning("Notification to user %s failed: %s", user_id, exc)
