from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..dependencies import get_current_user, get_db_session, get_notification_service, get_relay
from ..models import Conversation, User
from ..schemas.messages import ConversationDetail, ConversationOut, MessageCreate, message_out
from ..schemas.trade import MessageOut
from ..services.notifications import NotificationService
from ..services.relay import ConversationRelay

router = APIRouter(prefix="/api", tags=["messages"])


async def _conversation_out(
    relay: ConversationRelay, session: AsyncSession, conversation: Conversation, user_id: int
) -> ConversationOut:
    return ConversationOut(
        id=conversation.id,
        other_user_id=conversation.other_participant(user_id),
        last_message_id=conversation.last_message_id,
        unread_count=await relay.unread_count(session, conversation.id, user_id),
        updated_at=conversation.updated_at,
    )


@router.get("/conversations", response_model=list[ConversationOut])
async def list_conversations(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    relay: ConversationRelay = Depends(get_relay),
) -> list[ConversationOut]:
    conversations = await relay.list_conversations(session, user.id)
    return [await _conversation_out(relay, session, item, user.id) for item in conversations]


@router.get("/conversations/{conversation_id}", response_model=ConversationDetail)
async def get_conversation(
    conversation_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    relay: ConversationRelay = Depends(get_relay),
) -> ConversationDetail:
    conversation, messages = await relay.open_conversation(session, conversation_id, user.id)
    return ConversationDetail(
        conversation=await _conversation_out(relay, session, conversation, user.id),
        messages=[message_out(message) for message in messages],
    )


@router.post("/messages", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
async def send_message(
    payload: MessageCreate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    relay: ConversationRelay = Depends(get_relay),
):
    message = await relay.send_plain(session, user.id, payload.receiver_id, payload.content)
    return message_out(message)


@router.get("/notifications")
async def poll_notifications(
    limit: int = Query(default=50, ge=1, le=200),
    user: User = Depends(get_current_user),
    notifications: NotificationService = Depends(get_notification_service),
) -> dict[str, Any]:
    events = await notifications.poll(user.id, limit=limit)
    return {"events": events, "count": len(events), "remaining": await notifications.pending(user.id)}
