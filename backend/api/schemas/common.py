from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for API payloads: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class ErrorOut(BaseModel):
    error: str


class EscrowTicketOut(CamelModel):
    id: UUID
    amount: int
    status: str
    purpose: str
    reference: Optional[str] = None
    created_at: datetime
    closed_at: Optional[datetime] = None


class AccountOut(CamelModel):
    user_id: int
    username: str
    balance: int
    escrow_balance: int
    currency: str
    held_tickets: list[EscrowTicketOut] = Field(default_factory=list)


class LogOut(BaseModel):
    id: UUID
    level: str
    message: str
    source: str
    context: dict[str, Any]
    created_at: datetime

    model_config = {"from_attributes": True}
