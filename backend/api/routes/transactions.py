from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..dependencies import get_current_user, get_db_session, get_purchase_service
from ..models import User
from ..schemas.transactions import PurchaseCreate, TransactionOut, TransactionUpdate
from ..services.purchases import PurchaseService

router = APIRouter(prefix="/api/transactions", tags=["transactions"])


@router.post("", response_model=TransactionOut, status_code=status.HTTP_201_CREATED)
async def create_purchase(
    payload: PurchaseCreate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    purchases: PurchaseService = Depends(get_purchase_service),
) -> TransactionOut:
    transaction = await purchases.create_purchase(session, user.id, payload.product_id, payload.shipping)
    return TransactionOut.model_validate(transaction)


@router.get("", response_model=list[TransactionOut])
async def list_transactions(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    purchases: PurchaseService = Depends(get_purchase_service),
) -> list[TransactionOut]:
    return [TransactionOut.model_validate(item) for item in await purchases.list_transactions(session, user)]


@router.get("/{transaction_id}", response_model=TransactionOut)
async def get_transaction(
    transaction_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    purchases: PurchaseService = Depends(get_purchase_service),
) -> TransactionOut:
    transaction = await purchases.get_transaction(session, transaction_id, user)
    return TransactionOut.model_validate(transaction)


@router.put("/{transaction_id}", response_model=TransactionOut)
async def update_transaction(
    transaction_id: uuid.UUID,
    payload: TransactionUpdate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    purchases: PurchaseService = Depends(get_purchase_service),
) -> TransactionOut:
    transaction = await purchases.update_status(session, transaction_id, payload.status, actor=user, note=payload.note)
    return TransactionOut.model_validate(transaction)
