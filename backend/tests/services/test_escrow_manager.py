from decimal import Decimal

import pytest

from backend.api.errors import InvalidTransitionError, ValidationError
from backend.api.services.escrow import HELD, RELEASED, SETTLED, EscrowManager
from backend.tests.helpers import _fetch_fees, _fetch_logs, _fetch_user, _seed_user


@pytest.mark.asyncio
async def test_settle_pays_seller_net_of_fee(db):
    buyer_id = await _seed_user("buyer", 150_000)
    seller_id = await _seed_user("seller", 0)
    escrow = EscrowManager()

    async with db() as session:
        ticket = await escrow.reserve(session, buyer_id, 100_000, purpose="trade_offer")
        assert ticket.status == HELD
        settlement = await escrow.settle(session, ticket, seller_id=seller_id, fee_rate=Decimal("0.10"))
        await session.commit()

    assert settlement.fee == 10_000
    assert settlement.net_to_seller == 90_000
    assert ticket.status == SETTLED
    buyer = await _fetch_user(buyer_id)
    seller = await _fetch_user(seller_id)
    assert (buyer.balance, buyer.escrow_balance) == (50_000, 0)
    assert (seller.balance, seller.escrow_balance) == (90_000, 0)
    fees = await _fetch_fees()
    assert [fee.amount for fee in fees] == [10_000]
    assert {entry.message for entry in await _fetch_logs()} >= {"escrow_reserved", "escrow_settled"}


@pytest.mark.asyncio
async def test_ticket_closes_only_once(db):
    buyer_id = await _seed_user("buyer", 1_000)
    seller_id = await _seed_user("seller", 0)
    escrow = EscrowManager()

    async with db() as session:
        ticket = await escrow.reserve(session, buyer_id, 1_000, purpose="purchase")
        await escrow.release(session, ticket)
        assert ticket.status == RELEASED
        with pytest.raises(InvalidTransitionError):
            await escrow.settle(session, ticket, seller_id=seller_id, fee_rate="0.15")
        await session.commit()

    buyer = await _fetch_user(buyer_id)
    assert (buyer.balance, buyer.escrow_balance) == (1_000, 0)
    seller = await _fetch_user(seller_id)
    assert seller.balance == 0


@pytest.mark.asyncio
async def test_seller_collateral_returned_on_settle(db):
    buyer_id = await _seed_user("buyer", 2_000)
    seller_id = await _seed_user("seller", 500)
    escrow = EscrowManager()

    async with db() as session:
        buyer_ticket = await escrow.reserve(session, buyer_id, 2_000, purpose="trade_offer")
        seller_ticket = await escrow.reserve(session, seller_id, 500, purpose="collateral")
        with pytest.raises(ValidationError):
            await escrow.settle(session, buyer_ticket, seller_id=buyer_id, fee_rate="0.10", seller_ticket=seller_ticket)
        await escrow.settle(session, buyer_ticket, seller_id=seller_id, fee_rate="0.10", seller_ticket=seller_ticket)
        await session.commit()

    seller = await _fetch_user(seller_id)
    assert (seller.balance, seller.escrow_balance) == (500 + 1_800, 0)
