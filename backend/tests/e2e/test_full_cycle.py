from __future__ import annotations

import pytest

from backend.tests.helpers import _fetch_fees, _fetch_logs, _seed_product, _seed_user, as_user


@pytest.mark.asyncio
async def test_full_deposit_to_trade_flow(api_client):
    client, notifier = api_client
    admin = await _seed_user("admin", is_admin=True)
    seller = await _seed_user("seller")
    buyer = await _seed_user("buyer")

    # 1. Buyer funds the account through an approved deposit
    deposit = await client.post("/api/deposits", json={"amount": 150_000, "method": "bank"}, headers=as_user(buyer))
    await client.post(f"/api/admin/deposits/{deposit.json()['id']}/approve", headers=as_user(admin))

    # 2. Seller lists an item that accepts trades
    product_id = await _seed_product(seller, title="Road bike", price=120_000, trade_value=100_000)

    # 3. Buyer opens a conversation and proposes a trade
    await client.post("/api/messages", json={"receiverId": seller, "content": "Interested in a swap"}, headers=as_user(buyer))
    proposal = await client.post(
        "/api/direct-trade-offers",
        json={
            "productId": product_id,
            "offeredItemName": "Mountain bike",
            "offeredItemDescription": "Size M, new tyres",
            "offeredItemValue": 90_000,
            "offeredItemImages": ["https://img.example/mtb-1.jpg", "https://img.example/mtb-2.jpg"],
        },
        headers=as_user(buyer),
    )
    assert proposal.status_code == 201
    offer_id = proposal.json()["tradeOfferId"]
    assert proposal.json()["escrowAmount"] == 100_000

    # 4. Both sides confirm
    await client.post("/api/trade/confirm", json={"messageId": offer_id, "role": "buyer"}, headers=as_user(buyer))
    accepted = await client.post(f"/api/trade-offers/{offer_id}/accept", headers=as_user(seller))
    assert accepted.json()["isFullyConfirmed"] is True
    transaction = accepted.json()["transaction"]
    assert transaction["platformFee"] == 10_000
    assert transaction["tradeDetails"]["escrowReleased"] == 90_000
    assert transaction["tradeDetails"]["offerItemName"] == "Mountain bike"

    # 5. Balances, fees, audit trail and notifications line up
    buyer_account = (await client.get("/api/account", headers=as_user(buyer))).json()
    seller_account = (await client.get("/api/account", headers=as_user(seller))).json()
    assert (buyer_account["balance"], buyer_account["escrowBalance"]) == (50_000, 0)
    assert buyer_account["heldTickets"] == []
    assert seller_account["balance"] == 90_000
    assert [fee.amount for fee in await _fetch_fees()] == [10_000]

    messages = {entry.message for entry in await _fetch_logs()}
    assert {"deposit_completed", "trade_proposed", "trade_confirmed", "escrow_settled", "trade_finalized"} <= messages

    listed = await client.get("/api/transactions", headers=as_user(buyer))
    assert [item["id"] for item in listed.json()] == [transaction["id"]]

    events = (await client.get("/api/notifications", headers=as_user(buyer))).json()["events"]
    assert events[-1]["type"] == "trade_offer.completed"
    assert notifier.types_for(seller) == ["message", "trade_offer.proposed", "trade_offer.confirmed", "trade_offer.completed"]

    audit = await client.get("/api/admin/logs", params={"source": "trade"}, headers=as_user(admin))
    assert audit.status_code == 200
    assert {entry["message"] for entry in audit.json()} >= {"trade_proposed", "trade_confirmed"}
    assert (await client.get("/api/admin/logs", headers=as_user(buyer))).status_code == 403
