import pytest

from backend.tests.helpers import _fetch_fees, _fetch_product, _fetch_user, _seed_product, _seed_user, as_user


async def _purchase(client, buyer: int, product_id: int, shipping: int = 0):
    return await client.post(
        "/api/transactions", json={"productId": product_id, "shipping": shipping}, headers=as_user(buyer)
    )


@pytest.mark.asyncio
async def test_purchase_holds_escrow_until_buyer_confirms(api_client):
    client, notifier = api_client
    seller = await _seed_user("seller")
    buyer = await _seed_user("buyer", 10_000)
    product_id = await _seed_product(seller, price=4_000)

    created = await _purchase(client, buyer, product_id, shipping=1_000)
    assert created.status_code == 201
    data = created.json()
    assert data["status"] == "pending"
    assert data["type"] == "purchase"
    assert data["amount"] == 5_000
    assert data["platformFee"] == 750
    assert [event["status"] for event in data["timeline"]] == ["pending"]
    assert (await _fetch_product(product_id)).status == "reserved"
    buyer_row = await _fetch_user(buyer)
    assert (buyer_row.balance, buyer_row.escrow_balance) == (5_000, 5_000)
    assert notifier.types_for(seller) == ["transaction.created"]

    seller_try = await client.put(f"/api/transactions/{data['id']}", json={"status": "completed"}, headers=as_user(seller))
    assert seller_try.status_code == 403

    done = await client.put(f"/api/transactions/{data['id']}", json={"status": "completed"}, headers=as_user(buyer))
    assert done.status_code == 200
    assert done.json()["status"] == "completed"
    assert [event["status"] for event in done.json()["timeline"]] == ["pending", "completed"]

    seller_row = await _fetch_user(seller)
    buyer_row = await _fetch_user(buyer)
    assert seller_row.balance == 4_250
    assert (buyer_row.balance, buyer_row.escrow_balance) == (5_000, 0)
    assert [fee.amount for fee in await _fetch_fees()] == [750]
    assert (await _fetch_product(product_id)).status == "sold"


@pytest.mark.asyncio
async def test_cancel_returns_escrow_and_relists(api_client):
    client, _ = api_client
    seller = await _seed_user("seller")
    buyer = await _seed_user("buyer", 10_000)
    product_id = await _seed_product(seller, price=4_000)
    transaction_id = (await _purchase(client, buyer, product_id)).json()["id"]

    response = await client.put(f"/api/transactions/{transaction_id}", json={"status": "cancelled"}, headers=as_user(seller))
    assert response.status_code == 200
    buyer_row = await _fetch_user(buyer)
    assert (buyer_row.balance, buyer_row.escrow_balance) == (10_000, 0)
    assert (await _fetch_product(product_id)).status == "active"


@pytest.mark.asyncio
async def test_disputed_is_terminal_until_admin_release(api_client):
    client, _ = api_client
    seller = await _seed_user("seller")
    buyer = await _seed_user("buyer", 10_000)
    admin = await _seed_user("admin", is_admin=True)
    product_id = await _seed_product(seller, price=4_000)
    transaction_id = (await _purchase(client, buyer, product_id)).json()["id"]

    disputed = await client.put(f"/api/transactions/{transaction_id}", json={"status": "disputed"}, headers=as_user(buyer))
    assert disputed.json()["status"] == "disputed"

    blocked = await client.put(f"/api/transactions/{transaction_id}", json={"status": "completed"}, headers=as_user(buyer))
    assert blocked.status_code == 409
    buyer_row = await _fetch_user(buyer)
    assert buyer_row.escrow_balance == 4_000

    not_admin = await client.post(f"/api/admin/transactions/{transaction_id}/release-escrow", headers=as_user(buyer))
    assert not_admin.status_code == 403

    released = await client.post(f"/api/admin/transactions/{transaction_id}/release-escrow", headers=as_user(admin))
    assert released.status_code == 200
    buyer_row = await _fetch_user(buyer)
    assert (buyer_row.balance, buyer_row.escrow_balance) == (10_000, 0)

    again = await client.post(f"/api/admin/transactions/{transaction_id}/release-escrow", headers=as_user(admin))
    assert again.status_code == 409


@pytest.mark.asyncio
async def test_purchase_rules(api_client):
    client, _ = api_client
    seller = await _seed_user("seller")
    buyer = await _seed_user("buyer", 1_000)
    stranger = await _seed_user("stranger")
    trade_only = await _seed_product(seller, price=None, allow_buy=False)
    product_id = await _seed_product(seller, price=4_000)

    assert (await _purchase(client, seller, product_id)).status_code == 403
    assert (await _purchase(client, buyer, trade_only)).status_code == 400
    assert (await _purchase(client, buyer, product_id, shipping=-1)).status_code == 400
    short = await _purchase(client, buyer, product_id)
    assert short.status_code == 400
    assert short.json()["required"] == 4_000
    assert (await _purchase(client, buyer, 999)).status_code == 404

    rich = await _seed_user("rich", 10_000)
    transaction_id = (await _purchase(client, rich, product_id)).json()["id"]
    assert (await client.get(f"/api/transactions/{transaction_id}", headers=as_user(stranger))).status_code == 403
    assert (await client.get("/api/transactions", headers=as_user(stranger))).json() == []
    listing = await client.get("/api/transactions", headers=as_user(seller))
    assert [item["id"] for item in listing.json()] == [transaction_id]
    unknown = await client.get("/api/transactions/00000000-0000-0000-0000-000000000000", headers=as_user(rich))
    assert unknown.status_code == 404
    bad_status = await client.put(f"/api/transactions/{transaction_id}", json={"status": "shipped"}, headers=as_user(rich))
    assert bad_status.status_code == 422
