import pytest

from backend.api import dependencies
from backend.api.models import Conversation, Message
from backend.tests.helpers import _fetch_all, _seed_product, _seed_user, as_user


@pytest.mark.asyncio
async def test_conversation_holds_plain_and_trade_messages(api_client):
    client, notifier = api_client
    seller = await _seed_user("seller")
    buyer = await _seed_user("buyer", 20_000)
    product_id = await _seed_product(seller)

    sent = await client.post("/api/messages", json={"receiverId": seller, "content": "Still available?"}, headers=as_user(buyer))
    assert sent.status_code == 201
    assert sent.json()["kind"] == "plain"
    conversation_id = sent.json()["conversationId"]

    offer = await client.post(
        "/api/direct-trade-offers",
        json={
            "productId": product_id,
            "offeredItemName": "Tripod",
            "offeredItemValue": 3_000,
            "offeredItemImages": ["https://img.example/tripod.jpg"],
        },
        headers=as_user(buyer),
    )
    assert offer.json()["conversationId"] == conversation_id

    listing = await client.get("/api/conversations", headers=as_user(seller))
    conversations = listing.json()
    assert len(conversations) == 1
    assert conversations[0]["otherUserId"] == buyer
    assert conversations[0]["unreadCount"] == 2
    assert conversations[0]["lastMessageId"] == offer.json()["tradeOfferId"]

    detail = await client.get(f"/api/conversations/{conversation_id}", headers=as_user(seller))
    kinds = [message["kind"] for message in detail.json()["messages"]]
    assert kinds == ["plain", "trade_offer"]
    assert detail.json()["messages"][1]["tradeOffer"]["escrowAmount"] == 8_000
    assert detail.json()["conversation"]["unreadCount"] == 0

    stranger = await _seed_user("stranger")
    hidden = await client.get(f"/api/conversations/{conversation_id}", headers=as_user(stranger))
    assert hidden.status_code == 403

    events = await client.get("/api/notifications", headers=as_user(seller))
    assert [event["type"] for event in events.json()["events"]] == ["message", "trade_offer.proposed"]
    assert notifier.types_for(seller) == []


@pytest.mark.asyncio
async def test_message_validation(api_client):
    client, _ = api_client
    alice = await _seed_user("alice")
    assert (await client.post("/api/messages", json={"receiverId": alice, "content": "hi"}, headers=as_user(alice))).status_code == 400
    assert (await client.post("/api/messages", json={"receiverId": 404, "content": "hi"}, headers=as_user(alice))).status_code == 404
    bob = await _seed_user("bob")
    assert (await client.post("/api/messages", json={"receiverId": bob, "content": "  "}, headers=as_user(alice))).status_code == 400


@pytest.mark.asyncio
async def test_notification_poll_reports_remaining(api_client):
    client, _ = api_client
    alice = await _seed_user("alice")
    bob = await _seed_user("bob")
    for content in ("one", "two", "three"):
        await client.post("/api/messages", json={"receiverId": bob, "content": content}, headers=as_user(alice))

    first = await client.get("/api/notifications", params={"limit": 2}, headers=as_user(bob))
    assert (first.json()["count"], first.json()["remaining"]) == (2, 1)
    second = await client.get("/api/notifications", headers=as_user(bob))
    assert (second.json()["count"], second.json()["remaining"]) == (1, 0)


@pytest.mark.asyncio
async def test_failed_send_rolls_back(db, fake_notifier, monkeypatch):
    alice = await _seed_user("alice")
    bob = await _seed_user("bob")
    relay = dependencies.get_relay()

    async def failing_commit():
        raise RuntimeError("database is locked")

    async with db() as session:
        monkeypatch.setattr(session, "commit", failing_commit)
        with pytest.raises(RuntimeError):
            await relay.send_plain(session, alice, bob, "hello")
        assert not session.in_transaction()

    assert await _fetch_all(Message) == []
    assert await _fetch_all(Conversation) == []
    assert fake_notifier.sent == []
