import json

from backend.api.schemas.trade import TradeOfferPayload


def test_payload_survives_storage_as_json():
    payload = TradeOfferPayload(
        product_id=12,
        product_title="Vintage camera",
        product_image="https://img.example/camera.jpg",
        seller_id=3,
        offer_item_name="Film lens",
        offer_item_value=5000,
        offer_item_images=["https://img.example/lens-1.jpg", "https://img.example/lens-2.jpg"],
        escrow_amount=8000,
    )
    stored = json.loads(json.dumps(payload.model_dump(mode="json", by_alias=True)))
    assert stored["offerItemValue"] == 5000

    parsed = TradeOfferPayload.model_validate(stored)
    assert parsed.offer_item_name == "Film lens"
    assert parsed.offer_item_value == 5000
    assert parsed.offer_item_images == payload.offer_item_images
    assert (parsed.product_id, parsed.product_title) == (12, "Vintage camera")
    assert parsed == payload
