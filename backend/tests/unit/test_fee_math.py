from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from backend.api.errors import ValidationError
from backend.api.services.escrow import compute_fee, trade_escrow_amount
from backend.api.services.finalizer import timeline_event


def test_trade_fee_split():
    fee = compute_fee(100_000, Decimal("0.10"))
    assert fee == 10_000
    assert 100_000 - fee == 90_000


def test_fee_rounds_half_up_and_stays_in_bounds():
    assert compute_fee(5, "0.10") == 1
    assert compute_fee(4, "0.10") == 0
    assert compute_fee(7, 1) == 7
    assert compute_fee(7, 0) == 0


def test_fee_rate_outside_unit_interval_rejected():
    with pytest.raises(ValidationError):
        compute_fee(1000, "1.5")
    with pytest.raises(ValidationError):
        compute_fee(1000, "-0.01")


def test_trade_escrow_is_the_larger_valuation():
    assert trade_escrow_amount(5000, 8000) == 8000
    assert trade_escrow_amount(9000, 8000) == 9000
    assert trade_escrow_amount(5000, None) == 5000


def test_timeline_never_goes_backwards():
    later = datetime(2026, 1, 2, tzinfo=timezone.utc)
    timeline = [timeline_event([], "pending", "created", now=later)]
    event = timeline_event(timeline, "completed", "done", now=later - timedelta(hours=1))
    assert datetime.fromisoformat(event["timestamp"]) == later
    assert event["status"] == "completed"
