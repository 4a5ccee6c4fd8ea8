"""State machines for trade offers and transactions.

Trade offers replace the two loose ``tradeConfirmedBuyer`` / ``tradeConfirmedSeller``
booleans with a single state, so a confirmation can never be withdrawn.
"""

from __future__ import annotations

from enum import Enum

from .errors import InvalidTransitionError, ValidationError


class TradeRole(str, Enum):
    BUYER = "buyer"
    SELLER = "seller"

    @classmethod
    def parse(cls, value: str) -> "TradeRole":
        try:
            return cls(value)
        except ValueError as exc:
            raise ValidationError(f"Unknown trade role: {value!r}") from exc


class TradeOfferState(str, Enum):
    PROPOSED = "proposed"
    CONFIRMED_BY_BUYER = "confirmed_by_buyer"
    CONFIRMED_BY_SELLER = "confirmed_by_seller"
    FULLY_CONFIRMED = "fully_confirmed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


OPEN_OFFER_STATES = frozenset(
    {
        TradeOfferState.PROPOSED,
        TradeOfferState.CONFIRMED_BY_BUYER,
        TradeOfferState.CONFIRMED_BY_SELLER,
    }
)

_CONFIRMATIONS: dict[tuple[TradeOfferState, TradeRole], TradeOfferState] = {
    (TradeOfferState.PROPOSED, TradeRole.BUYER): TradeOfferState.CONFIRMED_BY_BUYER,
    (TradeOfferState.PROPOSED, TradeRole.SELLER): TradeOfferState.CONFIRMED_BY_SELLER,
    (TradeOfferState.CONFIRMED_BY_BUYER, TradeRole.BUYER): TradeOfferState.CONFIRMED_BY_BUYER,
    (TradeOfferState.CONFIRMED_BY_BUYER, TradeRole.SELLER): TradeOfferState.FULLY_CONFIRMED,
    (TradeOfferState.CONFIRMED_BY_SELLER, TradeRole.SELLER): TradeOfferState.CONFIRMED_BY_SELLER,
    (TradeOfferState.CONFIRMED_BY_SELLER, TradeRole.BUYER): TradeOfferState.FULLY_CONFIRMED,
    (TradeOfferState.FULLY_CONFIRMED, TradeRole.BUYER): TradeOfferState.FULLY_CONFIRMED,
    (TradeOfferState.FULLY_CONFIRMED, TradeRole.SELLER): TradeOfferState.FULLY_CONFIRMED,
}


def confirm(state: TradeOfferState, role: TradeRole) -> TradeOfferState:
    """Return the state reached when ``role`` confirms an offer in ``state``.

    Confirming twice returns the state unchanged; closed offers cannot be confirmed.
    """
    try:
        return _CONFIRMATIONS[(state, role)]
    except KeyError:
        raise InvalidTransitionError(f"Trade offer is {state.value} and can no longer be confirmed") from None


def close(state: TradeOfferState, target: TradeOfferState) -> TradeOfferState:
    if target not in (TradeOfferState.CANCELLED, TradeOfferState.EXPIRED):
        raise ValueError(f"{target.value} is not a closing state")
    if state not in OPEN_OFFER_STATES:
        raise InvalidTransitionError(f"Trade offer is {state.value} and cannot be {target.value}")
    return target


def buyer_confirmed(state: TradeOfferState) -> bool:
    return state in (TradeOfferState.CONFIRMED_BY_BUYER, TradeOfferState.FULLY_CONFIRMED)


def seller_confirmed(state: TradeOfferState) -> bool:
    return state in (TradeOfferState.CONFIRMED_BY_SELLER, TradeOfferState.FULLY_CONFIRMED)


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


class TransactionType(str, Enum):
    PURCHASE = "purchase"
    TRADE = "trade"


TRANSACTION_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset(
        {TransactionStatus.COMPLETED, TransactionStatus.CANCELLED, TransactionStatus.DISPUTED}
    ),
    TransactionStatus.COMPLETED: frozenset(),
    TransactionStatus.CANCELLED: frozenset(),
    TransactionStatus.DISPUTED: frozenset(),
}


def check_transaction_transition(current: TransactionStatus, target: TransactionStatus) -> None:
    if target not in TRANSACTION_TRANSITIONS[current]:
        raise InvalidTransitionError(f"Cannot move transaction from {current.value} to {target.value}")
