"""Pure aggregate computation for an auction's bid set.

Aggregates are always derived from the full current bid set, never patched
incrementally, so concurrent writers converge on the same values.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from app.models.base import as_utc
from app.services.errors import InvalidAmount

_CENTS = Decimal("0.01")


@dataclass(frozen=True)
class BidView:
    id: str
    user_id: str
    amount: Decimal
    created_at: datetime

    @classmethod
    def from_row(cls, bid: Any) -> "BidView":
        return cls(
            id=bid.id,
            user_id=bid.user_id,
            amount=Decimal(bid.amount),
            created_at=bid.created_at,
        )


@dataclass(frozen=True)
class AuctionAggregate:
    bid_count: int
    lowest_bid_amount: Decimal | None
    highest_bid_amount: Decimal | None
    leader: BidView | None

    def as_values(self) -> dict[str, Any]:
        return {
            "bid_count": self.bid_count,
            "lowest_bid_amount": self.lowest_bid_amount,
            "highest_bid_amount": self.highest_bid_amount,
        }


def _rank(bid: BidView) -> tuple[Decimal, datetime, str]:
    # Reverse auction: lowest amount wins, earliest bid breaks ties
    return (bid.amount, as_utc(bid.created_at), bid.id)


def elect_winner(bids: Iterable[BidView]) -> BidView | None:
    """Return the winning bid: minimum amount, ties broken by earliest created_at."""
    bids = list(bids)
    if not bids:
        return None
    return min(bids, key=_rank)


def recompute(bids: Iterable[BidView]) -> AuctionAggregate:
    """Derive the cached auction fields from the complete set of its bids."""
    bids = list(bids)
    if not bids:
        return AuctionAggregate(bid_count=0, lowest_bid_amount=None, highest_bid_amount=None, leader=None)
    amounts = [b.amount for b in bids]
    return AuctionAggregate(
        bid_count=len(bids),
        lowest_bid_amount=min(amounts),
        highest_bid_amount=max(amounts),
        leader=elect_winner(bids),
    )


def fingerprint(bids: Iterable[BidView]) -> frozenset[tuple[str, Decimal]]:
    """Identity of a bid set, used to detect concurrent changes between read and write."""
    return frozenset((b.id, b.amount) for b in bids)


def parse_amount(value: Any) -> Decimal:
    """Validate a bid amount: numeric, finite, strictly positive."""
    if value is None or isinstance(value, bool):
        raise InvalidAmount("Bid amount is required")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidAmount(f"Bid amount must be a number, got {value!r}")
    if not amount.is_finite():
        raise InvalidAmount("Bid amount must be a finite number")
    if amount <= 0:
        raise InvalidAmount("Bid amount must be greater than 0")
    return amount.quantize(_CENTS)
