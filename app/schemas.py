"""Read models shared by the admin API and the sync layer."""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class BidRead(BaseModel):
    id: str
    auction_id: str
    user_id: str
    amount: Decimal
    is_winning_bid: bool = False
    created_at: datetime
    bidder_name: str | None = None

    class Config:
        from_attributes = True


class AuctionRead(BaseModel):
    id: str
    title: str
    description: str | None = None
    vehicle_type: str | None = None
    body_type: str | None = None
    wheel_type: int | None = None
    length_value: Decimal | None = None
    length_unit: str | None = None
    start_time: datetime
    end_time: datetime
    consignment_date: datetime | None = None
    status: str
    created_by: str
    winner_id: str | None = None
    winning_bid_id: str | None = None
    bid_count: int = 0
    lowest_bid_amount: Decimal | None = None
    highest_bid_amount: Decimal | None = None
    created_at: datetime
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class TripRead(BaseModel):
    id: str
    auction_id: str
    driver_id: str
    consigner_id: str
    amount: Decimal | None = None
    status: str
    completed_at: datetime | None = None
    delivery_notes: str | None = None

    class Config:
        from_attributes = True


class AuctionSnapshot(BaseModel):
    """Full current state of one auction; what a viewer pulls after a change."""

    auction: AuctionRead
    # Ставки отсортированы по сумме, победитель первым
    bids: list[BidRead] = Field(default_factory=list)
    fetched_at: datetime
