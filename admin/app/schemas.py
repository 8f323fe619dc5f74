from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from app.schemas import AuctionRead, BidRead, TripRead


class TokenData(BaseModel):
    user_id: str | None = None
    scopes: list[str] = []


class Token(BaseModel):
    access_token: str
    token_type: str


class _Request(BaseModel):
    # Тела запросов принимают и snake_case, и camelCase
    model_config = ConfigDict(populate_by_name=True)


# Схемы для ставок
class BidAmountUpdate(_Request):
    bid_id: str = Field(alias="bidId")
    auction_id: str = Field(alias="auctionId")
    new_amount: Any = Field(None, alias="newAmount")


class BidRecord(_Request):
    auction_id: str = Field(alias="auctionId")
    driver_id: str = Field(alias="driverId")
    amount: Any = None


class BidDelete(_Request):
    bid_id: str = Field(alias="bidId")
    auction_id: str = Field(alias="auctionId")


class BidUpdateResponse(BaseModel):
    success: bool = True
    message: str
    bid: BidRead
    auction: AuctionRead
    old_amount: Decimal | None = None
    new_amount: Decimal
    was_winning: bool
    winner_update_needed: bool


class BidDeleteResponse(BaseModel):
    success: bool = True
    message: str
    deleted_bid_id: str
    deleted_amount: Decimal
    bidder: str | None = None
    was_winning: bool
    auction: AuctionRead


# Схемы для аукционов
class AuctionFieldsUpdate(_Request):
    auction_id: str = Field(alias="auctionId")
    updates: dict[str, Any] | None = None


class AuctionStatusUpdate(_Request):
    auction_id: str = Field(alias="auctionId")
    status: str | None = None


class AuctionResponse(BaseModel):
    success: bool = True
    message: str
    auction: AuctionRead


class AuctionCreateResponse(AuctionResponse):
    consigner_id: str
    duration_minutes: int


class AuctionUpdateResponse(AuctionResponse):
    updated_fields: list[str]


class AuctionStatusResponse(AuctionResponse):
    previous_status: str
    new_status: str
    cleared_winner: bool
    trip: TripRead | None = None


class CascadeStep(BaseModel):
    step: str
    rows: int


class DeleteResponse(BaseModel):
    success: bool = True
    message: str
    steps: list[CascadeStep] = []


# Схемы для поездок
class TripStatusUpdate(_Request):
    trip_id: str = Field(alias="tripId")
    status: str | None = None


class TripNotesUpdate(_Request):
    trip_id: str = Field(alias="tripId")
    delivery_notes: str | None = Field(None, alias="deliveryNotes")


class TripResponse(BaseModel):
    success: bool = True
    message: str
    trip: TripRead


class TripStatusResponse(TripResponse):
    previous_status: str
    new_status: str
