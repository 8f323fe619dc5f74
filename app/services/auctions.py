"""Auction creation, field edits and snapshot reads for the admin dashboard."""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models import Auction, Bid, Profile
from app.models.base import as_utc, utcnow
from app.schemas import AuctionRead, AuctionSnapshot, BidRead
from app.services.audit import AuctionCreated, AuctionUpdated, FieldChange, write_audit
from app.services.bids import get_auction
from app.services.errors import InvalidInput, NotFound, store_guard
from app.sync.feed import ChangeEvent, ChangeFeed, publish_changes
from core.config import get_settings

logger = logging.getLogger(__name__)

MIN_DURATION_MINUTES = 5
MAX_DURATION_MINUTES = 7 * 24 * 60

VEHICLE_TYPES = {
    "three_wheeler": "Three Wheeler",
    "pickup_truck": "Pickup Truck",
    "mini_truck": "Mini Truck",
    "medium_truck": "Medium Truck",
    "large_truck": "Large Truck",
}

BODY_TYPES = {
    "container": "Container",
    "top_open": "Top Open",
    "trailer": "Trailer",
}

UPDATABLE_FIELDS = (
    "title",
    "description",
    "vehicle_type",
    "start_time",
    "end_time",
    "consignment_date",
    "length_value",
    "length_unit",
    "body_type",
    "wheel_type",
)
_DATE_FIELDS = {"start_time", "end_time", "consignment_date"}


class AuctionDraft(BaseModel):
    """Input of the create-auction form."""

    model_config = ConfigDict(populate_by_name=True)

    pickup: str | None = Field(None, alias="from")
    destination: str | None = Field(None, alias="to")
    description: str | None = None
    weight: str | float | None = None
    weight_unit: str = Field("kg", alias="weightUnit")
    vehicle_type: str | None = Field(None, alias="vehicleType")
    duration: int | None = None
    consignment_date: datetime | None = Field(None, alias="consignmentDate")
    length_value: Decimal | None = Field(None, alias="lengthValue")
    length_unit: str | None = Field(None, alias="lengthUnit")
    body_type: str | None = Field(None, alias="bodyType")
    wheel_type: int | None = Field(None, alias="wheelType")


@dataclass
class AuctionUpdateResult:
    auction: Auction
    updated_fields: list[str]


def _day(value: datetime) -> date:
    return as_utc(value).date()


def validate_draft(draft: AuctionDraft, now: datetime) -> list[str]:
    """Collect every problem with the draft instead of stopping at the first."""
    errors = []
    if not (draft.pickup or "").strip():
        errors.append("Pickup location is required")
    if not (draft.destination or "").strip():
        errors.append("Destination is required")
    if not (draft.description or "").strip():
        errors.append("Description is required")
    if draft.weight is None or not str(draft.weight).strip():
        errors.append("Weight is required")
    else:
        try:
            weight = Decimal(str(draft.weight).strip())
        except InvalidOperation:
            weight = None
        if weight is None or not weight.is_finite() or weight <= 0:
            errors.append("Please enter a valid weight")
    if not draft.vehicle_type:
        errors.append("Vehicle type is required")
    if draft.duration is None:
        errors.append("Duration is required")
    elif draft.duration < MIN_DURATION_MINUTES:
        errors.append(f"Duration must be at least {MIN_DURATION_MINUTES} minutes")
    elif draft.duration > MAX_DURATION_MINUTES:
        errors.append("Duration cannot exceed 7 days")
    if draft.consignment_date is None:
        errors.append("Consignment date is required")
    elif _day(draft.consignment_date) < _day(now):
        errors.append("Consignment date cannot be in the past")
    return errors


def compose_description(draft: AuctionDraft) -> str:
    parts = [
        draft.description.strip(),
        f"Weight: {draft.weight} {draft.weight_unit}",
        f"Vehicle Type: {VEHICLE_TYPES.get(draft.vehicle_type, draft.vehicle_type)}",
    ]
    if draft.length_value:
        parts.append(f"Length: {draft.length_value} {draft.length_unit or 'meter'}")
    if draft.body_type and draft.body_type != "top_open":
        parts.append(f"Body Type: {BODY_TYPES.get(draft.body_type, draft.body_type)}")
    if draft.vehicle_type == "large_truck" and draft.wheel_type and draft.wheel_type != 4:
        parts.append(f"Wheel Type: {draft.wheel_type} Wheeler")
    return "\n".join(parts)


async def get_house_consigner(session: AsyncSession) -> Profile:
    """Admin-created auctions are owned by the consigner with the configured phone."""
    phone = get_settings().admin_consigner_phone
    stmt = select(Profile).where(Profile.phone_number == phone, Profile.role == "consigner").limit(1)
    consigner = (await session.execute(stmt)).scalars().first()
    if consigner is None:
        raise NotFound(
            f"Admin consigner profile not found. Please ensure profile with phone number {phone} "
            'exists with role "consigner".'
        )
    return consigner


async def create_auction(
    session: AsyncSession,
    draft: AuctionDraft,
    now: datetime | None = None,
    *,
    feed: ChangeFeed | None = None,
) -> Auction:
    """Create an active auction owned by the house consigner.

    Raises:
        InvalidInput: with every validation problem joined in one message.
        NotFound: the house consigner profile is missing.
    """
    now = now or utcnow()
    errors = validate_draft(draft, now)
    if errors:
        raise InvalidInput("Validation errors: " + ", ".join(errors))

    with store_guard("creating auction"):
        consigner = await get_house_consigner(session)

        keep_body = draft.body_type and draft.body_type != "top_open"
        keep_wheels = draft.vehicle_type == "large_truck" and draft.wheel_type and draft.wheel_type != 4
        auction = Auction(
            title=f"Delivery from {draft.pickup.strip()} to {draft.destination.strip()}",
            description=compose_description(draft),
            vehicle_type=draft.vehicle_type,
            start_time=now,
            end_time=now + timedelta(minutes=draft.duration),
            consignment_date=draft.consignment_date,
            status="active",
            created_by=consigner.id,
            length_value=draft.length_value or None,
            length_unit=(draft.length_unit or "meter") if draft.length_value else None,
            body_type=draft.body_type if keep_body else None,
            wheel_type=draft.wheel_type if keep_wheels else None,
        )
        session.add(auction)
        await session.commit()

        await write_audit(
            session,
            AuctionCreated(
                consigner_id=consigner.id,
                duration_minutes=draft.duration,
                auction_data=AuctionRead.model_validate(auction).model_dump(mode="json"),
            ),
            auction_id=auction.id,
        )
        await publish_changes(
            ChangeEvent("auctions", "INSERT", auction.id, auction.id, consigner.id),
            feed=feed,
        )
        logger.info("Auction created", extra={"auction_id": auction.id, "consigner_id": consigner.id})
        return auction


def _coerce(field: str, value: Any) -> Any:
    if value is None:
        return None
    try:
        if field in _DATE_FIELDS:
            return value if isinstance(value, datetime) else datetime.fromisoformat(str(value))
        if field == "length_value":
            return Decimal(str(value))
        if field == "wheel_type":
            return int(value)
    except (TypeError, ValueError, InvalidOperation) as e:
        raise InvalidInput(f"Invalid value for {field}: {value!r}") from e
    return value


def _check_dates(updates: dict[str, Any], today: date) -> None:
    consignment = updates.get("consignment_date")
    end_time = updates.get("end_time")
    if consignment is not None and _day(consignment) < today:
        raise InvalidInput("Consignment date cannot be in the past")
    if end_time is not None and _day(end_time) < today:
        raise InvalidInput("Auction end time cannot be in the past")


def _check_against_stored(auction: Auction, updates: dict[str, Any]) -> None:
    consignment = updates.get("consignment_date")
    end_time = updates.get("end_time")
    if end_time is not None:
        limit = consignment if consignment is not None else auction.consignment_date
        if limit is not None and _day(end_time) > _day(limit):
            raise InvalidInput("Auction must end before or on the consignment date")
    elif consignment is not None and auction.end_time is not None:
        if _day(auction.end_time) >= _day(consignment):
            raise InvalidInput("Consignment date must be after the auction end date")


async def update_auction(
    session: AsyncSession,
    auction_id: str,
    updates: dict[str, Any],
    now: datetime | None = None,
    *,
    feed: ChangeFeed | None = None,
) -> AuctionUpdateResult:
    """Apply admin edits to the editable auction fields; unknown keys are ignored."""
    if not updates:
        raise InvalidInput("No updates provided")
    now = now or utcnow()
    values = {key: _coerce(key, value) for key, value in updates.items() if key in UPDATABLE_FIELDS}
    if not values:
        raise InvalidInput("No valid fields to update")
    _check_dates(values, _day(now))

    with store_guard("updating auction"):
        auction = await get_auction(session, auction_id)
        if auction is None:
            raise NotFound("Auction not found")
        _check_against_stored(auction, values)

        changes = {key: FieldChange(from_=getattr(auction, key), to=value) for key, value in values.items()}
        await session.execute(
            update(Auction).where(Auction.id == auction_id).values(**values, updated_at=utcnow())
        )
        await session.commit()

        await write_audit(session, AuctionUpdated(changes=changes), auction_id=auction_id)
        auction = await get_auction(session, auction_id)
        if auction is None:
            raise NotFound("Auction not found")
        await publish_changes(
            ChangeEvent("auctions", "UPDATE", auction_id, auction_id, auction.created_by),
            feed=feed,
        )
        logger.info("Auction updated", extra={"auction_id": auction_id, "rows": len(values)})
        return AuctionUpdateResult(auction=auction, updated_fields=list(values))


def _bid_read(bid: Bid) -> BidRead:
    read = BidRead.model_validate(bid)
    read.bidder_name = bid.bidder.display_name if bid.bidder else None
    return read


def _bids_query():
    return (
        select(Bid)
        .options(selectinload(Bid.bidder))
        .order_by(Bid.amount, Bid.created_at, Bid.id)
        .execution_options(populate_existing=True)
    )


async def load_auction_snapshot(session: AsyncSession, auction_id: str) -> AuctionSnapshot:
    """Full current state of one auction: the row plus its bids, lowest first."""
    with store_guard("loading auction"):
        auction = await get_auction(session, auction_id)
        if auction is None:
            raise NotFound("Auction not found")
        bids = (await session.execute(_bids_query().where(Bid.auction_id == auction_id))).scalars().all()
    return AuctionSnapshot(
        auction=AuctionRead.model_validate(auction),
        bids=[_bid_read(bid) for bid in bids],
        fetched_at=utcnow(),
    )


async def list_auction_snapshots(
    session: AsyncSession,
    consigner_id: str | None = None,
    status: str | None = None,
) -> list[AuctionSnapshot]:
    """Snapshots of a collection of auctions, newest first."""
    stmt = select(Auction).order_by(Auction.created_at.desc()).execution_options(populate_existing=True)
    if consigner_id:
        stmt = stmt.where(Auction.created_by == consigner_id)
    if status:
        stmt = stmt.where(Auction.status == status)

    with store_guard("listing auctions"):
        auctions = (await session.execute(stmt)).scalars().all()
        by_auction: dict[str, list[BidRead]] = defaultdict(list)
        if auctions:
            ids = [a.id for a in auctions]
            bids = (await session.execute(_bids_query().where(Bid.auction_id.in_(ids)))).scalars().all()
            for bid in bids:
                by_auction[bid.auction_id].append(_bid_read(bid))

    fetched_at = utcnow()
    return [
        AuctionSnapshot(auction=AuctionRead.model_validate(a), bids=by_auction[a.id], fetched_at=fetched_at)
        for a in auctions
    ]
