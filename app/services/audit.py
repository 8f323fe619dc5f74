"""Typed audit log entries.

Every administrative or system action writes exactly one ``AuditLogEntry``.
The ``details`` column holds one of the variants below, discriminated by
``kind``; all variants carry a timestamp and an actor marker.
"""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import AuditLogEntry
from app.models.base import utcnow

logger = logging.getLogger(__name__)

Actor = Literal["admin", "system"]


class _AuditDetails(BaseModel):
    actor: Actor = "admin"
    timestamp: datetime = Field(default_factory=utcnow)

    def action(self) -> str:  # pragma: no cover - overridden
        raise NotImplementedError


class AuctionCreated(_AuditDetails):
    kind: Literal["auction_created"] = "auction_created"
    consigner_id: str
    duration_minutes: int
    auction_data: dict[str, Any]

    def action(self) -> str:
        return "Auction created via admin dashboard"


class FieldChange(BaseModel):
    from_: Any = Field(None, alias="from")
    to: Any = None

    model_config = {"populate_by_name": True}


class AuctionUpdated(_AuditDetails):
    kind: Literal["auction_updated"] = "auction_updated"
    changes: dict[str, FieldChange]

    def action(self) -> str:
        return "Auction details updated via admin API"


class StatusChanged(_AuditDetails):
    kind: Literal["status_changed"] = "status_changed"
    previous_status: str
    new_status: str
    changed_by: str | None = None
    cleared_winner: bool = False
    trip_id: str | None = None

    def action(self) -> str:
        return f"Auction status changed from {self.previous_status} to {self.new_status}"


class BidRecorded(_AuditDetails):
    kind: Literal["bid_recorded"] = "bid_recorded"
    bid_id: str
    bidder: str | None = None
    previous_amount: Decimal | None = None
    new_amount: Decimal
    was_winning_bid: bool = False
    reelected: bool = False
    winning_bid_id: str | None = None

    def action(self) -> str:
        if self.previous_amount is None:
            return "Bid placed via admin API"
        return "Bid amount updated via admin API"


class BidDeleted(_AuditDetails):
    kind: Literal["bid_deleted"] = "bid_deleted"
    deleted_bid_id: str
    deleted_bid_amount: Decimal
    deleted_bid_user: str | None = None
    was_winning_bid: bool = False

    def action(self) -> str:
        return "Bid deleted via admin API"


class TripStatusChanged(_AuditDetails):
    kind: Literal["trip_status_changed"] = "trip_status_changed"
    trip_id: str
    previous_status: str
    new_status: str
    changed_by: str | None = None

    def action(self) -> str:
        return f"Trip status changed from {self.previous_status} to {self.new_status}"


class TripNotesUpdated(_AuditDetails):
    kind: Literal["trip_notes_updated"] = "trip_notes_updated"
    trip_id: str
    delivery_notes: str | None = None

    def action(self) -> str:
        return "Trip delivery notes updated via admin API"


class TripDeleted(_AuditDetails):
    kind: Literal["trip_deleted"] = "trip_deleted"
    trip_id: str
    trip_status: str
    driver_id: str

    def action(self) -> str:
        return "Trip deleted via admin API"


AuditDetails = Annotated[
    Union[
        AuctionCreated,
        AuctionUpdated,
        StatusChanged,
        BidRecorded,
        BidDeleted,
        TripStatusChanged,
        TripNotesUpdated,
        TripDeleted,
    ],
    Field(discriminator="kind"),
]

_details_adapter: TypeAdapter[AuditDetails] = TypeAdapter(AuditDetails)


def parse_details(raw: dict[str, Any]) -> AuditDetails:
    """Load a stored ``details`` payload back into its typed variant."""
    return _details_adapter.validate_python(raw)


async def write_audit(
    session: AsyncSession,
    details: AuditDetails,
    *,
    auction_id: str | None = None,
    user_id: str | None = None,
) -> AuditLogEntry:
    """Insert one audit entry and commit it."""
    entry = AuditLogEntry(
        auction_id=auction_id,
        user_id=user_id,
        action=details.action(),
        details=details.model_dump(mode="json", by_alias=True),
    )
    session.add(entry)
    await session.commit()
    logger.info(
        entry.action,
        extra={"action": details.kind, "auction_id": auction_id, "user_id": user_id},
    )
    return entry
