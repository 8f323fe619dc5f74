"""Trip lifecycle after an auction is won.

A trip opens ``in_progress`` when its auction completes and is then either
``completed`` (delivered) or ``cancelled``. Both end states stamp
``completed_at`` and are final.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Trip
from app.models.base import utcnow
from app.services.audit import TripDeleted, TripNotesUpdated, TripStatusChanged, write_audit
from app.services.errors import Conflict, InvalidInput, InvalidStatus, NotFound, store_guard
from app.sync.feed import ChangeEvent, ChangeFeed, publish_changes

logger = logging.getLogger(__name__)


class TripStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TRIP_TRANSITIONS: dict[TripStatus, frozenset[TripStatus]] = {
    TripStatus.IN_PROGRESS: frozenset({TripStatus.COMPLETED, TripStatus.CANCELLED}),
}


@dataclass
class TripStatusChangeResult:
    trip: Trip
    previous_status: str
    new_status: str


def parse_trip_status(value: object) -> TripStatus:
    try:
        return TripStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in TripStatus)
        raise InvalidStatus(f"Invalid trip status: {value!r}. Must be one of: {allowed}") from None


async def get_trip(session: AsyncSession, trip_id: str) -> Trip | None:
    stmt = select(Trip).where(Trip.id == trip_id).execution_options(populate_existing=True)
    return (await session.execute(stmt)).scalar_one_or_none()


def _trip_event(trip: Trip, event: str) -> ChangeEvent:
    return ChangeEvent("trips", event, trip.id, trip.auction_id, trip.consigner_id)


async def change_trip_status(
    session: AsyncSession,
    trip_id: str,
    new_status: object,
    *,
    changed_by: str | None = None,
    now: datetime | None = None,
    feed: ChangeFeed | None = None,
) -> TripStatusChangeResult:
    """Close an in-progress trip as ``completed`` or ``cancelled``.

    Raises:
        InvalidStatus: unrecognised status value.
        NotFound: trip missing.
        Conflict: the trip is already closed.
    """
    target = parse_trip_status(new_status)
    now = now or utcnow()

    with store_guard("changing trip status"):
        trip = await get_trip(session, trip_id)
        if trip is None:
            raise NotFound("Trip not found")

        previous = TripStatus(trip.status)
        if target not in TRIP_TRANSITIONS.get(previous, frozenset()):
            raise Conflict(f"Cannot change trip status from {previous.value} to {target.value}")

        result = await session.execute(
            update(Trip)
            .where(Trip.id == trip_id, Trip.status == previous.value)
            .values(status=target.value, completed_at=now, updated_at=now)
        )
        await session.commit()
        if result.rowcount == 0:
            raise Conflict("Trip status was changed concurrently")

        trip = await get_trip(session, trip_id)
        if trip is None:
            raise NotFound("Trip not found")

        await write_audit(
            session,
            TripStatusChanged(
                trip_id=trip.id,
                previous_status=previous.value,
                new_status=target.value,
                changed_by=changed_by,
            ),
            auction_id=trip.auction_id,
        )
        await publish_changes(_trip_event(trip, "UPDATE"), feed=feed)
        logger.info(
            "Trip status changed",
            extra={"trip_id": trip.id, "previous_status": previous.value, "status": target.value},
        )
        return TripStatusChangeResult(trip=trip, previous_status=previous.value, new_status=target.value)


async def update_delivery_notes(
    session: AsyncSession,
    trip_id: str,
    notes: object,
    *,
    feed: ChangeFeed | None = None,
) -> Trip:
    """Save the delivery notes; blank notes clear them."""
    if notes is not None and not isinstance(notes, str):
        raise InvalidInput("Delivery notes must be text")
    notes = (notes or "").strip() or None

    with store_guard("saving delivery notes"):
        trip = await get_trip(session, trip_id)
        if trip is None:
            raise NotFound("Trip not found")

        await session.execute(
            update(Trip).where(Trip.id == trip_id).values(delivery_notes=notes, updated_at=utcnow())
        )
        await session.commit()
        trip = await get_trip(session, trip_id)
        if trip is None:
            raise NotFound("Trip not found")

        await write_audit(
            session,
            TripNotesUpdated(trip_id=trip.id, delivery_notes=notes),
            auction_id=trip.auction_id,
        )
        await publish_changes(_trip_event(trip, "UPDATE"), feed=feed)
        return trip


async def delete_trip(
    session: AsyncSession,
    trip_id: str,
    *,
    feed: ChangeFeed | None = None,
) -> Trip:
    """Delete one trip; the auction and its bids stay as they are."""
    with store_guard("deleting trip"):
        trip = await get_trip(session, trip_id)
        if trip is None:
            raise NotFound("Trip not found")

        await session.execute(delete(Trip).where(Trip.id == trip_id))
        await session.commit()

        await write_audit(
            session,
            TripDeleted(trip_id=trip.id, trip_status=trip.status, driver_id=trip.driver_id),
            auction_id=trip.auction_id,
        )
        await publish_changes(_trip_event(trip, "DELETE"), feed=feed)
        logger.info("Trip deleted", extra={"trip_id": trip.id, "auction_id": trip.auction_id})
        return trip
