from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.models import AuditLogEntry, Trip
from app.models.base import as_utc
from app.services.audit import TripDeleted, TripNotesUpdated, TripStatusChanged, parse_details
from app.services.errors import Conflict, InvalidInput, InvalidStatus, NotFound
from app.services.trips import change_trip_status, delete_trip, get_trip, update_delivery_notes
from app.sync.feed import auction_topic


@pytest.fixture
def make_trip(session, make_auction, make_profile):
    async def _make(**fields) -> Trip:
        auction = await make_auction(status="completed")
        driver = await make_profile("driver", username="driver")
        trip = Trip(
            auction_id=auction.id,
            driver_id=driver.id,
            consigner_id=auction.created_by,
            amount=Decimal("300"),
            **fields,
        )
        session.add(trip)
        await session.commit()
        return trip

    return _make


async def _audit_entries(session, auction_id):
    return (
        await session.execute(select(AuditLogEntry).where(AuditLogEntry.auction_id == auction_id))
    ).scalars().all()


@pytest.mark.asyncio
async def test_complete_trip_stamps_completion(session, make_trip, feed):
    trip = await make_trip()
    subscription = await feed.subscribe(auction_topic(trip.auction_id))
    now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

    result = await change_trip_status(session, trip.id, "completed", changed_by="ops@example.com", now=now, feed=feed)

    assert result.previous_status == "in_progress"
    assert result.new_status == "completed"
    stored = await get_trip(session, trip.id)
    assert stored.status == "completed"
    assert as_utc(stored.completed_at) == now

    event = await subscription.__anext__()
    assert (event.table, event.event, event.record_id) == ("trips", "UPDATE", trip.id)
    await subscription.close()

    [entry] = await _audit_entries(session, trip.auction_id)
    assert entry.action == "Trip status changed from in_progress to completed"
    details = parse_details(entry.details)
    assert isinstance(details, TripStatusChanged)
    assert details.changed_by == "ops@example.com"


@pytest.mark.asyncio
async def test_cancel_trip_stamps_completion(session, make_trip, feed):
    trip = await make_trip()
    await change_trip_status(session, trip.id, "cancelled", feed=feed)

    stored = await get_trip(session, trip.id)
    assert stored.status == "cancelled"
    assert stored.completed_at is not None


@pytest.mark.asyncio
async def test_closed_trip_is_final(session, make_trip, feed):
    trip = await make_trip()
    await change_trip_status(session, trip.id, "completed", feed=feed)

    with pytest.raises(Conflict):
        await change_trip_status(session, trip.id, "cancelled", feed=feed)
    with pytest.raises(Conflict):
        await change_trip_status(session, trip.id, "in_progress", feed=feed)
    assert (await get_trip(session, trip.id)).status == "completed"


@pytest.mark.asyncio
@pytest.mark.parametrize("value", ["delivered", "", None, 3])
async def test_unknown_trip_status_rejected(session, make_trip, feed, value):
    trip = await make_trip()
    with pytest.raises(InvalidStatus):
        await change_trip_status(session, trip.id, value, feed=feed)
    assert (await get_trip(session, trip.id)).status == "in_progress"


@pytest.mark.asyncio
async def test_missing_trip(session, feed):
    with pytest.raises(NotFound):
        await change_trip_status(session, "missing", "completed", feed=feed)
    with pytest.raises(NotFound):
        await update_delivery_notes(session, "missing", "left at gate", feed=feed)
    with pytest.raises(NotFound):
        await delete_trip(session, "missing", feed=feed)


@pytest.mark.asyncio
async def test_delivery_notes_saved_and_cleared(session, make_trip, feed):
    trip = await make_trip()

    saved = await update_delivery_notes(session, trip.id, "  Unloaded at dock 4  ", feed=feed)
    assert saved.delivery_notes == "Unloaded at dock 4"

    cleared = await update_delivery_notes(session, trip.id, "   ", feed=feed)
    assert cleared.delivery_notes is None

    entries = await _audit_entries(session, trip.auction_id)
    assert len(entries) == 2
    assert all(isinstance(parse_details(e.details), TripNotesUpdated) for e in entries)

    with pytest.raises(InvalidInput):
        await update_delivery_notes(session, trip.id, {"text": "x"}, feed=feed)


@pytest.mark.asyncio
async def test_delete_trip_keeps_auction(session, make_trip, feed):
    trip = await make_trip()
    await delete_trip(session, trip.id, feed=feed)

    assert await get_trip(session, trip.id) is None
    [entry] = await _audit_entries(session, trip.auction_id)
    details = parse_details(entry.details)
    assert isinstance(details, TripDeleted)
    assert details.trip_status == "in_progress"
