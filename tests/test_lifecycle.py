from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.models import AuditLogEntry, Bid, Notification
from app.models.base import utcnow
from app.services.audit import StatusChanged, parse_details
from app.services.bids import get_auction, record_or_update_bid, update_bid_amount
from app.services.errors import Conflict, InvalidStatus, NotFound
from app.services.lifecycle import change_status, close_expired_auctions


async def _auction_with_winner(session, make_auction, make_profile, **fields):
    auction = await make_auction(**fields)
    winner = await make_profile("driver", username="winner")
    other = await make_profile("driver", username="other")
    await record_or_update_bid(session, auction.id, winner.id, 300)
    await record_or_update_bid(session, auction.id, other.id, 450)
    return auction, winner


@pytest.mark.asyncio
async def test_cancel_clears_winner(session, make_auction, make_profile, feed):
    auction, _ = await _auction_with_winner(session, make_auction, make_profile)

    result = await change_status(session, auction.id, "cancelled", feed=feed)

    assert result.cleared_winner is True
    state = await get_auction(session, auction.id)
    assert state.status == "cancelled"
    assert state.winner_id is None
    assert state.winning_bid_id is None
    flagged = await session.scalar(select(Bid.id).where(Bid.auction_id == auction.id, Bid.is_winning_bid.is_(True)))
    assert flagged is None

    entry = (
        await session.execute(
            select(AuditLogEntry).where(AuditLogEntry.action.like("Auction status changed%"))
        )
    ).scalars().one()
    assert entry.action == "Auction status changed from active to cancelled"
    details = parse_details(entry.details)
    assert isinstance(details, StatusChanged)
    assert details.cleared_winner is True


@pytest.mark.asyncio
async def test_cancel_without_winner(session, make_auction, feed):
    auction = await make_auction()
    result = await change_status(session, auction.id, "cancelled", feed=feed)
    assert result.cleared_winner is False


@pytest.mark.asyncio
async def test_complete_opens_trip_and_notifies(session, make_auction, make_profile, feed):
    auction, winner = await _auction_with_winner(session, make_auction, make_profile)

    result = await change_status(session, auction.id, "completed", feed=feed)

    assert result.trip is not None
    assert result.trip.driver_id == winner.id
    assert result.trip.consigner_id == auction.created_by
    assert result.trip.amount == Decimal("300")
    assert result.trip.status == "in_progress"
    notifications = (
        await session.execute(select(Notification).where(Notification.auction_id == auction.id))
    ).scalars().all()
    assert {n.user_id for n in notifications} == {winner.id, auction.created_by}
    assert {n.type for n in notifications} == {"auction_won", "auction_completed"}


@pytest.mark.asyncio
async def test_complete_without_winner_has_no_trip(session, make_auction, feed):
    auction = await make_auction()
    result = await change_status(session, auction.id, "completed", feed=feed)
    assert result.trip is None
    assert result.notified_user_ids == []


@pytest.mark.asyncio
async def test_terminal_status_is_final(session, make_auction, make_profile, feed):
    auction, _ = await _auction_with_winner(session, make_auction, make_profile)
    await change_status(session, auction.id, "completed", feed=feed)

    with pytest.raises(Conflict):
        await change_status(session, auction.id, "cancelled", feed=feed)
    with pytest.raises(Conflict):
        await change_status(session, auction.id, "active", feed=feed)

    state = await get_auction(session, auction.id)
    assert state.status == "completed"
    assert state.winner_id is not None


@pytest.mark.asyncio
async def test_same_status_is_conflict(session, make_auction, feed):
    auction = await make_auction()
    with pytest.raises(Conflict):
        await change_status(session, auction.id, "active", feed=feed)


@pytest.mark.asyncio
async def test_unknown_status_rejected(session, make_auction, feed):
    auction = await make_auction()
    with pytest.raises(InvalidStatus):
        await change_status(session, auction.id, "paused", feed=feed)


@pytest.mark.asyncio
async def test_missing_auction(session, feed):
    with pytest.raises(NotFound):
        await change_status(session, "missing", "cancelled", feed=feed)


@pytest.mark.asyncio
async def test_close_expired_auctions(session, make_auction, make_profile, feed):
    past = utcnow() - timedelta(minutes=5)
    with_winner, _ = await _auction_with_winner(session, make_auction, make_profile, end_time=past)
    without_bids = await make_auction(end_time=past)
    running = await make_auction()

    closed = await close_expired_auctions(session, feed=feed)

    assert closed == {"completed": [with_winner.id], "incomplete": [without_bids.id]}
    assert (await get_auction(session, with_winner.id)).status == "completed"
    assert (await get_auction(session, without_bids.id)).status == "incomplete"
    assert (await get_auction(session, running.id)).status == "active"

    entry = (
        await session.execute(
            select(AuditLogEntry).where(
                AuditLogEntry.auction_id == without_bids.id,
                AuditLogEntry.action.like("Auction status changed%"),
            )
        )
    ).scalars().one()
    assert parse_details(entry.details).actor == "system"


@pytest.mark.asyncio
async def test_completed_auction_keeps_trip_winner(session, make_auction, make_profile, feed):
    auction, winner = await _auction_with_winner(session, make_auction, make_profile)
    result = await change_status(session, auction.id, "completed", feed=feed)
    winning_bid_id = (await get_auction(session, auction.id)).winning_bid_id

    bid = await session.scalar(select(Bid).where(Bid.id == winning_bid_id))
    await update_bid_amount(session, bid.id, auction.id, 900, feed=feed)

    state = await get_auction(session, auction.id)
    assert state.status == "completed"
    assert state.winner_id == winner.id == result.trip.driver_id
    assert state.winning_bid_id == winning_bid_id
    assert state.lowest_bid_amount == Decimal("450")
    assert state.highest_bid_amount == Decimal("900")
