import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import func, select, update

from app.models import AuditLogEntry, Auction, Bid
from app.services.audit import BidDeleted, BidRecorded, parse_details
from app.services.bids import (
    converge_aggregates,
    delete_bid,
    get_auction,
    record_or_update_bid,
    update_bid_amount,
)
from app.services.errors import Conflict, InvalidAmount, NotFound
from app.sync.feed import auction_topic


async def _winning_flags(session, auction_id):
    rows = await session.execute(
        select(Bid.id).where(Bid.auction_id == auction_id, Bid.is_winning_bid.is_(True))
    )
    return [row.id for row in rows]


@pytest.mark.asyncio
async def test_edit_and_delete_scenario(session, make_auction, make_profile, feed):
    auction = await make_auction()
    driver1 = await make_profile("driver", username="driver1")
    driver2 = await make_profile("driver", username="driver2")

    first = await record_or_update_bid(session, auction.id, driver1.id, 500, feed=feed)
    second = await record_or_update_bid(session, auction.id, driver2.id, 300, feed=feed)

    state = await get_auction(session, auction.id)
    assert state.winner_id == driver2.id
    assert state.winning_bid_id == second.bid.id
    assert state.bid_count == 2
    assert state.lowest_bid_amount == Decimal("300")
    assert state.highest_bid_amount == Decimal("500")

    # Winner raises its bid above the other driver: re-election
    result = await update_bid_amount(session, second.bid.id, auction.id, 600, feed=feed)
    assert result.was_winning_bid is True
    assert result.reelected is True
    state = await get_auction(session, auction.id)
    assert state.winner_id == driver1.id
    assert state.winning_bid_id == first.bid.id
    assert await _winning_flags(session, auction.id) == [first.bid.id]

    # Deleting the winning bid leaves the auction without a winner
    deleted = await delete_bid(session, first.bid.id, auction.id, feed=feed)
    assert deleted.was_winning_bid is True
    state = await get_auction(session, auction.id)
    assert state.winner_id is None
    assert state.winning_bid_id is None
    assert state.bid_count == 1
    assert state.lowest_bid_amount == Decimal("600")
    assert state.highest_bid_amount == Decimal("600")
    assert await _winning_flags(session, auction.id) == []


@pytest.mark.asyncio
async def test_second_bid_from_same_driver_updates_amount(session, make_auction, make_profile, feed):
    auction = await make_auction()
    driver = await make_profile("driver", username="driver")

    first = await record_or_update_bid(session, auction.id, driver.id, "450.50", feed=feed)
    again = await record_or_update_bid(session, auction.id, driver.id, 400, feed=feed)

    assert again.bid.id == first.bid.id
    assert again.previous_amount == Decimal("450.50")
    assert again.new_amount == Decimal("400.00")
    count = await session.scalar(select(func.count()).select_from(Bid).where(Bid.auction_id == auction.id))
    assert count == 1


@pytest.mark.asyncio
async def test_new_bid_requires_active_auction(session, make_auction, make_profile, make_bid, feed):
    auction = await make_auction(status="completed")
    driver = await make_profile("driver", username="late")
    with pytest.raises(Conflict):
        await record_or_update_bid(session, auction.id, driver.id, 100, feed=feed)

    # Corrections of existing bids stay possible
    other = await make_profile("driver", username="existing")
    bid = await make_bid(auction, other, 250)
    result = await update_bid_amount(session, bid.id, auction.id, 200, feed=feed)
    assert result.new_amount == Decimal("200.00")


@pytest.mark.asyncio
async def test_invalid_amount_rejected_before_store(session, make_auction, make_profile, feed):
    auction = await make_auction()
    driver = await make_profile("driver", username="driver")
    with pytest.raises(InvalidAmount):
        await record_or_update_bid(session, auction.id, driver.id, "-10", feed=feed)
    with pytest.raises(InvalidAmount):
        await record_or_update_bid(session, auction.id, driver.id, "ten", feed=feed)
    assert await session.scalar(select(func.count()).select_from(Bid)) == 0


@pytest.mark.asyncio
async def test_bidder_must_be_a_driver(session, make_auction, make_profile, feed):
    auction = await make_auction()
    consigner = await make_profile("consigner", username="not-a-driver")
    with pytest.raises(NotFound):
        await record_or_update_bid(session, auction.id, consigner.id, 100, feed=feed)


@pytest.mark.asyncio
async def test_bid_must_belong_to_auction(session, make_auction, make_profile, make_bid, feed):
    auction = await make_auction()
    other_auction = await make_auction()
    driver = await make_profile("driver", username="driver")
    bid = await make_bid(auction, driver, 300)

    with pytest.raises(NotFound):
        await update_bid_amount(session, bid.id, other_auction.id, 200, feed=feed)
    with pytest.raises(NotFound):
        await delete_bid(session, bid.id, other_auction.id, feed=feed)


@pytest.mark.asyncio
async def test_converge_repairs_stale_aggregates(session, make_auction, make_profile, make_bid):
    auction = await make_auction()
    driver1 = await make_profile("driver", username="driver1")
    driver2 = await make_profile("driver", username="driver2")
    await make_bid(auction, driver1, 700)
    cheapest = await make_bid(auction, driver2, 650)

    await session.execute(
        update(Auction).where(Auction.id == auction.id).values(bid_count=99, lowest_bid_amount=1)
    )
    await session.commit()

    outcome = await converge_aggregates(session, auction.id, elect=True)
    assert outcome.reelected is True
    assert outcome.winning_bid_id == cheapest.id
    state = await get_auction(session, auction.id)
    assert state.bid_count == 2
    assert state.lowest_bid_amount == Decimal("650")
    assert state.highest_bid_amount == Decimal("700")


@pytest.mark.asyncio
async def test_converge_without_election_keeps_auction_winnerless(session, make_auction, make_profile, make_bid):
    auction = await make_auction()
    driver = await make_profile("driver", username="driver")
    await make_bid(auction, driver, 700)

    outcome = await converge_aggregates(session, auction.id, elect=False)
    assert outcome.winning_bid_id is None
    state = await get_auction(session, auction.id)
    assert state.winner_id is None
    assert state.bid_count == 1


@pytest.mark.asyncio
async def test_converge_on_missing_auction_is_noop(session):
    assert await converge_aggregates(session, "missing", elect=True) is None


@pytest.mark.asyncio
async def test_no_election_on_cancelled_auction(session, make_auction, make_profile, make_bid, feed):
    auction = await make_auction(status="cancelled")
    driver = await make_profile("driver", username="driver")
    bid = await make_bid(auction, driver, 300)

    await update_bid_amount(session, bid.id, auction.id, 250, feed=feed)
    state = await get_auction(session, auction.id)
    assert state.winner_id is None
    assert state.lowest_bid_amount == Decimal("250")


@pytest.mark.asyncio
async def test_audit_entries_are_typed(session, make_auction, make_profile, feed):
    auction = await make_auction()
    driver = await make_profile("driver", username="driver1")

    placed = await record_or_update_bid(session, auction.id, driver.id, 500, feed=feed)
    await delete_bid(session, placed.bid.id, auction.id, feed=feed)

    entries = (
        await session.execute(
            select(AuditLogEntry).where(AuditLogEntry.auction_id == auction.id).order_by(AuditLogEntry.created_at)
        )
    ).scalars().all()
    assert [e.action for e in entries] == ["Bid placed via admin API", "Bid deleted via admin API"]

    recorded = parse_details(entries[0].details)
    assert isinstance(recorded, BidRecorded)
    assert recorded.bidder == "driver1"
    assert recorded.actor == "admin"
    removed = parse_details(entries[1].details)
    assert isinstance(removed, BidDeleted)
    assert removed.deleted_bid_amount == Decimal("500")
    assert removed.was_winning_bid is True


@pytest.mark.asyncio
async def test_mutations_notify_auction_topic(session, make_auction, make_profile, feed):
    auction = await make_auction()
    driver = await make_profile("driver", username="driver")
    subscription = await feed.subscribe(auction_topic(auction.id))

    await record_or_update_bid(session, auction.id, driver.id, 500, feed=feed)

    first = await asyncio.wait_for(subscription.__anext__(), timeout=1)
    second = await asyncio.wait_for(subscription.__anext__(), timeout=1)
    assert (first.table, first.event) == ("auction_bids", "INSERT")
    assert (second.table, second.event) == ("auctions", "UPDATE")
    await subscription.close()
