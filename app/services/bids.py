"""Bid consistency engine.

Keeps an auction's cached aggregates (bid count, lowest/highest amount) and
winner pointers accurate after any bid create, amount edit or delete.

The store only guarantees single-row atomicity, so every mutation is followed
by :func:`converge_aggregates`, which re-derives the aggregate from the full
current bid set, writes it in one row update and re-reads the bid set to
verify nothing changed in between.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Auction, Bid, Profile
from app.models.base import utcnow
from app.services.aggregates import AuctionAggregate, BidView, fingerprint, parse_amount, recompute
from app.services.audit import Actor, BidDeleted, BidRecorded, write_audit
from app.services.errors import Conflict, NotFound, store_guard
from app.sync.feed import ChangeEvent, ChangeFeed, publish_changes
from core.config import get_settings

logger = logging.getLogger(__name__)


@dataclass
class ConvergeOutcome:
    aggregate: AuctionAggregate
    winning_bid_id: str | None
    reelected: bool
    attempts: int


@dataclass
class BidMutationResult:
    bid: Bid
    auction: Auction
    previous_amount: Decimal | None
    new_amount: Decimal
    was_winning_bid: bool
    reelected: bool


@dataclass
class BidDeletionResult:
    bid_id: str
    amount: Decimal
    bidder_id: str
    bidder_name: str | None
    was_winning_bid: bool
    auction: Auction


async def get_auction(session: AsyncSession, auction_id: str) -> Auction | None:
    """Read an auction bypassing stale identity-map state."""
    stmt = (
        select(Auction)
        .where(Auction.id == auction_id)
        .execution_options(populate_existing=True)
    )
    return (await session.execute(stmt)).scalars().first()


async def get_bid(session: AsyncSession, bid_id: str) -> Bid | None:
    stmt = select(Bid).where(Bid.id == bid_id).execution_options(populate_existing=True)
    return (await session.execute(stmt)).scalars().first()


async def load_bid_views(session: AsyncSession, auction_id: str) -> list[BidView]:
    rows = (
        await session.execute(
            select(Bid.id, Bid.user_id, Bid.amount, Bid.created_at).where(Bid.auction_id == auction_id)
        )
    ).all()
    return [BidView.from_row(row) for row in rows]


async def converge_aggregates(
    session: AsyncSession,
    auction_id: str,
    *,
    elect: bool,
    max_attempts: int | None = None,
) -> ConvergeOutcome | None:
    """Recompute and store the auction aggregate from its current bids.

    Args:
        session: Async DB session.
        auction_id: Auction to recompute.
        elect: Re-elect the winner when the stored pointer is empty or no
            longer the lowest bid. Deletions pass ``False``: removing the
            winning bid leaves the auction without a winner.
            Only active auctions elect; a closed auction keeps the winner
            its trip was opened for.
        max_attempts: Bound on the read/write/verify loop.

    Returns:
        The outcome of the last attempt, or ``None`` if the auction no longer
        exists (treated as already removed).
    """
    if max_attempts is None:
        max_attempts = get_settings().aggregate_max_attempts

    outcome: ConvergeOutcome | None = None
    reelected = False
    for attempt in range(1, max_attempts + 1):
        bids = await load_bid_views(session, auction_id)
        aggregate = recompute(bids)
        auction = await get_auction(session, auction_id)
        if auction is None:
            logger.info("Auction vanished during recomputation", extra={"auction_id": auction_id})
            return None

        values: dict[str, Any] = aggregate.as_values()
        winning_bid_id = auction.winning_bid_id
        if winning_bid_id is not None and winning_bid_id not in {b.id for b in bids}:
            # Pointer to a bid removed concurrently
            values.update(winner_id=None, winning_bid_id=None)
            winning_bid_id = None

        leader = aggregate.leader
        if elect and auction.status == "active" and leader is not None and winning_bid_id != leader.id:
            values.update(winner_id=leader.user_id, winning_bid_id=leader.id)
            winning_bid_id = leader.id
            reelected = True

        values["updated_at"] = utcnow()
        await session.execute(update(Auction).where(Auction.id == auction_id).values(**values))
        await session.execute(
            update(Bid)
            .where(Bid.auction_id == auction_id, Bid.is_winning_bid.is_(True))
            .values(is_winning_bid=False)
        )
        if winning_bid_id is not None:
            await session.execute(update(Bid).where(Bid.id == winning_bid_id).values(is_winning_bid=True))
        await session.commit()

        outcome = ConvergeOutcome(aggregate, winning_bid_id, reelected, attempt)
        after = await load_bid_views(session, auction_id)
        if fingerprint(after) == fingerprint(bids):
            break
        logger.warning(
            "Bid set changed during recomputation, retrying",
            extra={"auction_id": auction_id, "attempt": attempt},
        )

    logger.info(
        "Auction aggregates recomputed",
        extra={
            "auction_id": auction_id,
            "bids_count": outcome.aggregate.bid_count if outcome else None,
            "reelected": reelected,
            "attempt": outcome.attempts if outcome else None,
        },
    )
    return outcome


async def _display_name(session: AsyncSession, profile_id: str) -> str | None:
    profile = await session.get(Profile, profile_id)
    return profile.username if profile else None


async def _finish_amount_write(
    session: AsyncSession,
    auction: Auction,
    bid: Bid,
    *,
    previous_amount: Decimal | None,
    new_amount: Decimal,
    actor: Actor,
    feed: ChangeFeed | None,
) -> BidMutationResult:
    was_winning = auction.winning_bid_id == bid.id
    outcome = await converge_aggregates(session, auction.id, elect=True)
    if outcome is None:
        raise NotFound("Auction not found")

    bidder = await _display_name(session, bid.user_id)
    await write_audit(
        session,
        BidRecorded(
            actor=actor,
            bid_id=bid.id,
            bidder=bidder,
            previous_amount=previous_amount,
            new_amount=new_amount,
            was_winning_bid=was_winning,
            reelected=outcome.reelected,
            winning_bid_id=outcome.winning_bid_id,
        ),
        auction_id=auction.id,
    )
    refreshed = await get_auction(session, auction.id) or auction
    await publish_changes(
        ChangeEvent("auction_bids", "INSERT" if previous_amount is None else "UPDATE", bid.id, auction.id, auction.created_by),
        ChangeEvent("auctions", "UPDATE", auction.id, auction.id, auction.created_by),
        feed=feed,
    )
    logger.info(
        "Bid recorded",
        extra={
            "auction_id": auction.id,
            "bid_id": bid.id,
            "previous_amount": previous_amount,
            "amount": new_amount,
            "was_winning_bid": was_winning,
            "reelected": outcome.reelected,
        },
    )
    return BidMutationResult(
        bid=await get_bid(session, bid.id) or bid,
        auction=refreshed,
        previous_amount=previous_amount,
        new_amount=new_amount,
        was_winning_bid=was_winning,
        reelected=outcome.reelected,
    )


async def _write_amount(session: AsyncSession, bid_id: str, amount: Decimal) -> None:
    result = await session.execute(update(Bid).where(Bid.id == bid_id).values(amount=amount))
    await session.commit()
    if result.rowcount == 0:
        raise NotFound("Bid not found")


async def record_or_update_bid(
    session: AsyncSession,
    auction_id: str,
    bidder_id: str,
    amount: Any,
    *,
    actor: Actor = "admin",
    feed: ChangeFeed | None = None,
) -> BidMutationResult:
    """Insert the driver's bid on an auction, or update its amount if present.

    Raises:
        InvalidAmount: non-numeric or non-positive amount (before any store call).
        NotFound: auction or driver missing.
        Conflict: a new bid on an auction that is no longer active.
        ServiceUnavailable: store unreachable.
    """
    value = parse_amount(amount)

    with store_guard("recording bid"):
        auction = await get_auction(session, auction_id)
        if auction is None:
            raise NotFound("Auction not found")
        bidder = await session.get(Profile, bidder_id)
        if bidder is None or bidder.role != "driver":
            raise NotFound("Driver not found")

        existing = await _find_bid(session, auction_id, bidder_id)
        if existing is None:
            if auction.status != "active":
                raise Conflict(f"Auction is {auction.status}; new bids are only accepted while it is active")
            bid = Bid(auction_id=auction_id, user_id=bidder_id, amount=value)
            session.add(bid)
            try:
                await session.commit()
            except IntegrityError:
                # Another request inserted this driver's bid first
                await session.rollback()
                existing = await _find_bid(session, auction_id, bidder_id)
                if existing is None:
                    raise
            else:
                return await _finish_amount_write(
                    session, auction, bid, previous_amount=None, new_amount=value, actor=actor, feed=feed
                )

        previous = Decimal(existing.amount)
        await _write_amount(session, existing.id, value)
        return await _finish_amount_write(
            session, auction, existing, previous_amount=previous, new_amount=value, actor=actor, feed=feed
        )


async def _find_bid(session: AsyncSession, auction_id: str, bidder_id: str) -> Bid | None:
    stmt = (
        select(Bid)
        .where(Bid.auction_id == auction_id, Bid.user_id == bidder_id)
        .execution_options(populate_existing=True)
    )
    return (await session.execute(stmt)).scalars().first()


async def update_bid_amount(
    session: AsyncSession,
    bid_id: str,
    auction_id: str,
    amount: Any,
    *,
    actor: Actor = "admin",
    feed: ChangeFeed | None = None,
) -> BidMutationResult:
    """Change the amount of an existing bid (admin correction)."""
    value = parse_amount(amount)

    with store_guard("updating bid"):
        bid = await get_bid(session, bid_id)
        if bid is None or bid.auction_id != auction_id:
            raise NotFound("Bid not found")
        auction = await get_auction(session, auction_id)
        if auction is None:
            raise NotFound("Auction not found")

        previous = Decimal(bid.amount)
        await _write_amount(session, bid.id, value)
        return await _finish_amount_write(
            session, auction, bid, previous_amount=previous, new_amount=value, actor=actor, feed=feed
        )


async def delete_bid(
    session: AsyncSession,
    bid_id: str,
    auction_id: str,
    *,
    actor: Actor = "admin",
    feed: ChangeFeed | None = None,
) -> BidDeletionResult:
    """Delete a bid and recompute the auction aggregate.

    Deleting the winning bid clears ``winner_id`` and ``winning_bid_id``; the
    next-lowest bid is not promoted.
    """
    with store_guard("deleting bid"):
        bid = await get_bid(session, bid_id)
        if bid is None or bid.auction_id != auction_id:
            raise NotFound("Bid not found")
        auction = await get_auction(session, auction_id)
        if auction is None:
            raise NotFound("Auction not found")

        was_winning = auction.winning_bid_id == bid.id
        amount = Decimal(bid.amount)
        bidder_id = bid.user_id
        if was_winning:
            # Break the reference before the row goes away
            await session.execute(
                update(Auction)
                .where(Auction.id == auction_id, Auction.winning_bid_id == bid_id)
                .values(winner_id=None, winning_bid_id=None, updated_at=utcnow())
            )
            await session.commit()

        result = await session.execute(delete(Bid).where(Bid.id == bid_id))
        await session.commit()
        if result.rowcount == 0:
            logger.info("Bid already removed", extra={"auction_id": auction_id, "bid_id": bid_id})

        await converge_aggregates(session, auction_id, elect=False)

        bidder_name = await _display_name(session, bidder_id)
        await write_audit(
            session,
            BidDeleted(
                actor=actor,
                deleted_bid_id=bid_id,
                deleted_bid_amount=amount,
                deleted_bid_user=bidder_name,
                was_winning_bid=was_winning,
            ),
            auction_id=auction_id,
        )
        await publish_changes(
            ChangeEvent("auction_bids", "DELETE", bid_id, auction_id, auction.created_by),
            ChangeEvent("auctions", "UPDATE", auction_id, auction_id, auction.created_by),
            feed=feed,
        )
        logger.info(
            "Bid deleted",
            extra={"auction_id": auction_id, "bid_id": bid_id, "amount": amount, "was_winning_bid": was_winning},
        )
        return BidDeletionResult(
            bid_id=bid_id,
            amount=amount,
            bidder_id=bidder_id,
            bidder_name=bidder_name,
            was_winning_bid=was_winning,
            auction=await get_auction(session, auction_id) or auction,
        )
