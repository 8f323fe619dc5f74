"""Auction status lifecycle.

``active`` is the only non-terminal status; from it an auction moves to
``completed``, ``cancelled`` or ``incomplete`` and stays there.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Auction, Bid, Notification, Trip
from app.models.base import as_utc, utcnow
from app.services.audit import Actor, StatusChanged, write_audit
from app.services.bids import get_auction
from app.services.errors import Conflict, InvalidStatus, NotFound, store_guard
from app.sync.feed import ChangeEvent, ChangeFeed, publish_changes

logger = logging.getLogger(__name__)


class AuctionStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    INCOMPLETE = "incomplete"


TERMINAL_STATUSES = frozenset({AuctionStatus.COMPLETED, AuctionStatus.CANCELLED, AuctionStatus.INCOMPLETE})

ALLOWED_TRANSITIONS: dict[AuctionStatus, frozenset[AuctionStatus]] = {
    AuctionStatus.ACTIVE: TERMINAL_STATUSES,
}


@dataclass
class StatusChangeResult:
    auction: Auction
    previous_status: str
    new_status: str
    cleared_winner: bool = False
    trip: Trip | None = None
    notified_user_ids: list[str] = field(default_factory=list)


def parse_status(value: object) -> AuctionStatus:
    try:
        return AuctionStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in AuctionStatus)
        raise InvalidStatus(f"Invalid status: {value!r}. Must be one of: {allowed}") from None


async def _start_trip(session: AsyncSession, auction: Auction) -> tuple[Trip, list[str]]:
    """Open the trip for the winner and notify both sides."""
    amount = None
    if auction.winning_bid_id:
        bid = await session.get(Bid, auction.winning_bid_id)
        amount = bid.amount if bid else None

    trip = Trip(
        auction_id=auction.id,
        driver_id=auction.winner_id,
        consigner_id=auction.created_by,
        amount=amount,
        status="in_progress",
    )
    session.add(trip)
    await session.flush()

    data = {"trip_id": trip.id, "amount": str(amount) if amount is not None else None}
    session.add_all(
        [
            Notification(
                user_id=auction.winner_id,
                auction_id=auction.id,
                type="auction_won",
                message=f"You won the auction \"{auction.title}\"",
                data=data,
            ),
            Notification(
                user_id=auction.created_by,
                auction_id=auction.id,
                type="auction_completed",
                message=f"Your auction \"{auction.title}\" has been completed",
                data=data,
            ),
        ]
    )
    await session.commit()
    return trip, [auction.winner_id, auction.created_by]


async def change_status(
    session: AsyncSession,
    auction_id: str,
    new_status: object,
    *,
    actor: Actor = "admin",
    changed_by: str | None = None,
    feed: ChangeFeed | None = None,
) -> StatusChangeResult:
    """Move an auction to a new status and apply the transition side effects.

    Raises:
        InvalidStatus: unrecognised status value.
        NotFound: auction missing.
        Conflict: transition not allowed from the current status.
    """
    target = parse_status(new_status)

    with store_guard("changing auction status"):
        auction = await get_auction(session, auction_id)
        if auction is None:
            raise NotFound("Auction not found")

        previous = AuctionStatus(auction.status)
        if target not in ALLOWED_TRANSITIONS.get(previous, frozenset()):
            raise Conflict(f"Cannot change auction status from {previous.value} to {target.value}")

        values: dict[str, object] = {"status": target.value, "updated_at": utcnow()}
        cleared_winner = False
        if target is AuctionStatus.CANCELLED:
            cleared_winner = auction.winner_id is not None or auction.winning_bid_id is not None
            values.update(winner_id=None, winning_bid_id=None)

        # Guarded on the status we read so two concurrent transitions cannot both win
        result = await session.execute(
            update(Auction)
            .where(Auction.id == auction_id, Auction.status == previous.value)
            .values(**values)
        )
        if target is AuctionStatus.CANCELLED and result.rowcount:
            await session.execute(
                update(Bid)
                .where(Bid.auction_id == auction_id, Bid.is_winning_bid.is_(True))
                .values(is_winning_bid=False)
            )
        await session.commit()
        if result.rowcount == 0:
            raise Conflict("Auction status was changed concurrently")

        auction = await get_auction(session, auction_id)
        if auction is None:
            raise NotFound("Auction not found")

        trip = None
        notified: list[str] = []
        if target is AuctionStatus.COMPLETED and auction.winner_id:
            trip, notified = await _start_trip(session, auction)

        await write_audit(
            session,
            StatusChanged(
                actor=actor,
                previous_status=previous.value,
                new_status=target.value,
                cleared_winner=cleared_winner,
                trip_id=trip.id if trip else None,
                changed_by=changed_by,
            ),
            auction_id=auction_id,
        )
        await publish_changes(
            ChangeEvent("auctions", "UPDATE", auction_id, auction_id, auction.created_by),
            feed=feed,
        )
        logger.info(
            "Auction status changed",
            extra={
                "auction_id": auction_id,
                "previous_status": previous.value,
                "status": target.value,
                "reason": actor,
            },
        )
        return StatusChangeResult(
            auction=auction,
            previous_status=previous.value,
            new_status=target.value,
            cleared_winner=cleared_winner,
            trip=trip,
            notified_user_ids=notified,
        )


async def close_expired_auctions(
    session: AsyncSession,
    now: datetime | None = None,
    *,
    feed: ChangeFeed | None = None,
) -> dict[str, list[str]]:
    """Close active auctions whose end time has passed.

    An auction with a winner becomes ``completed``, the rest ``incomplete``.
    Returns the closed auction ids grouped by the status they ended in.
    """
    now = now or utcnow()
    rows = (
        await session.execute(
            select(Auction.id, Auction.end_time, Auction.winner_id).where(Auction.status == AuctionStatus.ACTIVE.value)
        )
    ).all()

    closed: dict[str, list[str]] = {AuctionStatus.COMPLETED.value: [], AuctionStatus.INCOMPLETE.value: []}
    for row in rows:
        if as_utc(row.end_time) > as_utc(now):
            continue
        target = AuctionStatus.COMPLETED if row.winner_id else AuctionStatus.INCOMPLETE
        try:
            await change_status(session, row.id, target, actor="system", feed=feed)
        except (NotFound, Conflict) as e:
            # Deleted or closed by someone else in the meantime
            logger.info("Auction skipped during closure", extra={"auction_id": row.id, "reason": str(e)})
            continue
        closed[target.value].append(row.id)

    logger.info(
        "Expired auctions closed",
        extra={"action": "close_expired_auctions", "rows": sum(len(ids) for ids in closed.values())},
    )
    return closed
