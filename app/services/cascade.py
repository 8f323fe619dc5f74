"""Cascading deletion of auctions, consigners and drivers.

Each step is its own committed statement, executed in a fixed order:
references to a row are nulled before the row goes, children before parents.
A failing step raises :class:`CascadeStepError` naming it; the steps before it
stay committed so an operator can resume from there.
"""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Executable, delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import AuditLogEntry, Auction, Bid, Notification, Profile, Trip
from app.services.bids import converge_aggregates, get_auction
from app.services.errors import CascadeStepError, NotFound
from app.services.identity import IdentityProvider
from app.sync.feed import ChangeEvent, ChangeFeed, publish_changes

logger = logging.getLogger(__name__)


@dataclass
class CascadeReport:
    entity: str
    entity_id: str
    steps: list[tuple[str, int]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "entity": self.entity,
            "id": self.entity_id,
            "steps": [{"step": name, "rows": rows} for name, rows in self.steps],
        }


class _Cascade:
    """Runs the steps of one deletion and records what each one touched."""

    def __init__(self, session: AsyncSession, report: CascadeReport) -> None:
        self.session = session
        self.report = report

    async def run(self, step: str, stmt: Executable) -> int:
        async def _execute() -> int:
            result = await self.session.execute(stmt)
            await self.session.commit()
            return result.rowcount or 0

        return await self.call(step, _execute)

    async def query(self, step: str, stmt: Executable) -> list[Any]:
        try:
            return list((await self.session.execute(stmt)).all())
        except SQLAlchemyError as e:
            await self.session.rollback()
            self._fail(step, e)

    async def call(self, step: str, fn: Callable[[], Awaitable[int]]) -> int:
        try:
            rows = await fn()
        except SQLAlchemyError as e:
            await self.session.rollback()
            self._fail(step, e)
        self.report.steps.append((step, rows))
        logger.info(
            "Cascade step done",
            extra={"action": f"delete_{self.report.entity}", "step": step, "rows": rows},
        )
        return rows

    def _fail(self, step: str, error: Exception) -> None:
        logger.error(
            "Cascade step failed",
            extra={"action": f"delete_{self.report.entity}", "step": step, "error": str(error)},
        )
        raise CascadeStepError(step, error) from error


async def _delete_auction_rows(
    cascade: _Cascade,
    auction_ids: list[str],
    *,
    last_step: str = "delete auction",
) -> None:
    """Shared sub-order for removing auctions and everything hanging off them."""
    in_ids = Auction.id.in_(auction_ids)
    await cascade.run(
        "clear winning bid reference",
        update(Auction).where(in_ids).values(winning_bid_id=None),
    )
    await cascade.run(
        "delete auction notifications",
        delete(Notification).where(Notification.auction_id.in_(auction_ids)),
    )
    await cascade.run(
        "delete auction audit logs",
        delete(AuditLogEntry).where(AuditLogEntry.auction_id.in_(auction_ids)),
    )
    await cascade.run("delete bids", delete(Bid).where(Bid.auction_id.in_(auction_ids)))
    await cascade.run("delete auction trips", delete(Trip).where(Trip.auction_id.in_(auction_ids)))
    await cascade.run(last_step, delete(Auction).where(in_ids))


async def _get_profile(session: AsyncSession, profile_id: str, role: str) -> Profile | None:
    stmt = select(Profile).where(Profile.id == profile_id, Profile.role == role)
    return (await session.execute(stmt)).scalars().first()


async def delete_auction(
    session: AsyncSession,
    auction_id: str,
    *,
    feed: ChangeFeed | None = None,
) -> CascadeReport:
    """Delete an auction with its notifications, audit logs, bids and trips."""
    auction = await get_auction(session, auction_id)
    if auction is None:
        raise NotFound("Auction not found")
    consigner_id = auction.created_by

    report = CascadeReport("auction", auction_id)
    await _delete_auction_rows(_Cascade(session, report), [auction_id])

    await publish_changes(
        ChangeEvent("auctions", "DELETE", auction_id, auction_id, consigner_id),
        feed=feed,
    )
    logger.info("Auction deleted", extra={"auction_id": auction_id, "consigner_id": consigner_id})
    return report


async def delete_consigner(
    session: AsyncSession,
    consigner_id: str,
    *,
    identity: IdentityProvider | None = None,
    feed: ChangeFeed | None = None,
) -> CascadeReport:
    """Delete a consigner, every auction it created, and its identity record."""
    if await _get_profile(session, consigner_id, "consigner") is None:
        raise NotFound("Consigner not found")
    identity = identity or IdentityProvider(session)

    report = CascadeReport("consigner", consigner_id)
    cascade = _Cascade(session, report)

    rows = await cascade.query("query auctions", select(Auction.id).where(Auction.created_by == consigner_id))
    auction_ids = [row.id for row in rows]
    if auction_ids:
        await _delete_auction_rows(cascade, auction_ids, last_step="delete auctions")

    await cascade.run(
        "delete user notifications",
        delete(Notification).where(Notification.user_id == consigner_id),
    )
    await cascade.run(
        "delete user audit logs",
        delete(AuditLogEntry).where(AuditLogEntry.user_id == consigner_id),
    )
    await cascade.run(
        "clear winner references",
        update(Auction).where(Auction.winner_id == consigner_id).values(winner_id=None),
    )
    await cascade.run("delete consigner trips", delete(Trip).where(Trip.consigner_id == consigner_id))
    await cascade.run("delete profile", delete(Profile).where(Profile.id == consigner_id))
    await cascade.call("delete consigner account", lambda: _delete_identity(identity, consigner_id))

    await publish_changes(
        *(ChangeEvent("auctions", "DELETE", aid, aid, consigner_id) for aid in auction_ids),
        feed=feed,
    )
    logger.info("Consigner deleted", extra={"consigner_id": consigner_id, "rows": len(auction_ids)})
    return report


async def delete_driver(
    session: AsyncSession,
    driver_id: str,
    *,
    identity: IdentityProvider | None = None,
    feed: ChangeFeed | None = None,
) -> CascadeReport:
    """Delete a driver, its bids and trips, and its identity record.

    Auctions the driver was winning lose their winner; the remaining bids are
    not promoted.
    """
    if await _get_profile(session, driver_id, "driver") is None:
        raise NotFound("Driver not found")
    identity = identity or IdentityProvider(session)

    report = CascadeReport("driver", driver_id)
    cascade = _Cascade(session, report)

    await cascade.run(
        "delete user notifications",
        delete(Notification).where(Notification.user_id == driver_id),
    )
    await cascade.run(
        "delete user audit logs",
        delete(AuditLogEntry).where(AuditLogEntry.user_id == driver_id),
    )
    await cascade.run(
        "clear winner references",
        update(Auction).where(Auction.winner_id == driver_id).values(winner_id=None),
    )

    # Flagged winners, plus any bid an auction still points at
    referenced = select(Auction.winning_bid_id).where(Auction.winning_bid_id.is_not(None))
    winning = await cascade.query(
        "query winning bids",
        select(Bid.id).where(
            Bid.user_id == driver_id,
            or_(Bid.is_winning_bid.is_(True), Bid.id.in_(referenced)),
        ),
    )
    winning_bid_ids = [row.id for row in winning]
    if winning_bid_ids:
        await cascade.run(
            "clear winning bid references",
            update(Auction).where(Auction.winning_bid_id.in_(winning_bid_ids)).values(winning_bid_id=None),
        )

    affected = await cascade.query(
        "query driver auctions",
        select(Bid.auction_id).where(Bid.user_id == driver_id).distinct(),
    )
    auction_ids = [row.auction_id for row in affected]
    await cascade.run("delete bids", delete(Bid).where(Bid.user_id == driver_id))

    async def _recompute() -> int:
        for auction_id in auction_ids:
            await converge_aggregates(session, auction_id, elect=False)
        return len(auction_ids)

    await cascade.call("recompute auction aggregates", _recompute)
    await cascade.run("delete driver trips", delete(Trip).where(Trip.driver_id == driver_id))
    await cascade.run("delete profile", delete(Profile).where(Profile.id == driver_id))
    await cascade.call("delete driver account", lambda: _delete_identity(identity, driver_id))

    await publish_changes(
        *(ChangeEvent("auction_bids", "DELETE", None, aid) for aid in auction_ids),
        feed=feed,
    )
    logger.info("Driver deleted", extra={"driver_id": driver_id, "rows": len(auction_ids)})
    return report


async def _delete_identity(identity: IdentityProvider, user_id: str) -> int:
    # An identity that is already gone counts as removed
    return 1 if await identity.delete_user(user_id) else 0
