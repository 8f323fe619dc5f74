"""Snapshot fetchers a :class:`SyncDistributor` can pull from."""
from __future__ import annotations

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.schemas import AuctionSnapshot
from app.services.auctions import list_auction_snapshots, load_auction_snapshot
from core.db import SessionFactory


class StoreSnapshotFetcher:
    """Reads snapshots straight from the store (in-process viewers)."""

    def __init__(
        self,
        auction_id: str | None = None,
        consigner_id: str | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self.auction_id = auction_id
        self.consigner_id = consigner_id
        self._session_factory = session_factory or SessionFactory

    async def __call__(self) -> AuctionSnapshot | list[AuctionSnapshot]:
        async with self._session_factory() as session:
            if self.auction_id:
                return await load_auction_snapshot(session, self.auction_id)
            return await list_auction_snapshots(session, consigner_id=self.consigner_id)


class HttpSnapshotFetcher:
    """Pulls snapshots from the admin API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        auction_id: str | None = None,
        consigner_id: str | None = None,
        token: str | None = None,
    ) -> None:
        self.client = client
        self.auction_id = auction_id
        self.consigner_id = consigner_id
        self.headers = {"Authorization": f"Bearer {token}"} if token else {}

    async def __call__(self) -> AuctionSnapshot | list[AuctionSnapshot]:
        if self.auction_id:
            response = await self.client.get(
                f"/api/admin/auctions/{self.auction_id}/snapshot", headers=self.headers
            )
            response.raise_for_status()
            return AuctionSnapshot.model_validate(response.json())

        params = {"consigner_id": self.consigner_id} if self.consigner_id else None
        response = await self.client.get("/api/admin/auctions/snapshots", params=params, headers=self.headers)
        response.raise_for_status()
        return [AuctionSnapshot.model_validate(item) for item in response.json()]
