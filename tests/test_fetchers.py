import httpx
import pytest

from app.schemas import AuctionSnapshot
from app.services.auctions import load_auction_snapshot
from app.sync.fetchers import HttpSnapshotFetcher, StoreSnapshotFetcher


@pytest.mark.asyncio
async def test_store_fetcher_single_and_collection(session, session_factory, make_auction, make_profile):
    consigner = await make_profile("consigner", username="cargo")
    auction = await make_auction(consigner=consigner)

    single = await StoreSnapshotFetcher(auction_id=auction.id, session_factory=session_factory)()
    assert isinstance(single, AuctionSnapshot)
    assert single.auction.id == auction.id

    collection = await StoreSnapshotFetcher(consigner_id=consigner.id, session_factory=session_factory)()
    assert [s.auction.id for s in collection] == [auction.id]


@pytest.mark.asyncio
async def test_http_fetcher(session, make_auction):
    auction = await make_auction()
    payload = (await load_auction_snapshot(session, auction.id)).model_dump(mode="json")
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path.endswith("/snapshot"):
            return httpx.Response(200, json=payload)
        return httpx.Response(200, json=[payload])

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://admin") as client:
        snapshot = await HttpSnapshotFetcher(client, auction_id=auction.id, token="abc")()
        collection = await HttpSnapshotFetcher(client, consigner_id="cons-1")()

    assert snapshot.auction.id == auction.id
    assert requests[0].url.path == f"/api/admin/auctions/{auction.id}/snapshot"
    assert requests[0].headers["Authorization"] == "Bearer abc"
    assert requests[1].url.params["consigner_id"] == "cons-1"
    assert len(collection) == 1


@pytest.mark.asyncio
async def test_http_fetcher_raises_on_error_status():
    transport = httpx.MockTransport(lambda request: httpx.Response(503, json={"detail": "down"}))
    async with httpx.AsyncClient(transport=transport, base_url="http://admin") as client:
        with pytest.raises(httpx.HTTPStatusError):
            await HttpSnapshotFetcher(client, auction_id="auc-1")()
