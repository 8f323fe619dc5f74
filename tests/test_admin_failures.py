from types import SimpleNamespace

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.exc import OperationalError

from admin.app import create_app
from admin.app.auth import create_access_token, get_current_admin
from admin.app.database import get_db, get_feed
from app.services.auctions import load_auction_snapshot
from app.services.errors import ServiceUnavailable, store_guard
from core.config import get_settings


class UnreachableSession:
    """Сессия, у которой каждое обращение к базе падает как при недоступном сервере"""

    def _fail(self):
        return OperationalError("SELECT 1", {}, ConnectionRefusedError("connection refused"))

    async def execute(self, *args, **kwargs):
        raise self._fail()

    async def get(self, *args, **kwargs):
        raise self._fail()

    async def scalar(self, *args, **kwargs):
        raise self._fail()

    async def commit(self):
        raise self._fail()

    async def rollback(self):
        pass

    async def close(self):
        pass


@pytest.fixture
def unreachable_app(feed):
    async def _get_unreachable_db():
        yield UnreachableSession()

    app = create_app()
    app.dependency_overrides[get_db] = _get_unreachable_db
    app.dependency_overrides[get_feed] = lambda: feed
    return app


@pytest_asyncio.fixture
async def unreachable_client(unreachable_app):
    token = create_access_token({"sub": "admin-id", "scopes": ["admin"]})
    transport = httpx.ASGITransport(app=unreachable_app)
    async with httpx.AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"Authorization": f"Bearer {token}"},
    ) as client:
        yield client


@pytest.mark.asyncio
async def test_missing_secret_key_answers_503(admin_client, monkeypatch):
    monkeypatch.setattr(get_settings(), "secret_key", None)

    response = await admin_client.get("/api/admin/auctions/snapshots")

    assert response.status_code == 503
    assert response.json()["detail"] == (
        "Admin service not configured. Please set SECRET_KEY environment variable."
    )


@pytest.mark.asyncio
async def test_unreachable_store_during_auth_answers_503(unreachable_client):
    response = await unreachable_client.get("/api/admin/auctions/snapshots")

    assert response.status_code == 503
    assert response.json()["detail"] == "Store unavailable, please retry later"


@pytest.mark.asyncio
async def test_unreachable_store_in_service_answers_503(unreachable_app, unreachable_client):
    unreachable_app.dependency_overrides[get_current_admin] = lambda: SimpleNamespace(
        email="admin@example.com"
    )

    response = await unreachable_client.get("/api/admin/auctions/auc-1/snapshot")

    assert response.status_code == 503
    assert response.json()["detail"].startswith("Store unavailable while loading auction")

    response = await unreachable_client.put(
        "/api/admin/update-bid", json={"bidId": "bid-1", "auctionId": "auc-1", "newAmount": "100"}
    )
    assert response.status_code == 503


@pytest.mark.asyncio
async def test_store_guard_raises_service_unavailable():
    with pytest.raises(ServiceUnavailable) as excinfo:
        await load_auction_snapshot(UnreachableSession(), "auc-1")
    assert excinfo.value.status_code == 503
    assert "connection refused" in excinfo.value.message

    with pytest.raises(ServiceUnavailable):
        with store_guard("testing"):
            raise OperationalError("SELECT 1", {}, ConnectionRefusedError("connection refused"))


@pytest.mark.asyncio
async def test_update_auction_rejects_bad_values_with_400(admin_client, make_auction):
    auction = await make_auction()

    response = await admin_client.put(
        "/api/admin/update-auction", json={"auctionId": auction.id, "updates": {"wheel_type": {}}}
    )

    assert response.status_code == 400
