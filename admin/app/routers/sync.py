import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession

from admin.app.auth import admin_from_token, get_current_admin
from admin.app.database import get_db, get_feed
from app.schemas import AuctionSnapshot
from app.services.auctions import list_auction_snapshots, load_auction_snapshot
from app.sync.feed import ChangeEvent, ChangeFeed, ChannelDisconnected, Subscription

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/auctions/snapshots", response_model=list[AuctionSnapshot])
async def get_auction_snapshots(
    consigner_id: str | None = None,
    status: str | None = None,
    db: AsyncSession = Depends(get_db),
    current_admin=Depends(get_current_admin),
):
    """Текущее состояние списка аукционов (опционально одного грузоотправителя)"""
    return await list_auction_snapshots(db, consigner_id=consigner_id, status=status)


@router.get("/auctions/{auction_id}/snapshot", response_model=AuctionSnapshot)
async def get_auction_snapshot(
    auction_id: str,
    db: AsyncSession = Depends(get_db),
    current_admin=Depends(get_current_admin),
):
    """Текущее состояние аукциона со ставками"""
    return await load_auction_snapshot(db, auction_id)


async def _next_event(subscription: Subscription) -> ChangeEvent | None:
    try:
        return await subscription.__anext__()
    except StopAsyncIteration:
        return None


@router.websocket("/ws/{topic}")
async def change_stream(
    websocket: WebSocket,
    topic: str,
    token: str | None = None,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed),
):
    """Пересылает уведомления об изменениях; данные клиент забирает сам"""
    try:
        admin = await admin_from_token(token or "", db)
    except HTTPException:
        # SECRET_KEY не задан
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return
    if admin is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    try:
        subscription = await feed.subscribe(topic)
    except ChannelDisconnected as e:
        logger.warning("Subscribe failed", extra={"topic": topic, "error": str(e)})
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    # Отключение клиента ждем параллельно с лентой, иначе на тихом топике
    # подписка висит до следующего события
    receiving = asyncio.ensure_future(websocket.receive())
    pending = asyncio.ensure_future(_next_event(subscription))
    try:
        while True:
            done, _ = await asyncio.wait({receiving, pending}, return_when=asyncio.FIRST_COMPLETED)
            if receiving in done:
                if receiving.result()["type"] == "websocket.disconnect":
                    logger.info("Viewer disconnected", extra={"topic": topic})
                    break
                # Сообщения от клиента не используются
                receiving = asyncio.ensure_future(websocket.receive())
            if pending in done:
                event = pending.result()
                if event is None:
                    await websocket.close()
                    break
                await websocket.send_text(event.to_json())
                pending = asyncio.ensure_future(_next_event(subscription))
    except WebSocketDisconnect:
        logger.info("Viewer disconnected", extra={"topic": topic})
    except ChannelDisconnected as e:
        # Клиент переподключится и пока живет на опросе
        logger.warning("Change channel dropped", extra={"topic": topic, "error": str(e)})
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
    finally:
        for task in (receiving, pending):
            task.cancel()
        await asyncio.gather(receiving, pending, return_exceptions=True)
        await subscription.close()
