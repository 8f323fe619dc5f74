from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from admin.app.auth import get_current_admin
from admin.app.database import get_db, get_feed
from admin.app.schemas import (
    AuctionCreateResponse,
    AuctionFieldsUpdate,
    AuctionStatusResponse,
    AuctionStatusUpdate,
    AuctionUpdateResponse,
    CascadeStep,
    DeleteResponse,
)
from app.schemas import AuctionRead, TripRead
from app.services import auctions as auction_service
from app.services import cascade, lifecycle
from app.services.auctions import AuctionDraft
from app.services.errors import InvalidInput
from app.sync.feed import ChangeFeed

router = APIRouter()


@router.post("/create-auction", response_model=AuctionCreateResponse)
async def create_auction(
    draft: AuctionDraft,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed),
    current_admin=Depends(get_current_admin),
):
    """Создает аукцион от имени служебного грузоотправителя"""
    auction = await auction_service.create_auction(db, draft, feed=feed)
    return AuctionCreateResponse(
        message="Auction created successfully",
        auction=AuctionRead.model_validate(auction),
        consigner_id=auction.created_by,
        duration_minutes=draft.duration,
    )


@router.put("/update-auction", response_model=AuctionUpdateResponse)
async def update_auction(
    body: AuctionFieldsUpdate,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed),
    current_admin=Depends(get_current_admin),
):
    """Обновляет редактируемые поля аукциона"""
    result = await auction_service.update_auction(db, body.auction_id, body.updates or {}, feed=feed)
    return AuctionUpdateResponse(
        message="Auction updated successfully",
        auction=AuctionRead.model_validate(result.auction),
        updated_fields=result.updated_fields,
    )


@router.put("/update-auction-status", response_model=AuctionStatusResponse)
async def update_auction_status(
    body: AuctionStatusUpdate,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed),
    current_admin=Depends(get_current_admin),
):
    """Переводит аукцион в новый статус"""
    if not body.status:
        raise InvalidInput("Missing auctionId or status")
    result = await lifecycle.change_status(
        db, body.auction_id, body.status, changed_by=current_admin.email, feed=feed
    )
    return AuctionStatusResponse(
        message=f"Auction status updated to {result.new_status}",
        auction=AuctionRead.model_validate(result.auction),
        previous_status=result.previous_status,
        new_status=result.new_status,
        cleared_winner=result.cleared_winner,
        trip=TripRead.model_validate(result.trip) if result.trip else None,
    )


@router.delete("/delete-auction", response_model=DeleteResponse)
async def delete_auction(
    id: str | None = None,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed),
    current_admin=Depends(get_current_admin),
):
    """Удаляет аукцион вместе со ставками, уведомлениями и журналом"""
    if not id:
        raise InvalidInput("Auction ID is required")
    report = await cascade.delete_auction(db, id, feed=feed)
    return DeleteResponse(
        message="Auction and all related data deleted successfully",
        steps=[CascadeStep(step=name, rows=rows) for name, rows in report.steps],
    )
