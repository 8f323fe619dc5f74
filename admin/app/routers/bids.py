from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from admin.app.auth import get_current_admin
from admin.app.database import get_db, get_feed
from admin.app.schemas import BidAmountUpdate, BidDelete, BidDeleteResponse, BidRecord, BidUpdateResponse
from app.schemas import AuctionRead, BidRead
from app.services import bids as bid_service
from app.services.bids import BidMutationResult
from app.services.errors import InvalidInput
from app.sync.feed import ChangeFeed

router = APIRouter()


def _mutation_response(message: str, result: BidMutationResult) -> BidUpdateResponse:
    return BidUpdateResponse(
        message=message,
        bid=BidRead.model_validate(result.bid),
        auction=AuctionRead.model_validate(result.auction),
        old_amount=result.previous_amount,
        new_amount=result.new_amount,
        was_winning=result.was_winning_bid,
        winner_update_needed=result.reelected,
    )


@router.put("/update-bid", response_model=BidUpdateResponse)
async def update_bid(
    body: BidAmountUpdate,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed),
    current_admin=Depends(get_current_admin),
):
    """Изменяет сумму ставки и пересчитывает агрегаты аукциона"""
    if body.new_amount in (None, ""):
        raise InvalidInput("Missing bidId, auctionId, or newAmount")
    result = await bid_service.update_bid_amount(
        db, body.bid_id, body.auction_id, body.new_amount, feed=feed
    )
    return _mutation_response("Bid updated successfully", result)


@router.post("/record-bid", response_model=BidUpdateResponse)
async def record_bid(
    body: BidRecord,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed),
    current_admin=Depends(get_current_admin),
):
    """Создает ставку водителя или обновляет существующую"""
    result = await bid_service.record_or_update_bid(
        db, body.auction_id, body.driver_id, body.amount, feed=feed
    )
    message = "Bid placed successfully" if result.previous_amount is None else "Bid updated successfully"
    return _mutation_response(message, result)


@router.delete("/delete-bid", response_model=BidDeleteResponse)
async def delete_bid(
    body: BidDelete,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed),
    current_admin=Depends(get_current_admin),
):
    """Удаляет ставку; победитель при этом не переизбирается"""
    result = await bid_service.delete_bid(db, body.bid_id, body.auction_id, feed=feed)
    return BidDeleteResponse(
        message="Bid deleted successfully",
        deleted_bid_id=result.bid_id,
        deleted_amount=result.amount,
        bidder=result.bidder_name,
        was_winning=result.was_winning_bid,
        auction=AuctionRead.model_validate(result.auction),
    )
