from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from admin.app.auth import get_current_admin
from admin.app.database import get_db, get_feed
from admin.app.schemas import DeleteResponse, TripNotesUpdate, TripResponse, TripStatusResponse, TripStatusUpdate
from app.schemas import TripRead
from app.services import trips as trip_service
from app.services.errors import InvalidInput
from app.sync.feed import ChangeFeed

router = APIRouter()

_STATUS_MESSAGES = {
    "completed": "Trip marked as completed",
    "cancelled": "Trip cancelled",
}


@router.put("/update-trip-status", response_model=TripStatusResponse)
async def update_trip_status(
    body: TripStatusUpdate,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed),
    current_admin=Depends(get_current_admin),
):
    """Завершает или отменяет поездку"""
    if not body.status:
        raise InvalidInput("Missing tripId or status")
    result = await trip_service.change_trip_status(
        db, body.trip_id, body.status, changed_by=current_admin.email, feed=feed
    )
    return TripStatusResponse(
        message=_STATUS_MESSAGES.get(result.new_status, f"Trip status updated to {result.new_status}"),
        trip=TripRead.model_validate(result.trip),
        previous_status=result.previous_status,
        new_status=result.new_status,
    )


@router.put("/update-trip-notes", response_model=TripResponse)
async def update_trip_notes(
    body: TripNotesUpdate,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed),
    current_admin=Depends(get_current_admin),
):
    """Сохраняет заметки о доставке"""
    trip = await trip_service.update_delivery_notes(db, body.trip_id, body.delivery_notes, feed=feed)
    return TripResponse(message="Delivery notes saved", trip=TripRead.model_validate(trip))


@router.delete("/delete-trip", response_model=DeleteResponse)
async def delete_trip(
    id: str | None = None,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed),
    current_admin=Depends(get_current_admin),
):
    """Удаляет поездку; аукцион остается"""
    if not id:
        raise InvalidInput("Trip ID is required")
    await trip_service.delete_trip(db, id, feed=feed)
    return DeleteResponse(message="Trip deleted successfully")
