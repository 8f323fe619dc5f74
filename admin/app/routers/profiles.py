from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from admin.app.auth import get_current_admin
from admin.app.database import get_db, get_feed
from admin.app.schemas import CascadeStep, DeleteResponse
from app.services import cascade
from app.services.errors import InvalidInput
from app.services.identity import IdentityProvider
from app.sync.feed import ChangeFeed

router = APIRouter()


def _response(message: str, report: cascade.CascadeReport) -> DeleteResponse:
    return DeleteResponse(
        message=message,
        steps=[CascadeStep(step=name, rows=rows) for name, rows in report.steps],
    )


@router.delete("/delete-consigner", response_model=DeleteResponse)
async def delete_consigner(
    id: str | None = None,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed),
    current_admin=Depends(get_current_admin),
):
    """Удаляет грузоотправителя, его аукционы и учетную запись"""
    if not id:
        raise InvalidInput("Consigner ID is required")
    report = await cascade.delete_consigner(db, id, identity=IdentityProvider(db), feed=feed)
    return _response("Consigner and all related data deleted successfully", report)


@router.delete("/delete-driver", response_model=DeleteResponse)
async def delete_driver(
    id: str | None = None,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed),
    current_admin=Depends(get_current_admin),
):
    """Удаляет водителя, его ставки и учетную запись"""
    if not id:
        raise InvalidInput("Driver ID is required")
    report = await cascade.delete_driver(db, id, identity=IdentityProvider(db), feed=feed)
    return _response("Driver and all related data deleted successfully", report)
