import asyncio
import logging
from typing import Any

from celery import shared_task
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.services.lifecycle import close_expired_auctions as close_expired
from core.config import get_settings
from core.db import engine_options

logger = logging.getLogger(__name__)


async def _close_expired() -> dict[str, list[str]]:
    # Каждый запуск идет в новом event loop, поэтому и движок свой
    settings = get_settings()
    engine = create_async_engine(settings.database_url, **engine_options(settings))
    try:
        session_factory = async_sessionmaker(bind=engine, expire_on_commit=False)
        async with session_factory() as session:
            return await close_expired(session)
    finally:
        await engine.dispose()


@shared_task(bind=True, name="close_expired_auctions")
def close_expired_auctions(self) -> dict[str, Any]:
    """
    Закрывает активные аукционы, у которых истекло время окончания

    Returns:
        Dict: ID закрытых аукционов по итоговому статусу
    """
    try:
        closed = asyncio.run(_close_expired())
    except SQLAlchemyError as e:
        logger.error("Closing expired auctions failed", extra={"error": str(e)})
        raise self.retry(exc=e, countdown=60)

    return {"status": "success", **closed}
