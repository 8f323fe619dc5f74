from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession

from app.sync.feed import ChangeFeed, get_change_feed
from core.db import SessionFactory


async def get_db() -> AsyncIterator[AsyncSession]:
    """
    Зависимость для получения асинхронной сессии базы данных.
    Используется в FastAPI endpoints.
    """
    async with SessionFactory() as session:
        try:
            yield session
        finally:
            await session.close()


def get_feed() -> ChangeFeed:
    """Лента изменений, в которую публикуются уведомления после мутаций."""
    return get_change_feed()
