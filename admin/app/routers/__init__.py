from fastapi import APIRouter

from .auctions import router as auctions_router
from .bids import router as bids_router
from .profiles import router as profiles_router
from .sync import router as sync_router
from .trips import router as trips_router

# Создаем корневой роутер
api_router = APIRouter(prefix="/api/admin")

# Подключаем все роутеры
api_router.include_router(auctions_router, tags=["auctions"])
api_router.include_router(bids_router, tags=["bids"])
api_router.include_router(profiles_router, tags=["profiles"])
api_router.include_router(trips_router, tags=["trips"])
api_router.include_router(sync_router, tags=["sync"])
