"""
Admin API for the freight auction dashboard.

`create_app()` wires the routers under `/api/admin`, token issuance and the
translation of service errors into JSON responses.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from admin.app.auth import authenticate_user, create_access_token
from admin.app.database import get_db
from admin.app.routers import api_router
from admin.app.schemas import Token
from app.services.errors import AuctionServiceError
from core.config import get_settings
from core.db import engine
from core.logging_setup import configure_logging
from core.redis import close_redis_connection

logger = logging.getLogger(__name__)


async def _service_error_handler(request: Request, exc: AuctionServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Admin API error", extra={"event": request.url.path, "error": exc.message})
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


async def _store_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Store unavailable", extra={"event": request.url.path, "error": str(exc)})
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Store unavailable, please retry later"},
    )


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"] if part != "body")
        problems.append(f"{field}: {error['msg']}" if field else error["msg"])
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": "; ".join(problems)})


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Общие подключения закрываются при остановке воркера
    await close_redis_connection()
    await engine.dispose()


def create_app() -> FastAPI:
    """Create and configure FastAPI Admin application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Freight Auction Admin API",
        description="Админ-API для управления аукционами перевозок",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_exception_handler(AuctionServiceError, _service_error_handler)
    app.add_exception_handler(OperationalError, _store_error_handler)
    app.add_exception_handler(InterfaceError, _store_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)

    app.include_router(api_router)

    @app.post("/token", response_model=Token)
    async def login_for_access_token(
        form_data: OAuth2PasswordRequestForm = Depends(),
        db: AsyncSession = Depends(get_db),
    ):
        user = await authenticate_user(form_data.username, form_data.password, db)
        if not user:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Неверное имя пользователя или пароль",
                headers={"WWW-Authenticate": "Bearer"},
            )
        access_token = create_access_token(data={"sub": user.id, "scopes": ["admin"]})
        return {"access_token": access_token, "token_type": "bearer"}

    @app.get("/health")
    async def health_check():
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    return app
