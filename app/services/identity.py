"""Identity provider backed by the ``auth_users`` table.

Profiles reuse the identity id, so removing a consigner or driver ends with
deleting the identity record here.
"""
from __future__ import annotations

import logging

from passlib.context import CryptContext
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import IdentityUser
from app.models.base import utcnow
from app.services.errors import Conflict

logger = logging.getLogger(__name__)

# Настройка хеширования паролей
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Проверяет соответствие пароля хешу"""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Создает хеш пароля"""
    return pwd_context.hash(password)


class IdentityProvider:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_user(
        self,
        email: str,
        password: str,
        *,
        user_id: str | None = None,
        is_admin: bool = False,
    ) -> IdentityUser:
        user = IdentityUser(
            email=email.strip().lower(),
            hashed_password=get_password_hash(password),
            is_admin=is_admin,
        )
        if user_id:
            user.id = user_id
        self.session.add(user)
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise Conflict(f"Identity for {email} already exists") from e
        await self.session.refresh(user)
        logger.info("Identity created", extra={"user_id": user.id})
        return user

    async def get_user(self, user_id: str) -> IdentityUser | None:
        return await self.session.get(IdentityUser, user_id)

    async def authenticate(self, email: str, password: str) -> IdentityUser | None:
        """Return the active user for valid credentials, else None."""
        query = select(IdentityUser).where(IdentityUser.email == email.strip().lower())
        user = (await self.session.execute(query)).scalar_one_or_none()
        if user is None or not user.is_active:
            return None
        if not verify_password(password, user.hashed_password):
            return None
        user.last_login = utcnow()
        await self.session.commit()
        return user

    async def delete_user(self, user_id: str) -> bool:
        """Delete the identity; False when it was already gone."""
        result = await self.session.execute(delete(IdentityUser).where(IdentityUser.id == user_id))
        await self.session.commit()
        if result.rowcount == 0:
            logger.info("Identity already removed", extra={"user_id": user_id})
            return False
        logger.info("Identity deleted", extra={"user_id": user_id})
        return True
