import argparse
import asyncio

from sqlalchemy import select

from app.models import IdentityUser, Profile
from app.services.errors import Conflict
from app.services.identity import IdentityProvider
from core.config import get_settings
from core.db import SessionFactory


async def create_admin_user(email: str, password: str) -> bool:
    """Создает администратора в базе данных"""
    async with SessionFactory() as session:
        existing = await session.execute(select(IdentityUser).where(IdentityUser.email == email.lower()))
        if existing.scalar_one_or_none():
            print(f"Пользователь {email} уже существует!")
            return False
        try:
            user = await IdentityProvider(session).create_user(email, password, is_admin=True)
        except Conflict as e:
            print(e)
            return False
        print(f"Администратор {email} успешно создан с ID: {user.id}")
        return True


async def ensure_house_consigner() -> None:
    """Создает профиль грузоотправителя, от имени которого админка создает аукционы"""
    phone = get_settings().admin_consigner_phone
    async with SessionFactory() as session:
        query = select(Profile).where(Profile.phone_number == phone, Profile.role == "consigner")
        if (await session.execute(query)).scalars().first():
            print(f"Грузоотправитель с телефоном {phone} уже существует")
            return
        session.add(Profile(role="consigner", username="admin-consigner", phone_number=phone))
        await session.commit()
        print(f"Создан грузоотправитель с телефоном {phone}")


async def main() -> None:
    parser = argparse.ArgumentParser(description="Создание администратора админ-API")
    parser.add_argument("email")
    parser.add_argument("password")
    parser.add_argument("--with-consigner", action="store_true", help="создать служебного грузоотправителя")
    args = parser.parse_args()

    await create_admin_user(args.email, args.password)
    if args.with_consigner:
        await ensure_house_consigner()


if __name__ == "__main__":
    asyncio.run(main())
