from datetime import datetime, timedelta, timezone

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import OAuth2PasswordBearer, SecurityScopes
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from admin.app.database import get_db
from admin.app.schemas import TokenData
from app.models import IdentityUser
from app.services.identity import IdentityProvider
from core.config import get_settings

ALGORITHM = "HS256"

# Настройка OAuth2 с Bearer токеном
oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl="token",
    scopes={"admin": "Полный доступ к админ-панели"}
)


def require_secret_key() -> str:
    """Без SECRET_KEY админские операции недоступны (503)."""
    secret_key = get_settings().secret_key
    if not secret_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin service not configured. Please set SECRET_KEY environment variable.",
        )
    return secret_key


async def authenticate_user(email: str, password: str, db: AsyncSession) -> IdentityUser | None:
    """Аутентифицирует администратора по email и паролю"""
    user = await IdentityProvider(db).authenticate(email, password)
    if user is None or not user.is_admin:
        return None
    return user


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Создает JWT токен"""
    to_encode = data.copy()
    if expires_delta is None:
        expires_delta = timedelta(minutes=get_settings().access_token_expire_minutes)
    to_encode.update({"exp": datetime.now(timezone.utc) + expires_delta})
    return jwt.encode(to_encode, require_secret_key(), algorithm=ALGORITHM)


def decode_token(token: str) -> TokenData:
    """Разбирает токен; JWTError при неверной подписи или истекшем сроке"""
    payload = jwt.decode(token, require_secret_key(), algorithms=[ALGORITHM])
    user_id: str | None = payload.get("sub")
    if user_id is None:
        raise JWTError("token has no subject")
    return TokenData(user_id=user_id, scopes=payload.get("scopes", []))


async def get_current_user(
    security_scopes: SecurityScopes,
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> IdentityUser:
    """Получает текущего пользователя по токену"""
    if security_scopes.scopes:
        authenticate_value = f'Bearer scope="{security_scopes.scope_str}"'
    else:
        authenticate_value = "Bearer"

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Не удалось проверить учетные данные",
        headers={"WWW-Authenticate": authenticate_value},
    )

    try:
        token_data = decode_token(token)
    except JWTError:
        raise credentials_exception

    user = await IdentityProvider(db).get_user(token_data.user_id)
    if user is None:
        raise credentials_exception
    if not user.is_active:
        raise HTTPException(status_code=400, detail="Пользователь неактивен")

    # Проверяем, что у пользователя есть необходимые разрешения
    for scope in security_scopes.scopes:
        if scope not in token_data.scopes:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Недостаточно прав",
                headers={"WWW-Authenticate": authenticate_value},
            )
    return user


async def get_current_admin(
    current_user: IdentityUser = Security(get_current_user, scopes=["admin"])
) -> IdentityUser:
    """Проверяет, что текущий пользователь - администратор"""
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Требуются права администратора"
        )
    return current_user


async def admin_from_token(token: str, db: AsyncSession) -> IdentityUser | None:
    """Те же проверки, что и get_current_admin, для соединений без заголовка (WebSocket)"""
    try:
        token_data = decode_token(token)
    except JWTError:
        return None
    if "admin" not in token_data.scopes:
        return None
    user = await IdentityProvider(db).get_user(token_data.user_id)
    if user is None or not user.is_active or not user.is_admin:
        return None
    return user
