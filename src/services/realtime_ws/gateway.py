# src/services/realtime_ws/gateway.py
"""
Шлюз подключений: аутентификация до регистрации соединения.

Токен - JWT (HS256 по умолчанию) с идентификатором пользователя
в claim `userId` (или `sub`). Пользователь разрешается через хранилище;
неразрешимый пользователь считается ошибкой аутентификации.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from src.common.constants import TypeMsg
from src.common.errors import AuthenticationFailed
from src.common.logger import log_info, log_warning
from src.core.users.models import Identity
from src.core.users.repository import UserRepository

__all__ = [
    "ConnectionGateway",
    "Identity",
    "IdentityVerifier",
    "JwtIdentityVerifier",
    "issue_token",
]


def _auth_settings() -> tuple[str, str]:
    from src.config import settings

    return settings.auth.JWT_SECRET, settings.auth.JWT_ALGORITHM


def issue_token(
    user_id: str,
    *,
    secret: Optional[str] = None,
    algorithm: Optional[str] = None,
    expires_in: timedelta = timedelta(days=1),
    extra_claims: Optional[dict[str, Any]] = None,
) -> str:
    """Выпускает токен для пользователя (dev-инструменты и тесты)."""
    default_secret, default_algorithm = _auth_settings()
    now = datetime.now(timezone.utc)
    claims: dict[str, Any] = {
        "userId": user_id,
        "iat": int(now.timestamp()),
        "exp": int((now + expires_in).timestamp()),
    }
    if extra_claims:
        claims.update(extra_claims)
    return jwt.encode(claims, secret or default_secret, algorithm=algorithm or default_algorithm)


class IdentityVerifier(ABC):
    """Проверка учётных данных соединения."""

    @abstractmethod
    async def verify(self, token: str) -> Identity:
        """
        Raises:
            AuthenticationFailed: Токен не принят
        """


class JwtIdentityVerifier(IdentityVerifier):
    """Проверка JWT и разрешение пользователя через хранилище."""

    def __init__(
        self,
        users: UserRepository,
        *,
        secret: Optional[str] = None,
        algorithm: Optional[str] = None,
    ) -> None:
        """
        Args:
            users: Репозиторий пользователей
            secret: Секрет подписи (по умолчанию JWT_SECRET)
            algorithm: Алгоритм (по умолчанию JWT_ALGORITHM)
        """
        default_secret, default_algorithm = _auth_settings()
        self._users = users
        self._secret = secret or default_secret
        self._algorithm = algorithm or default_algorithm
        if not self._secret:
            raise ValueError("JWT_SECRET не задан")

    async def verify(self, token: str) -> Identity:
        try:
            claims = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except ExpiredSignatureError as e:
            raise AuthenticationFailed("Token expired") from e
        except JWTError as e:
            raise AuthenticationFailed("Invalid token") from e

        user_id = claims.get("userId") or claims.get("sub")
        if not user_id:
            raise AuthenticationFailed("Token has no user id")

        user = await self._users.get_by_id(str(user_id))
        if user is None:
            raise AuthenticationFailed("User not found")
        return Identity.from_user(user)


class ConnectionGateway:
    """Точка входа соединения: ни одна запись присутствия не создаётся без успешной проверки."""

    def __init__(self, verifier: IdentityVerifier) -> None:
        self._verifier = verifier

    async def authenticate(self, token: Optional[str]) -> Identity:
        """
        Проверяет токен подключения.

        Args:
            token: Токен из параметра запроса

        Returns:
            Личность владельца соединения

        Raises:
            AuthenticationFailed: Токен отсутствует, битый, просрочен или не разрешается
        """
        if token is None or not token.strip():
            await log_warning("Подключение без токена отклонено")
            raise AuthenticationFailed("Authentication token is missing")

        try:
            identity = await self._verifier.verify(token.strip())
        except AuthenticationFailed as e:
            await log_warning(f"Подключение отклонено: {e.message}")
            raise

        await log_info(
            f"Аутентифицирован {identity.role.value} {identity.user_id}",
            type_msg=TypeMsg.DEBUG,
        )
        return identity
