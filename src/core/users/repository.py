# src/core/users/repository.py
"""
Репозиторий пользователей в PostgreSQL.
Только чтение профиля и флаг доступности исполнителя.
"""

from __future__ import annotations

from typing import Optional

from src.common.constants import ServiceCategory, TypeMsg, UserRole
from src.common.errors import StorageError
from src.common.logger import log_error, log_info
from src.core.users.models import User
from src.infra.database import DatabaseManager

_USER_COLUMNS = """
    id, name, email, phone, role, services, is_available,
    average_rating, total_ratings, completed_bookings, created_at, updated_at
"""


class UserRepository:
    """Репозиторий пользователей."""

    def __init__(self, db: DatabaseManager) -> None:
        """
        Args:
            db: Менеджер базы данных (Dependency Injection)
        """
        self._db = db

    async def get_by_id(self, user_id: str) -> Optional[User]:
        """
        Получает пользователя по ID.

        Returns:
            Пользователь или None
        """
        try:
            row = await self._db.fetchrow(
                f"SELECT {_USER_COLUMNS} FROM users WHERE id = $1",
                user_id,
            )
        except Exception as e:
            await log_error(f"Ошибка получения пользователя {user_id}: {e}")
            raise StorageError() from e

        if row is None:
            return None
        return row_to_user(row)

    async def create(self, user: User) -> User:
        """Создаёт пользователя (используется для dev-пользователей)."""
        try:
            await self._db.execute(
                """
                INSERT INTO users (id, name, email, phone, role, services, is_available,
                                   average_rating, total_ratings, completed_bookings,
                                   created_at, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
                ON CONFLICT (id) DO NOTHING
                """,
                user.id,
                user.name,
                user.email,
                user.phone,
                user.role.value,
                [s.value for s in user.services],
                user.is_available,
                user.average_rating,
                user.total_ratings,
                user.completed_bookings,
                user.created_at,
                user.updated_at,
            )
        except Exception as e:
            await log_error(f"Ошибка создания пользователя {user.id}: {e}")
            raise StorageError() from e

        await log_info(f"Пользователь {user.id} создан", type_msg=TypeMsg.DEBUG)
        return user

    async def set_availability(self, user_id: str, is_available: bool) -> Optional[User]:
        """
        Обновляет флаг доступности исполнителя.

        Returns:
            Обновлённый пользователь или None, если исполнитель не найден
        """
        try:
            row = await self._db.fetchrow(
                f"""
                UPDATE users
                SET is_available = $2, updated_at = NOW()
                WHERE id = $1 AND role = $3
                RETURNING {_USER_COLUMNS}
                """,
                user_id,
                is_available,
                UserRole.PROVIDER.value,
            )
        except Exception as e:
            await log_error(f"Ошибка обновления доступности {user_id}: {e}")
            raise StorageError() from e

        if row is None:
            return None
        return row_to_user(row)


def row_to_user(row) -> User:
    """Конвертирует строку БД в модель User."""
    return User(
        id=row["id"],
        name=row["name"],
        email=row["email"],
        phone=row["phone"],
        role=UserRole(row["role"]),
        services=[ServiceCategory.parse(s) for s in (row["services"] or [])],
        is_available=row["is_available"],
        average_rating=row["average_rating"],
        total_ratings=row["total_ratings"],
        completed_bookings=row["completed_bookings"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
