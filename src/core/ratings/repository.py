# src/core/ratings/repository.py
"""
Репозиторий оценок в PostgreSQL.

Добавление оценки и пересчёт агрегатов исполнителя выполняются в одной
транзакции под блокировкой строки исполнителя; уникальность оценки на
заявку обеспечивается ограничением UNIQUE (booking_id).
"""

from __future__ import annotations

from typing import Optional

from src.common.constants import TypeMsg, UserRole
from src.common.errors import AlreadyRated, DispatchError, NotFound, StorageError
from src.common.logger import log_error, log_info
from src.core.ratings.models import MAX_RATING, MIN_RATING, Rating, RatingSummary, compute_average
from src.core.users.models import ProviderRatingSnapshot
from src.infra.database import DatabaseManager


class RatingRepository:
    """Репозиторий оценок."""

    def __init__(self, db: DatabaseManager) -> None:
        """
        Args:
            db: Менеджер базы данных (Dependency Injection)
        """
        self._db = db

    async def add_rating(self, rating: Rating) -> ProviderRatingSnapshot:
        """
        Добавляет оценку и атомарно пересчитывает агрегаты исполнителя.

        Raises:
            NotFound: Исполнитель не найден
            AlreadyRated: Оценка по этой заявке уже есть
            StorageError: Ошибка хранилища
        """
        try:
            async with self._db.transaction() as conn:
                locked = await conn.fetchrow(
                    "SELECT id FROM users WHERE id = $1 AND role = $2 FOR UPDATE",
                    rating.provider_id,
                    UserRole.PROVIDER.value,
                )
                if locked is None:
                    raise NotFound("Provider not found", booking_id=rating.booking_id)

                inserted = await conn.fetchrow(
                    """
                    INSERT INTO ratings (id, booking_id, provider_id, client_id, value, review, created_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7)
                    ON CONFLICT (booking_id) DO NOTHING
                    RETURNING id
                    """,
                    rating.id,
                    rating.booking_id,
                    rating.provider_id,
                    rating.client_id,
                    rating.value,
                    rating.review,
                    rating.created_at,
                )
                if inserted is None:
                    raise AlreadyRated(booking_id=rating.booking_id)

                rows = await conn.fetch(
                    "SELECT value FROM ratings WHERE provider_id = $1",
                    rating.provider_id,
                )
                values = [row["value"] for row in rows]

                updated = await conn.fetchrow(
                    """
                    UPDATE users
                    SET average_rating = $2,
                        total_ratings = $3,
                        completed_bookings = completed_bookings + 1,
                        updated_at = NOW()
                    WHERE id = $1
                    RETURNING id, average_rating, total_ratings, completed_bookings
                    """,
                    rating.provider_id,
                    compute_average(values),
                    len(values),
                )
        except DispatchError:
            raise
        except Exception as e:
            await log_error(f"Ошибка сохранения оценки по заявке {rating.booking_id}: {e}")
            raise StorageError(booking_id=rating.booking_id) from e

        await log_info(
            f"Оценка {rating.value} по заявке {rating.booking_id} сохранена",
            type_msg=TypeMsg.DEBUG,
        )
        return ProviderRatingSnapshot(
            provider_id=updated["id"],
            average_rating=updated["average_rating"],
            total_ratings=updated["total_ratings"],
            completed_bookings=updated["completed_bookings"],
        )

    async def get_summary(self, provider_id: str) -> Optional[RatingSummary]:
        """
        Сводка рейтинга с распределением оценок.

        Returns:
            Сводка или None, если исполнитель не найден
        """
        try:
            user_row = await self._db.fetchrow(
                """
                SELECT id, average_rating, total_ratings, completed_bookings
                FROM users
                WHERE id = $1 AND role = $2
                """,
                provider_id,
                UserRole.PROVIDER.value,
            )
            if user_row is None:
                return None

            dist_rows = await self._db.fetch(
                """
                SELECT value, COUNT(*) AS cnt
                FROM ratings
                WHERE provider_id = $1
                GROUP BY value
                """,
                provider_id,
            )
        except Exception as e:
            await log_error(f"Ошибка получения рейтинга {provider_id}: {e}")
            raise StorageError() from e

        distribution = {v: 0 for v in range(MIN_RATING, MAX_RATING + 1)}
        for row in dist_rows:
            distribution[int(row["value"])] = int(row["cnt"])

        return RatingSummary(
            provider_id=user_row["id"],
            average_rating=user_row["average_rating"],
            total_ratings=user_row["total_ratings"],
            completed_bookings=user_row["completed_bookings"],
            distribution=distribution,
        )
