# src/infra/memory_store.py
"""
Хранилище в памяти процесса.

Используется при STORAGE_BACKEND=memory (разработка, тесты).
Является авторитетным только в пределах одного процесса.
Каждое изменение выполняется под asyncio-блокировкой своей сущности
(заявки или исполнителя), глобальной блокировки нет.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Optional

from src.common.constants import BookingStatus, ServiceCategory, TypeMsg
from src.common.errors import AlreadyRated, NotFound
from src.common.logger import log_info
from src.core.bookings.models import Booking
from src.core.bookings.repository import UNCHANGED
from src.core.ratings.models import MAX_RATING, MIN_RATING, Rating, RatingSummary, compute_average
from src.core.users.models import ProviderRatingSnapshot, User


class MemoryStore:
    """Общие таблицы и блокировки для репозиториев в памяти."""

    def __init__(self) -> None:
        self.users: dict[str, User] = {}
        self.bookings: dict[str, Booking] = {}
        # booking_id -> Rating (уникальность оценки на заявку)
        self.ratings: dict[str, Rating] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def lock(self, key: str) -> asyncio.Lock:
        """Блокировка одной сущности (`booking:<id>` или `user:<id>`)."""
        return self._locks[key]

    def stats(self) -> dict[str, int]:
        return {
            "users": len(self.users),
            "bookings": len(self.bookings),
            "ratings": len(self.ratings),
        }


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ПОЛЬЗОВАТЕЛИ
# =============================================================================

class MemoryUserRepository:
    """Репозиторий пользователей в памяти (интерфейс UserRepository)."""

    def __init__(self, store: MemoryStore) -> None:
        self._store = store

    async def get_by_id(self, user_id: str) -> Optional[User]:
        user = self._store.users.get(user_id)
        return user.model_copy(deep=True) if user else None

    async def create(self, user: User) -> User:
        async with self._store.lock(f"user:{user.id}"):
            existing = self._store.users.get(user.id)
            if existing is not None:
                return existing.model_copy(deep=True)
            self._store.users[user.id] = user.model_copy(deep=True)
        await log_info(f"Пользователь {user.id} создан (memory)", type_msg=TypeMsg.DEBUG)
        return user

    async def set_availability(self, user_id: str, is_available: bool) -> Optional[User]:
        async with self._store.lock(f"user:{user_id}"):
            user = self._store.users.get(user_id)
            if user is None or not user.is_provider:
                return None
            updated = user.model_copy(
                update={"is_available": is_available, "updated_at": _now()}
            )
            self._store.users[user_id] = updated
        return updated.model_copy(deep=True)


# =============================================================================
# ЗАЯВКИ
# =============================================================================

class MemoryBookingRepository:
    """Репозиторий заявок в памяти (интерфейс BookingRepository)."""

    def __init__(self, store: MemoryStore) -> None:
        self._store = store

    async def get_by_id(self, booking_id: str) -> Optional[Booking]:
        booking = self._store.bookings.get(booking_id)
        return booking.model_copy(deep=True) if booking else None

    async def create(self, booking: Booking) -> Booking:
        async with self._store.lock(f"booking:{booking.id}"):
            self._store.bookings[booking.id] = booking.model_copy(deep=True)
        return booking

    async def transition(
        self,
        booking_id: str,
        from_status: BookingStatus,
        to_status: BookingStatus,
        *,
        provider_id: Any = UNCHANGED,
        expected_provider_id: Optional[str] = None,
    ) -> Optional[Booking]:
        """Сравнение и запись статуса под блокировкой заявки."""
        async with self._store.lock(f"booking:{booking_id}"):
            current = self._store.bookings.get(booking_id)
            if current is None or current.status != from_status:
                return None
            if expected_provider_id is not None and current.provider_id != expected_provider_id:
                return None

            data = current.model_dump()
            data["status"] = to_status
            data["updated_at"] = _now()
            if provider_id is not UNCHANGED:
                data["provider_id"] = provider_id
            updated = Booking.model_validate(data)
            self._store.bookings[booking_id] = updated

        await log_info(
            f"Заявка {booking_id}: {from_status.value} -> {to_status.value} (memory)",
            type_msg=TypeMsg.DEBUG,
        )
        return updated.model_copy(deep=True)

    async def list_pending_by_service(
        self,
        service: ServiceCategory,
        limit: int = 100,
    ) -> list[Booking]:
        pending = [
            b for b in list(self._store.bookings.values())
            if b.service == service and b.status == BookingStatus.PENDING
        ]
        pending.sort(key=lambda b: b.created_at, reverse=True)
        return [b.model_copy(deep=True) for b in pending[:limit]]


# =============================================================================
# ОЦЕНКИ
# =============================================================================

class MemoryRatingRepository:
    """Репозиторий оценок в памяти (интерфейс RatingRepository)."""

    def __init__(self, store: MemoryStore) -> None:
        self._store = store

    async def add_rating(self, rating: Rating) -> ProviderRatingSnapshot:
        """
        Добавляет оценку и пересчитывает агрегаты под блокировкой исполнителя.

        Raises:
            NotFound: Исполнитель не найден
            AlreadyRated: Оценка по этой заявке уже есть
        """
        async with self._store.lock(f"user:{rating.provider_id}"):
            provider = self._store.users.get(rating.provider_id)
            if provider is None or not provider.is_provider:
                raise NotFound("Provider not found", booking_id=rating.booking_id)
            if rating.booking_id in self._store.ratings:
                raise AlreadyRated(booking_id=rating.booking_id)

            self._store.ratings[rating.booking_id] = rating
            values = [
                r.value for r in self._store.ratings.values()
                if r.provider_id == rating.provider_id
            ]
            updated = provider.model_copy(
                update={
                    "average_rating": compute_average(values),
                    "total_ratings": len(values),
                    "completed_bookings": provider.completed_bookings + 1,
                    "updated_at": _now(),
                }
            )
            self._store.users[provider.id] = updated

        return ProviderRatingSnapshot(
            provider_id=updated.id,
            average_rating=updated.average_rating,
            total_ratings=updated.total_ratings,
            completed_bookings=updated.completed_bookings,
        )

    async def get_summary(self, provider_id: str) -> Optional[RatingSummary]:
        provider = self._store.users.get(provider_id)
        if provider is None or not provider.is_provider:
            return None

        distribution = {v: 0 for v in range(MIN_RATING, MAX_RATING + 1)}
        for r in list(self._store.ratings.values()):
            if r.provider_id == provider_id:
                distribution[r.value] += 1

        return RatingSummary(
            provider_id=provider.id,
            average_rating=provider.average_rating,
            total_ratings=provider.total_ratings,
            completed_bookings=provider.completed_bookings,
            distribution=distribution,
        )
