# src/core/users/models.py
"""
Модели данных пользователей.

Учётные данные и профиль хранятся во внешнем сервисе; ядро читает
и изменяет только подмножество полей (роль, категории, доступность,
агрегаты рейтинга).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from src.common.constants import ServiceCategory, UserRole


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class User(BaseModel):
    """Пользователь: клиент или исполнитель."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=lambda: uuid4().hex, description="Непрозрачный ID")
    name: str = Field(..., description="Имя")
    email: str = Field("", description="Email")
    phone: str = Field("", description="Телефон")
    role: UserRole = Field(..., description="Роль")

    # Только для исполнителей
    services: list[ServiceCategory] = Field(default_factory=list, description="Категории услуг")
    is_available: bool = Field(False, description="Принимает ли заявки")

    # Агрегаты рейтинга (изменяются только агрегатором)
    average_rating: float = Field(0.0, ge=0.0, le=5.0, description="Средняя оценка (1 знак)")
    total_ratings: int = Field(0, ge=0, description="Количество оценок")
    completed_bookings: int = Field(0, ge=0, description="Завершённых заявок")

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_provider(self) -> bool:
        return self.role == UserRole.PROVIDER

    def public_profile(self) -> dict[str, Any]:
        """Данные исполнителя для уведомления клиента."""
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "services": [s.value for s in self.services],
            "averageRating": self.average_rating,
            "totalRatings": self.total_ratings,
        }


class ProviderRatingSnapshot(BaseModel):
    """Согласованный срез рейтинговых полей исполнителя."""

    provider_id: str
    average_rating: float
    total_ratings: int
    completed_bookings: int


class Identity(BaseModel):
    """Проверенная личность владельца соединения."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    role: UserRole
    services: tuple[ServiceCategory, ...] = ()

    @property
    def is_provider(self) -> bool:
        return self.role == UserRole.PROVIDER

    @classmethod
    def from_user(cls, user: User) -> "Identity":
        return cls(user_id=user.id, role=user.role, services=tuple(user.services))
