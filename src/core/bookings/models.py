# src/core/bookings/models.py
"""
Модели данных заявок.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.common.constants import BookingStatus, ServiceCategory

# Статусы, в которых у заявки обязательно есть исполнитель
PROVIDER_BOUND_STATUSES = frozenset({
    BookingStatus.ACCEPTED,
    BookingStatus.ARRIVED,
    BookingStatus.COMPLETED,
})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Location(BaseModel):
    """Точка оказания услуги."""

    latitude: float = Field(..., ge=-90.0, le=90.0, description="Широта")
    longitude: float = Field(..., ge=-180.0, le=180.0, description="Долгота")
    address: str = Field(..., min_length=1, description="Адрес")


class ClientInfo(BaseModel):
    """Снимок контактов клиента на момент создания заявки."""

    name: str = ""
    phone: str = ""
    email: str = ""


class Booking(BaseModel):
    """Модель заявки."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=lambda: uuid4().hex, description="ID заявки")
    client_id: str = Field(..., description="ID клиента")
    provider_id: Optional[str] = Field(None, description="ID исполнителя")

    service: ServiceCategory = Field(..., description="Категория услуги")
    status: BookingStatus = Field(BookingStatus.PENDING, description="Статус заявки")
    scheduled_time: datetime = Field(..., description="Запланированное время")

    location: Location
    client_info: ClientInfo = Field(default_factory=ClientInfo)
    notes: str = Field("", description="Комментарий клиента")
    amount: Optional[float] = Field(None, ge=0.0, description="Стоимость")

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def check_provider_matches_status(self) -> "Booking":
        """Исполнитель назначен тогда и только тогда, когда статус его требует."""
        bound = self.status in PROVIDER_BOUND_STATUSES
        if bound and self.provider_id is None:
            raise ValueError(f"Статус {self.status.value} требует исполнителя")
        if not bound and self.provider_id is not None:
            raise ValueError(f"Статус {self.status.value} несовместим с исполнителем")
        return self

    @property
    def is_open(self) -> bool:
        """Доступна ли заявка для принятия."""
        return self.status == BookingStatus.PENDING

    def to_public(self) -> dict[str, Any]:
        """Представление заявки для событий WebSocket и HTTP."""
        return {
            "id": self.id,
            "customer": self.client_info.model_dump(),
            "service": self.service.value,
            "bookingTime": self.scheduled_time.isoformat(),
            "location": self.location.model_dump(),
            "status": self.status.value,
            "notes": self.notes,
            "amount": self.amount,
            "providerId": self.provider_id,
        }


class BookingCreateDTO(BaseModel):
    """
    Данные входящего события new_booking.

    Принимает плоский формат (latitude, longitude, location=адрес)
    и вложенный (location={latitude, longitude, address}).
    """

    model_config = ConfigDict(populate_by_name=True)

    service: ServiceCategory
    scheduled_time: datetime = Field(..., alias="scheduledTime")
    location: Location
    client_name: str = Field("", alias="clientName")
    client_phone: str = Field("", alias="clientPhone")
    client_email: str = Field("", alias="clientEmail")
    notes: str = ""
    amount: Optional[float] = Field(None, ge=0.0)

    @model_validator(mode="before")
    @classmethod
    def normalize_payload(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)

        location = data.get("location")
        if not isinstance(location, dict):
            data["location"] = {
                "latitude": data.pop("latitude", data.pop("lat", None)),
                "longitude": data.pop("longitude", data.pop("lon", None)),
                "address": location,
            }
        else:
            data["location"] = {
                "latitude": location.get("latitude", location.get("lat")),
                "longitude": location.get("longitude", location.get("lon")),
                "address": location.get("address"),
            }

        service = data.get("service")
        if isinstance(service, str):
            try:
                data["service"] = ServiceCategory.parse(service)
            except ValueError:
                # Оставляем как есть: pydantic вернёт ошибку перечисления
                pass

        if data.get("notes") is None:
            data["notes"] = ""
        return data

    def to_booking(self, client_id: str) -> Booking:
        """Новая заявка в статусе pending без исполнителя."""
        return Booking(
            client_id=client_id,
            service=self.service,
            status=BookingStatus.PENDING,
            scheduled_time=self.scheduled_time,
            location=self.location,
            client_info=ClientInfo(
                name=self.client_name,
                phone=self.client_phone,
                email=self.client_email,
            ),
            notes=self.notes,
            amount=self.amount,
        )
