# src/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class UserRole(str, Enum):
    """Роли пользователей."""
    CLIENT = "client"
    PROVIDER = "provider"


class BookingStatus(str, Enum):
    """Статусы заявки."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    ARRIVED = "arrived"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class ServiceCategory(str, Enum):
    """Категории услуг (фиксированный справочник)."""
    BARBER = "Barber"
    PLUMBER = "Plumber"
    ELECTRICIAN = "Electrician"
    HOUSE_CLEANING = "House Cleaning"
    CARPENTER = "Carpenter"
    PAINTER = "Painter"

    @property
    def slug(self) -> str:
        """Ключ категории для топиков: 'House Cleaning' -> 'house_cleaning'."""
        return self.value.lower().replace(" ", "_")

    @classmethod
    def parse(cls, value: str) -> "ServiceCategory":
        """
        Находит категорию по значению или slug без учёта регистра.

        Raises:
            ValueError: Если категория неизвестна
        """
        normalized = str(value).strip().lower().replace("_", " ")
        for category in cls:
            if category.value.lower() == normalized:
                return category
        raise ValueError(f"Неизвестная категория услуги: {value}")


class ClientEvents:
    """Входящие события WebSocket (от клиента к серверу)."""
    NEW_BOOKING = "new_booking"
    ACCEPT_BOOKING = "accept_booking"
    PROVIDER_ARRIVED = "provider_arrived"
    SERVICE_COMPLETED = "service_completed"
    UPDATE_BOOKING_STATUS = "update_booking_status"
    CANCEL_BOOKING = "cancel_booking"
    REJECT_BOOKING = "reject_booking"
    UPDATE_AVAILABILITY = "update_availability"
    SUBMIT_RATING = "submit_rating"
    PING = "ping"


class ServerEvents:
    """Исходящие события WebSocket (от сервера к клиенту)."""
    # Жизненный цикл заявки
    NEW_BOOKING = "new_booking"
    BOOKING_CREATED = "booking_created"
    BOOKING_UNAVAILABLE = "booking_unavailable"
    BOOKING_ACCEPTED = "booking_accepted"
    BOOKING_ACCEPTED_SUCCESS = "booking_accepted_success"
    PROVIDER_ARRIVED = "provider_arrived"
    ARRIVAL_CONFIRMED = "arrival_confirmed"
    SERVICE_COMPLETED = "service_completed"
    COMPLETION_CONFIRMED = "completion_confirmed"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_REJECTED = "booking_rejected"
    BOOKING_STATUS_UPDATED = "booking_status_updated"
    STATUS_UPDATE_SUCCESS = "status_update_success"

    # Исполнители и рейтинги
    PROVIDER_AVAILABILITY = "provider_availability"
    AVAILABILITY_UPDATED = "availability_updated"
    NEW_RATING = "new_rating"
    RATING_SUBMITTED = "rating_submitted"

    # Служебные
    RESYNC_REQUIRED = "resync_required"
    PONG = "pong"

    # Ошибки
    BOOKING_ERROR = "booking_error"
    RATING_ERROR = "rating_error"
    UPDATE_ERROR = "update_error"
