# src/common/errors.py
"""
Типизированные ошибки диспетчерского ядра.

Каждая ошибка несёт `kind` (имя класса), человекочитаемое сообщение
и, если применимо, ID заявки. Ошибки уходят инициатору как событие
`*_error` и никогда не изменяют состояние.
"""

from __future__ import annotations

from typing import Any


class DispatchError(Exception):
    """Базовая ошибка ядра."""

    default_message = "Ошибка обработки запроса"

    def __init__(self, message: str | None = None, *, booking_id: str | None = None) -> None:
        self.message = message or self.default_message
        self.booking_id = booking_id
        super().__init__(self.message)

    @property
    def kind(self) -> str:
        """Тип ошибки для клиента."""
        return type(self).__name__

    def to_payload(self) -> dict[str, Any]:
        """Полезная нагрузка для события ошибки."""
        payload: dict[str, Any] = {"message": self.message, "kind": self.kind}
        if self.booking_id is not None:
            payload["bookingId"] = self.booking_id
        return payload


class AuthenticationFailed(DispatchError):
    """Отсутствующий, битый, просроченный или неразрешимый токен."""
    default_message = "Authentication failed"


class InvalidTransition(DispatchError):
    """Нарушение правил машины состояний (в т.ч. проигранная гонка за заявку)."""
    default_message = "Booking is no longer available"


class NotEligible(DispatchError):
    """Инициатор не имеет права на операцию."""
    default_message = "Not eligible for this operation"


class AlreadyRated(DispatchError):
    """Заявка уже оценена."""
    default_message = "You have already rated this service"


class NotFound(DispatchError):
    """Неизвестная заявка или исполнитель."""
    default_message = "Not found"


class ValidationFailed(DispatchError):
    """Некорректные входные данные."""
    default_message = "Validation failed"


class DuplicateConnection(DispatchError):
    """Соединение с таким ID уже зарегистрировано."""
    default_message = "Connection already registered"


class StorageError(DispatchError):
    """Хранилище недоступно или вернуло ошибку."""
    default_message = "Internal error"
