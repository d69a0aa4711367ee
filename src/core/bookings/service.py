# src/core/bookings/service.py
"""
Сервис заявок.

Проверяет права и допустимость перехода, выполняет условное обновление
в хранилище и только после фиксации публикует уведомления.
Нарушение условий не имеет побочных эффектов.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional, Union

from pydantic import ValidationError

from src.common.constants import BookingStatus, ServerEvents, ServiceCategory, TypeMsg, UserRole
from src.common.errors import InvalidTransition, NotEligible, NotFound, ValidationFailed
from src.common.logger import log_info
from src.common.topics import Topic
from src.core.bookings.models import Booking, BookingCreateDTO
from src.core.bookings.repository import BookingRepository
from src.core.bookings.state_machine import BookingStateMachine
from src.core.users.models import Identity
from src.core.users.repository import UserRepository

if TYPE_CHECKING:
    from src.services.realtime_ws.topics import TopicRouter


def format_validation_error(error: ValidationError) -> str:
    """Короткое сообщение по первой ошибке pydantic."""
    first = error.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "payload"
    return f"Invalid {field}: {first.get('msg', 'invalid value')}"


class BookingService:
    """
    Жизненный цикл заявки.

    Все переходы выполняются через BookingRepository.transition, то есть
    одним условным обновлением; из конкурентных попыток одного перехода
    успешна ровно одна.
    """

    def __init__(
        self,
        bookings: BookingRepository,
        users: UserRepository,
        router: "TopicRouter",
    ) -> None:
        """
        Args:
            bookings: Репозиторий заявок
            users: Репозиторий пользователей
            router: Маршрутизатор событий
        """
        self._bookings = bookings
        self._users = users
        self._router = router

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def get(self, booking_id: str) -> Booking:
        """
        Raises:
            NotFound: Заявка не найдена
        """
        booking = await self._bookings.get_by_id(booking_id)
        if booking is None:
            raise NotFound("Booking not found", booking_id=booking_id)
        return booking

    async def list_pending_for_service(
        self,
        service: Union[ServiceCategory, str],
        limit: int = 100,
    ) -> list[Booking]:
        """Открытые заявки категории для сверки после переподключения."""
        if not isinstance(service, ServiceCategory):
            try:
                service = ServiceCategory.parse(service)
            except ValueError as e:
                raise ValidationFailed(str(e)) from e
        return await self._bookings.list_pending_by_service(service, limit=limit)

    # =========================================================================
    # СОЗДАНИЕ
    # =========================================================================

    async def create(
        self,
        actor: Identity,
        data: Union[BookingCreateDTO, dict[str, Any]],
    ) -> Booking:
        """
        Создаёт заявку в статусе pending и рассылает её исполнителям категории.

        Raises:
            NotEligible: Инициатор не клиент
            ValidationFailed: Некорректные данные заявки
        """
        if actor.role != UserRole.CLIENT:
            raise NotEligible("Only clients can create bookings")

        if not isinstance(data, BookingCreateDTO):
            try:
                data = BookingCreateDTO.model_validate(data)
            except ValidationError as e:
                raise ValidationFailed(format_validation_error(e)) from e

        booking = await self._bookings.create(data.to_booking(actor.user_id))

        await self._router.publish(
            Topic.for_service(booking.service),
            ServerEvents.NEW_BOOKING,
            {"type": ServerEvents.NEW_BOOKING, "booking": booking.to_public()},
        )
        await log_info(
            f"Заявка {booking.id} ({booking.service.value}) создана клиентом {actor.user_id}",
            type_msg=TypeMsg.INFO,
        )
        return booking

    # =========================================================================
    # ПЕРЕХОДЫ ИСПОЛНИТЕЛЯ
    # =========================================================================

    async def accept(
        self,
        booking_id: str,
        actor: Identity,
        *,
        connection_id: Optional[str] = None,
    ) -> Booking:
        """
        Принимает заявку. Из конкурирующих исполнителей побеждает один.

        Args:
            booking_id: ID заявки
            actor: Исполнитель
            connection_id: Соединение победителя; исключается из booking_unavailable

        Raises:
            NotFound: Заявка не найдена
            NotEligible: Инициатор не исполнитель
            InvalidTransition: Заявка уже не pending (в т.ч. проигрыш гонки)
        """
        self._require_provider(actor, booking_id)
        booking = await self.get(booking_id)
        if booking.status != BookingStatus.PENDING:
            raise InvalidTransition(booking_id=booking_id)

        accepted = await self._bookings.transition(
            booking_id,
            BookingStatus.PENDING,
            BookingStatus.ACCEPTED,
            provider_id=actor.user_id,
        )
        if accepted is None:
            raise InvalidTransition(booking_id=booking_id)

        provider = await self._users.get_by_id(actor.user_id)
        profile = provider.public_profile() if provider else {"id": actor.user_id}

        await self._router.send_to_user(
            accepted.client_id,
            ServerEvents.BOOKING_ACCEPTED,
            {
                "bookingId": accepted.id,
                "provider": profile,
                "message": f"Provider {profile.get('name', actor.user_id)} accepted your booking",
            },
        )
        success = {"bookingId": accepted.id, "booking": accepted.to_public()}
        if connection_id is not None:
            await self._router.send(connection_id, ServerEvents.BOOKING_ACCEPTED_SUCCESS, success)
        else:
            await self._router.send_to_user(actor.user_id, ServerEvents.BOOKING_ACCEPTED_SUCCESS, success)

        await self._router.publish(
            Topic.for_service(accepted.service),
            ServerEvents.BOOKING_UNAVAILABLE,
            {"bookingId": accepted.id, "reason": BookingStatus.ACCEPTED.value},
            exclude=connection_id,
        )
        await log_info(
            f"Заявка {accepted.id} принята исполнителем {actor.user_id}",
            type_msg=TypeMsg.INFO,
        )
        return accepted

    async def arrive(self, booking_id: str, actor: Identity) -> Booking:
        """
        Исполнитель прибыл: accepted -> arrived.

        Raises:
            NotFound, NotEligible, InvalidTransition
        """
        booking = await self._load_assigned(booking_id, actor, BookingStatus.ARRIVED)
        arrived = await self._transition_or_fail(
            booking,
            BookingStatus.ARRIVED,
            expected_provider_id=actor.user_id,
        )

        provider = await self._users.get_by_id(actor.user_id)
        await self._router.send_to_user(
            arrived.client_id,
            ServerEvents.PROVIDER_ARRIVED,
            {
                "bookingId": arrived.id,
                "provider": {
                    "name": provider.name if provider else "",
                    "phone": provider.phone if provider else "",
                },
            },
        )
        return arrived

    async def complete(
        self,
        booking_id: str,
        actor: Identity,
        *,
        timestamp: Optional[Union[datetime, str]] = None,
    ) -> Booking:
        """
        Услуга оказана: arrived -> completed. Клиент получает приглашение оценить.

        Raises:
            NotFound, NotEligible, InvalidTransition
        """
        booking = await self._load_assigned(booking_id, actor, BookingStatus.COMPLETED)
        completed = await self._transition_or_fail(
            booking,
            BookingStatus.COMPLETED,
            expected_provider_id=actor.user_id,
        )

        if isinstance(timestamp, datetime):
            timestamp = timestamp.isoformat()
        await self._router.send_to_user(
            completed.client_id,
            ServerEvents.SERVICE_COMPLETED,
            {
                "bookingId": completed.id,
                "timestamp": timestamp or completed.updated_at.isoformat(),
                "providerId": completed.provider_id,
                "message": "Service has been completed. Please rate your experience.",
            },
        )
        await log_info(f"Заявка {completed.id} завершена", type_msg=TypeMsg.INFO)
        return completed

    async def reject(self, booking_id: str, actor: Identity) -> Booking:
        """
        Исполнитель отклоняет открытую заявку: pending -> rejected.

        Raises:
            NotFound, NotEligible, InvalidTransition
        """
        self._require_provider(actor, booking_id)
        booking = await self.get(booking_id)
        BookingStateMachine.ensure_transition(
            booking.status, BookingStatus.REJECTED, booking_id=booking_id
        )
        rejected = await self._transition_or_fail(booking, BookingStatus.REJECTED)

        await self._router.send_to_user(
            rejected.client_id,
            ServerEvents.BOOKING_REJECTED,
            {"bookingId": rejected.id, "status": rejected.status.value},
        )
        await self._router.publish(
            Topic.for_service(rejected.service),
            ServerEvents.BOOKING_UNAVAILABLE,
            {"bookingId": rejected.id, "reason": BookingStatus.REJECTED.value},
        )
        return rejected

    # =========================================================================
    # ОТМЕНА
    # =========================================================================

    async def cancel(self, booking_id: str, actor: Identity) -> Booking:
        """
        Отмена заявки.

        Клиент-владелец отменяет только pending. Назначенный исполнитель
        может отказаться от accepted; исполнитель при этом снимается.

        Raises:
            NotFound, NotEligible, InvalidTransition
        """
        booking = await self.get(booking_id)

        if actor.role == UserRole.CLIENT:
            if booking.client_id != actor.user_id:
                raise NotEligible("Only the booking owner can cancel it", booking_id=booking_id)
            if not booking.is_open:
                raise InvalidTransition(
                    f"Cannot cancel a booking in status {booking.status.value}",
                    booking_id=booking_id,
                )
            cancelled = await self._transition_or_fail(booking, BookingStatus.CANCELLED)
            await self._router.publish(
                Topic.for_service(cancelled.service),
                ServerEvents.BOOKING_UNAVAILABLE,
                {"bookingId": cancelled.id, "reason": BookingStatus.CANCELLED.value},
            )
        else:
            if booking.provider_id != actor.user_id:
                raise NotEligible("Booking is not assigned to you", booking_id=booking_id)
            if booking.status != BookingStatus.ACCEPTED:
                raise InvalidTransition(
                    f"Cannot cancel a booking in status {booking.status.value}",
                    booking_id=booking_id,
                )
            cancelled = await self._transition_or_fail(
                booking,
                BookingStatus.CANCELLED,
                provider_id=None,
                expected_provider_id=actor.user_id,
            )
            await self._router.send_to_user(
                cancelled.client_id,
                ServerEvents.BOOKING_CANCELLED,
                {"bookingId": cancelled.id, "reason": "provider_cancelled"},
            )

        await log_info(
            f"Заявка {cancelled.id} отменена ({actor.role.value} {actor.user_id})",
            type_msg=TypeMsg.INFO,
        )
        return cancelled

    # =========================================================================
    # ОБОБЩЁННОЕ СОБЫТИЕ СТАТУСА
    # =========================================================================

    async def update_status(
        self,
        booking_id: str,
        status: Union[BookingStatus, str],
        actor: Identity,
        *,
        connection_id: Optional[str] = None,
    ) -> Booking:
        """
        Переводит заявку в указанный статус через соответствующую защищённую операцию.

        Raises:
            ValidationFailed: Неизвестный статус
            InvalidTransition: В статус нет входящего перехода (pending)
        """
        try:
            target = BookingStatus(status)
        except ValueError as e:
            raise ValidationFailed(f"Unknown status: {status}", booking_id=booking_id) from e

        if target == BookingStatus.ACCEPTED:
            booking = await self.accept(booking_id, actor, connection_id=connection_id)
        elif target == BookingStatus.ARRIVED:
            booking = await self.arrive(booking_id, actor)
        elif target == BookingStatus.COMPLETED:
            booking = await self.complete(booking_id, actor)
        elif target == BookingStatus.CANCELLED:
            booking = await self.cancel(booking_id, actor)
        elif target == BookingStatus.REJECTED:
            booking = await self.reject(booking_id, actor)
        else:
            raise InvalidTransition(
                f"Status {target.value} cannot be set directly",
                booking_id=booking_id,
            )

        await self._router.send_to_user(
            booking.client_id,
            ServerEvents.BOOKING_STATUS_UPDATED,
            {"bookingId": booking.id, "status": booking.status.value},
        )
        return booking

    # =========================================================================
    # ВСПОМОГАТЕЛЬНЫЕ
    # =========================================================================

    @staticmethod
    def _require_provider(actor: Identity, booking_id: str) -> None:
        if not actor.is_provider:
            raise NotEligible("Only providers can perform this action", booking_id=booking_id)

    async def _load_assigned(
        self, booking_id: str, actor: Identity, target: BookingStatus
    ) -> Booking:
        """Заявка этого исполнителя, допускающая переход в target. Статус проверяется первым."""
        self._require_provider(actor, booking_id)
        booking = await self.get(booking_id)
        BookingStateMachine.ensure_transition(booking.status, target, booking_id=booking_id)
        if booking.provider_id != actor.user_id:
            raise NotEligible("Booking is not assigned to you", booking_id=booking_id)
        return booking

    async def _transition_or_fail(
        self,
        booking: Booking,
        to_status: BookingStatus,
        **kwargs: Any,
    ) -> Booking:
        """Условный переход из текущего статуса; проигрыш гонки - InvalidTransition."""
        updated = await self._bookings.transition(
            booking.id,
            booking.status,
            to_status,
            **kwargs,
        )
        if updated is None:
            raise InvalidTransition(
                f"Booking {booking.id} changed concurrently",
                booking_id=booking.id,
            )
        return updated
