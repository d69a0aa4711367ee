# src/services/realtime_ws/handlers.py
"""
Обработка входящих событий WebSocket.

Каждое событие ведёт к ответу: подтверждению или событию ошибки
(`booking_error`, `rating_error`, `update_error`) с полями
{message, kind, bookingId?}. Неизвестное событие - update_error.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from src.common.constants import ClientEvents, ServerEvents, TypeMsg, UserRole
from src.common.errors import DispatchError, NotEligible, NotFound, ValidationFailed
from src.common.logger import log_debug, log_error, log_info
from src.common.topics import Topic
from src.core.bookings.service import BookingService, format_validation_error
from src.core.ratings.models import RatingSubmitDTO
from src.core.ratings.service import RatingAggregator
from src.core.users.repository import UserRepository
from src.services.realtime_ws.presence import PresenceEntry
from src.services.realtime_ws.topics import TopicRouter

Handler = Callable[[PresenceEntry, dict[str, Any]], Awaitable[None]]

INTERNAL_ERROR_KIND = "InternalError"


def _booking_id(data: dict[str, Any]) -> str:
    booking_id = data.get("bookingId")
    if not isinstance(booking_id, str) or not booking_id:
        raise ValidationFailed("bookingId is required")
    return booking_id


def _optional_booking_id(data: dict[str, Any]) -> str | None:
    booking_id = data.get("bookingId")
    return booking_id if isinstance(booking_id, str) and booking_id else None


class EventDispatcher:
    """
    Диспетчер входящих событий одного инстанса.

    Ошибки обработчика не закрывают соединение: инициатор получает
    событие ошибки, состояние не меняется.
    """

    def __init__(
        self,
        router: TopicRouter,
        bookings: BookingService,
        ratings: RatingAggregator,
        users: UserRepository,
    ) -> None:
        self._router = router
        self._bookings = bookings
        self._ratings = ratings
        self._users = users

        # event -> (handler, событие ошибки)
        self._handlers: dict[str, tuple[Handler, str]] = {
            ClientEvents.NEW_BOOKING: (self._on_new_booking, ServerEvents.BOOKING_ERROR),
            ClientEvents.ACCEPT_BOOKING: (self._on_accept_booking, ServerEvents.BOOKING_ERROR),
            ClientEvents.PROVIDER_ARRIVED: (self._on_provider_arrived, ServerEvents.BOOKING_ERROR),
            ClientEvents.SERVICE_COMPLETED: (self._on_service_completed, ServerEvents.BOOKING_ERROR),
            ClientEvents.CANCEL_BOOKING: (self._on_cancel_booking, ServerEvents.BOOKING_ERROR),
            ClientEvents.REJECT_BOOKING: (self._on_reject_booking, ServerEvents.BOOKING_ERROR),
            ClientEvents.UPDATE_BOOKING_STATUS: (self._on_update_status, ServerEvents.UPDATE_ERROR),
            ClientEvents.UPDATE_AVAILABILITY: (self._on_update_availability, ServerEvents.UPDATE_ERROR),
            ClientEvents.SUBMIT_RATING: (self._on_submit_rating, ServerEvents.RATING_ERROR),
            ClientEvents.PING: (self._on_ping, ServerEvents.UPDATE_ERROR),
        }

    @property
    def events(self) -> frozenset[str]:
        return frozenset(self._handlers)

    # =========================================================================
    # ВХОД
    # =========================================================================

    async def handle_text(self, entry: PresenceEntry, text: str) -> None:
        """Разбирает текстовый кадр и передаёт его в dispatch."""
        try:
            frame = json.loads(text)
        except json.JSONDecodeError:
            await self._reply_error(
                entry, ServerEvents.UPDATE_ERROR, ValidationFailed("Malformed message")
            )
            return
        await self.dispatch(entry, frame)

    async def dispatch(self, entry: PresenceEntry, frame: Any) -> None:
        """
        Выполняет обработчик события.

        Args:
            entry: Соединение-инициатор
            frame: {"event": <имя>, "data": {...}}
        """
        if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
            await self._reply_error(
                entry, ServerEvents.UPDATE_ERROR, ValidationFailed("Message must have an event name")
            )
            return

        event = frame["event"]
        data = frame.get("data")
        if data is None:
            data = {}

        handler_info = self._handlers.get(event)
        if handler_info is None:
            await self._reply_error(
                entry, ServerEvents.UPDATE_ERROR, ValidationFailed(f"Unknown event: {event}")
            )
            return

        handler, error_event = handler_info
        if not isinstance(data, dict):
            await self._reply_error(entry, error_event, ValidationFailed("Event data must be an object"))
            return

        await log_debug(f"{entry.connection_id} ({entry.user_id}) -> {event}")
        try:
            await handler(entry, data)
        except DispatchError as e:
            if e.booking_id is None:
                e.booking_id = _optional_booking_id(data)
            await self._reply_error(entry, error_event, e)
        except ValidationError as e:
            await self._reply_error(
                entry,
                error_event,
                ValidationFailed(format_validation_error(e), booking_id=_optional_booking_id(data)),
            )
        except Exception as e:
            await log_error(
                f"Ошибка обработки {event} от {entry.connection_id}: {e}",
                exc_info=True,
            )
            payload: dict[str, Any] = {"message": "Internal error", "kind": INTERNAL_ERROR_KIND}
            booking_id = _optional_booking_id(data)
            if booking_id is not None:
                payload["bookingId"] = booking_id
            await self._router.send(entry.connection_id, error_event, payload)

    async def _reply_error(self, entry: PresenceEntry, event: str, error: DispatchError) -> None:
        await log_info(
            f"{entry.connection_id}: {event} {error.kind}: {error.message}",
            type_msg=TypeMsg.DEBUG,
        )
        await self._router.send(entry.connection_id, event, error.to_payload())

    # =========================================================================
    # ЗАЯВКИ
    # =========================================================================

    async def _on_new_booking(self, entry: PresenceEntry, data: dict[str, Any]) -> None:
        booking = await self._bookings.create(entry.identity, data)
        await self._router.send(
            entry.connection_id,
            ServerEvents.BOOKING_CREATED,
            {"success": True, "bookingId": booking.id},
        )

    async def _on_accept_booking(self, entry: PresenceEntry, data: dict[str, Any]) -> None:
        # booking_accepted_success отправляет сервис на это же соединение
        await self._bookings.accept(
            _booking_id(data), entry.identity, connection_id=entry.connection_id
        )

    async def _on_provider_arrived(self, entry: PresenceEntry, data: dict[str, Any]) -> None:
        booking = await self._bookings.arrive(_booking_id(data), entry.identity)
        await self._router.send(
            entry.connection_id, ServerEvents.ARRIVAL_CONFIRMED, {"bookingId": booking.id}
        )

    async def _on_service_completed(self, entry: PresenceEntry, data: dict[str, Any]) -> None:
        booking = await self._bookings.complete(
            _booking_id(data), entry.identity, timestamp=data.get("timestamp")
        )
        await self._router.send(
            entry.connection_id, ServerEvents.COMPLETION_CONFIRMED, {"bookingId": booking.id}
        )

    async def _on_cancel_booking(self, entry: PresenceEntry, data: dict[str, Any]) -> None:
        booking = await self._bookings.cancel(_booking_id(data), entry.identity)
        await self._router.send(
            entry.connection_id,
            ServerEvents.BOOKING_CANCELLED,
            {"bookingId": booking.id, "status": booking.status.value},
        )

    async def _on_reject_booking(self, entry: PresenceEntry, data: dict[str, Any]) -> None:
        booking = await self._bookings.reject(_booking_id(data), entry.identity)
        await self._router.send(
            entry.connection_id,
            ServerEvents.BOOKING_REJECTED,
            {"bookingId": booking.id, "status": booking.status.value},
        )

    async def _on_update_status(self, entry: PresenceEntry, data: dict[str, Any]) -> None:
        booking_id = _booking_id(data)
        status = data.get("status")
        if not isinstance(status, str):
            raise ValidationFailed("status is required", booking_id=booking_id)
        booking = await self._bookings.update_status(
            booking_id, status, entry.identity, connection_id=entry.connection_id
        )
        await self._router.send(
            entry.connection_id,
            ServerEvents.STATUS_UPDATE_SUCCESS,
            {"bookingId": booking.id, "status": booking.status.value},
        )

    # =========================================================================
    # ИСПОЛНИТЕЛЬ
    # =========================================================================

    async def _on_update_availability(self, entry: PresenceEntry, data: dict[str, Any]) -> None:
        if entry.role != UserRole.PROVIDER:
            raise NotEligible("Only providers can update availability")
        is_available = data.get("isAvailable")
        if not isinstance(is_available, bool):
            raise ValidationFailed("isAvailable must be a boolean")

        user = await self._users.set_availability(entry.user_id, is_available)
        if user is None:
            raise NotFound("Provider not found")

        await self._router.send(
            entry.connection_id, ServerEvents.AVAILABILITY_UPDATED, {"isAvailable": is_available}
        )
        broadcast = {"providerId": user.id, "isAvailable": is_available}
        for role in UserRole:
            await self._router.publish(
                Topic.for_role(role),
                ServerEvents.PROVIDER_AVAILABILITY,
                broadcast,
                exclude=entry.connection_id,
            )

    # =========================================================================
    # ОЦЕНКИ
    # =========================================================================

    async def _on_submit_rating(self, entry: PresenceEntry, data: dict[str, Any]) -> None:
        dto = RatingSubmitDTO.model_validate(data)
        if entry.role != UserRole.CLIENT:
            raise NotEligible("Only clients can rate providers", booking_id=dto.booking_id)

        client = await self._users.get_by_id(entry.user_id)
        snapshot = await self._ratings.submit(
            dto.booking_id,
            entry.user_id,
            dto.rating,
            dto.review,
            dto.provider_id,
            client_name=client.name if client else "",
        )
        await self._router.send(
            entry.connection_id,
            ServerEvents.RATING_SUBMITTED,
            {
                "success": True,
                "bookingId": dto.booking_id,
                "providerId": snapshot.provider_id,
                "averageRating": snapshot.average_rating,
                "totalRatings": snapshot.total_ratings,
            },
        )

    # =========================================================================
    # СЛУЖЕБНЫЕ
    # =========================================================================

    async def _on_ping(self, entry: PresenceEntry, data: dict[str, Any]) -> None:
        await self._router.send(
            entry.connection_id,
            ServerEvents.PONG,
            {"timestamp": datetime.now(timezone.utc).isoformat()},
        )
