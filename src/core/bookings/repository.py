# src/core/bookings/repository.py
"""
Репозиторий заявок в PostgreSQL.

Все переходы статусов выполняются одним условным UPDATE
(`WHERE id = $1 AND status = <ожидаемый>`), поэтому из нескольких
конкурентных попыток одного и того же перехода успешна ровно одна.
"""

from __future__ import annotations

from typing import Any, Final, Optional

from src.common.constants import BookingStatus, ServiceCategory, TypeMsg
from src.common.errors import StorageError
from src.common.logger import log_error, log_info
from src.core.bookings.models import Booking, ClientInfo, Location
from src.infra.database import DatabaseManager


class _Unchanged:
    def __repr__(self) -> str:
        return "UNCHANGED"


# Маркер «не трогать provider_id» для transition()
UNCHANGED: Final = _Unchanged()

_BOOKING_COLUMNS = """
    id, client_id, provider_id, service, status, scheduled_time,
    latitude, longitude, address, client_name, client_phone, client_email,
    notes, amount, created_at, updated_at
"""


class BookingRepository:
    """Репозиторий заявок."""

    def __init__(self, db: DatabaseManager) -> None:
        """
        Args:
            db: Менеджер базы данных (Dependency Injection)
        """
        self._db = db

    async def get_by_id(self, booking_id: str) -> Optional[Booking]:
        """
        Получает заявку по ID.

        Returns:
            Заявка или None
        """
        try:
            row = await self._db.fetchrow(
                f"SELECT {_BOOKING_COLUMNS} FROM bookings WHERE id = $1",
                booking_id,
            )
        except Exception as e:
            await log_error(f"Ошибка получения заявки {booking_id}: {e}")
            raise StorageError(booking_id=booking_id) from e

        if row is None:
            return None
        return row_to_booking(row)

    async def create(self, booking: Booking) -> Booking:
        """Сохраняет новую заявку."""
        try:
            await self._db.execute(
                """
                INSERT INTO bookings (
                    id, client_id, provider_id, service, status, scheduled_time,
                    latitude, longitude, address, client_name, client_phone, client_email,
                    notes, amount, created_at, updated_at
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16)
                """,
                booking.id,
                booking.client_id,
                booking.provider_id,
                booking.service.value,
                booking.status.value,
                booking.scheduled_time,
                booking.location.latitude,
                booking.location.longitude,
                booking.location.address,
                booking.client_info.name,
                booking.client_info.phone,
                booking.client_info.email,
                booking.notes,
                booking.amount,
                booking.created_at,
                booking.updated_at,
            )
        except Exception as e:
            await log_error(f"Ошибка создания заявки {booking.id}: {e}")
            raise StorageError(booking_id=booking.id) from e

        await log_info(f"Заявка {booking.id} сохранена", type_msg=TypeMsg.DEBUG)
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
        """
        Атомарный условный переход статуса.

        Args:
            booking_id: ID заявки
            from_status: Статус, в котором заявка обязана находиться сейчас
            to_status: Новый статус
            provider_id: Новое значение provider_id (None - сбросить); UNCHANGED - не менять
            expected_provider_id: Если задан, заявка должна принадлежать этому исполнителю

        Returns:
            Обновлённая заявка или None, если условие не выполнено
        """
        assign_provider = provider_id is not UNCHANGED
        try:
            row = await self._db.fetchrow(
                f"""
                UPDATE bookings
                SET status = $3,
                    provider_id = CASE WHEN $4 THEN $5 ELSE provider_id END,
                    updated_at = NOW()
                WHERE id = $1
                  AND status = $2
                  AND ($6::text IS NULL OR provider_id = $6)
                RETURNING {_BOOKING_COLUMNS}
                """,
                booking_id,
                from_status.value,
                to_status.value,
                assign_provider,
                provider_id if assign_provider else None,
                expected_provider_id,
            )
        except Exception as e:
            await log_error(f"Ошибка перехода заявки {booking_id} {from_status.value}->{to_status.value}: {e}")
            raise StorageError(booking_id=booking_id) from e

        if row is None:
            return None

        await log_info(
            f"Заявка {booking_id}: {from_status.value} -> {to_status.value}",
            type_msg=TypeMsg.DEBUG,
        )
        return row_to_booking(row)

    async def list_pending_by_service(
        self,
        service: ServiceCategory,
        limit: int = 100,
    ) -> list[Booking]:
        """Открытые заявки категории, новые первыми."""
        try:
            rows = await self._db.fetch(
                f"""
                SELECT {_BOOKING_COLUMNS}
                FROM bookings
                WHERE service = $1 AND status = $2
                ORDER BY created_at DESC
                LIMIT $3
                """,
                service.value,
                BookingStatus.PENDING.value,
                limit,
            )
        except Exception as e:
            await log_error(f"Ошибка получения открытых заявок {service.value}: {e}")
            raise StorageError() from e

        return [row_to_booking(row) for row in rows]


def row_to_booking(row) -> Booking:
    """Конвертирует строку БД в модель Booking."""
    amount = row["amount"]
    return Booking(
        id=row["id"],
        client_id=row["client_id"],
        provider_id=row["provider_id"],
        service=ServiceCategory(row["service"]),
        status=BookingStatus(row["status"]),
        scheduled_time=row["scheduled_time"],
        location=Location(
            latitude=row["latitude"],
            longitude=row["longitude"],
            address=row["address"],
        ),
        client_info=ClientInfo(
            name=row["client_name"] or "",
            phone=row["client_phone"] or "",
            email=row["client_email"] or "",
        ),
        notes=row["notes"] or "",
        amount=float(amount) if amount is not None else None,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
