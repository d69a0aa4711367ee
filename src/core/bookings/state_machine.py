# src/core/bookings/state_machine.py
"""
Машина состояний заявки.

    pending  -> accepted | cancelled | rejected
    accepted -> arrived | cancelled
    arrived  -> completed

completed, cancelled и rejected - терминальные.
"""

from __future__ import annotations

from src.common.constants import BookingStatus
from src.common.errors import InvalidTransition


class BookingStateMachine:
    ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
        BookingStatus.PENDING: frozenset({
            BookingStatus.ACCEPTED,
            BookingStatus.CANCELLED,
            BookingStatus.REJECTED,
        }),
        BookingStatus.ACCEPTED: frozenset({BookingStatus.ARRIVED, BookingStatus.CANCELLED}),
        BookingStatus.ARRIVED: frozenset({BookingStatus.COMPLETED}),
        BookingStatus.COMPLETED: frozenset(),
        BookingStatus.CANCELLED: frozenset(),
        BookingStatus.REJECTED: frozenset(),
    }

    @staticmethod
    def can_transition(current_status: str, new_status: str) -> bool:
        try:
            curr = BookingStatus(current_status)
            new = BookingStatus(new_status)
        except ValueError:
            return False
        return new in BookingStateMachine.ALLOWED_TRANSITIONS.get(curr, frozenset())

    @staticmethod
    def is_terminal(status: str) -> bool:
        return not BookingStateMachine.ALLOWED_TRANSITIONS.get(BookingStatus(status))

    @staticmethod
    def ensure_transition(
        current_status: BookingStatus,
        new_status: BookingStatus,
        *,
        booking_id: str | None = None,
    ) -> None:
        """
        Raises:
            InvalidTransition: Если переход не описан в таблице
        """
        if not BookingStateMachine.can_transition(current_status, new_status):
            raise InvalidTransition(
                f"Cannot move booking from {BookingStatus(current_status).value} "
                f"to {BookingStatus(new_status).value}",
                booking_id=booking_id,
            )
