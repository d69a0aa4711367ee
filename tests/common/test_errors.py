# tests/common/test_errors.py
"""
Тесты для типизированных ошибок.
"""

import pytest

from src.common.errors import (
    AlreadyRated,
    AuthenticationFailed,
    DispatchError,
    DuplicateConnection,
    InvalidTransition,
    NotEligible,
    NotFound,
    StorageError,
    ValidationFailed,
)


class TestDispatchError:
    """Тесты базовой ошибки."""

    @pytest.mark.parametrize(
        "error_cls",
        [
            AuthenticationFailed,
            InvalidTransition,
            NotEligible,
            AlreadyRated,
            NotFound,
            ValidationFailed,
            DuplicateConnection,
            StorageError,
        ],
    )
    def test_kind_is_class_name(self, error_cls: type[DispatchError]) -> None:
        error = error_cls()
        assert isinstance(error, DispatchError)
        assert error.kind == error_cls.__name__
        assert error.message == error_cls.default_message

    def test_payload_without_booking(self) -> None:
        payload = NotEligible("Only clients can create bookings").to_payload()
        assert payload == {"message": "Only clients can create bookings", "kind": "NotEligible"}

    def test_payload_with_booking(self) -> None:
        payload = InvalidTransition(booking_id="b-1").to_payload()
        assert payload == {
            "message": "Booking is no longer available",
            "kind": "InvalidTransition",
            "bookingId": "b-1",
        }

    def test_storage_error_is_generic(self) -> None:
        """Ошибка хранилища не раскрывает деталей."""
        assert StorageError().message == "Internal error"

    def test_already_rated_message(self) -> None:
        assert AlreadyRated().message == "You have already rated this service"

    def test_str(self) -> None:
        assert str(NotFound("Booking not found")) == "Booking not found"
