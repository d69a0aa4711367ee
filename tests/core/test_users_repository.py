# tests/core/test_users_repository.py
"""
Тесты для репозитория пользователей.
"""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest

from src.common.constants import ServiceCategory, UserRole
from src.common.errors import StorageError
from src.core.users.models import User
from src.core.users.repository import UserRepository, row_to_user


@pytest.fixture
def user_repository(mock_db: MagicMock) -> UserRepository:
    """Создаёт экземпляр UserRepository с моком БД."""
    return UserRepository(db=mock_db)


class TestRowToUser:
    def test_converts_row(self, sample_user_row: dict[str, Any]) -> None:
        user = row_to_user(sample_user_row)

        assert user.role == UserRole.PROVIDER
        assert user.services == [ServiceCategory.PLUMBER, ServiceCategory.ELECTRICIAN]
        assert user.average_rating == 4.5

    def test_null_services(self, sample_user_row: dict[str, Any]) -> None:
        assert row_to_user(dict(sample_user_row, services=None)).services == []


class TestUserRepository:
    """Тесты UserRepository."""

    @pytest.mark.asyncio
    async def test_get_by_id(
        self, user_repository: UserRepository, mock_db: MagicMock, sample_user_row: dict[str, Any]
    ) -> None:
        mock_db.fetchrow.return_value = sample_user_row

        user = await user_repository.get_by_id("plumber-a")

        assert user is not None
        assert user.id == "plumber-a"
        mock_db.fetchrow.assert_called_once()

    @pytest.mark.asyncio
    async def test_get_by_id_not_found(self, user_repository: UserRepository) -> None:
        assert await user_repository.get_by_id("nobody") is None

    @pytest.mark.asyncio
    async def test_get_by_id_error(self, user_repository: UserRepository, mock_db: MagicMock) -> None:
        mock_db.fetchrow.side_effect = OSError("connection reset")

        with pytest.raises(StorageError):
            await user_repository.get_by_id("plumber-a")

    @pytest.mark.asyncio
    async def test_create(self, user_repository: UserRepository, mock_db: MagicMock) -> None:
        user = User(id="u-1", name="Олег", role=UserRole.PROVIDER, services=["Painter"])

        result = await user_repository.create(user)

        assert result is user
        args = mock_db.execute.call_args[0]
        assert "ON CONFLICT (id) DO NOTHING" in args[0]
        assert args[5] == "provider"
        assert args[6] == ["Painter"]

    @pytest.mark.asyncio
    async def test_set_availability(
        self, user_repository: UserRepository, mock_db: MagicMock, sample_user_row: dict[str, Any]
    ) -> None:
        """Доступность меняется только у исполнителя."""
        mock_db.fetchrow.return_value = dict(sample_user_row, is_available=False)

        user = await user_repository.set_availability("plumber-a", False)

        assert user is not None
        assert user.is_available is False
        assert mock_db.fetchrow.call_args[0][1:] == ("plumber-a", False, "provider")

    @pytest.mark.asyncio
    async def test_set_availability_not_provider(self, user_repository: UserRepository) -> None:
        assert await user_repository.set_availability("client-1", True) is None
