# tests/core/test_users_models.py
"""
Тесты для моделей пользователей.
"""

import pytest
from pydantic import ValidationError

from src.common.constants import ServiceCategory, UserRole
from src.core.users.models import Identity, User


class TestUser:
    """Тесты модели User."""

    def test_client_defaults(self) -> None:
        user = User(name="Анна", role=UserRole.CLIENT)

        assert user.is_provider is False
        assert user.services == []
        assert user.average_rating == 0.0
        assert user.total_ratings == 0

    def test_services_coerced(self) -> None:
        user = User(name="Иван", role="provider", services=["Plumber", "House Cleaning"])
        assert user.services == [ServiceCategory.PLUMBER, ServiceCategory.HOUSE_CLEANING]

    def test_rating_bounds(self) -> None:
        with pytest.raises(ValidationError):
            User(name="Иван", role=UserRole.PROVIDER, average_rating=5.1)

    def test_unknown_role(self) -> None:
        with pytest.raises(ValidationError):
            User(name="Админ", role="admin")

    def test_public_profile(self, plumber_a: User) -> None:
        profile = plumber_a.public_profile()

        assert profile == {
            "id": "plumber-a",
            "name": "Иван Сантехник",
            "phone": "+380502222222",
            "services": ["Plumber"],
            "averageRating": 0.0,
            "totalRatings": 0,
        }


class TestIdentity:
    """Тесты модели Identity."""

    def test_from_user(self, plumber_a: User) -> None:
        identity = Identity.from_user(plumber_a)

        assert identity.user_id == "plumber-a"
        assert identity.is_provider is True
        assert identity.services == (ServiceCategory.PLUMBER,)

    def test_frozen(self, client_user: User) -> None:
        identity = Identity.from_user(client_user)
        with pytest.raises(ValidationError):
            identity.role = UserRole.PROVIDER
