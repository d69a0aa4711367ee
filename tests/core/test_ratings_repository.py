# tests/core/test_ratings_repository.py
"""
Тесты репозитория оценок на моке транзакции asyncpg.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.common.errors import AlreadyRated, NotFound, StorageError
from src.core.ratings.models import Rating
from src.core.ratings.repository import RatingRepository


@pytest.fixture
def repository(mock_db: MagicMock) -> RatingRepository:
    return RatingRepository(mock_db)


@pytest.fixture
def rating() -> Rating:
    return Rating(booking_id="booking-1", provider_id="plumber-a", client_id="client-1", value=4)


class TestAddRating:
    """Добавление оценки в транзакции."""

    @pytest.mark.asyncio
    async def test_recomputes_aggregates(
        self, repository: RatingRepository, mock_conn: AsyncMock, rating: Rating
    ) -> None:
        mock_conn.fetchrow.side_effect = [
            {"id": "plumber-a"},
            {"id": rating.id},
            {"id": "plumber-a", "average_rating": 4.5, "total_ratings": 2, "completed_bookings": 2},
        ]
        mock_conn.fetch.return_value = [{"value": 5}, {"value": 4}]

        snapshot = await repository.add_rating(rating)

        assert snapshot.average_rating == 4.5
        assert snapshot.total_ratings == 2
        lock_query = mock_conn.fetchrow.call_args_list[0][0][0]
        assert "FOR UPDATE" in lock_query
        insert_query = mock_conn.fetchrow.call_args_list[1][0][0]
        assert "ON CONFLICT (booking_id) DO NOTHING" in insert_query
        update_args = mock_conn.fetchrow.call_args_list[2][0]
        assert update_args[1:] == ("plumber-a", 4.5, 2)

    @pytest.mark.asyncio
    async def test_provider_missing(
        self, repository: RatingRepository, mock_conn: AsyncMock, rating: Rating
    ) -> None:
        mock_conn.fetchrow.side_effect = [None]

        with pytest.raises(NotFound):
            await repository.add_rating(rating)

    @pytest.mark.asyncio
    async def test_duplicate(
        self, repository: RatingRepository, mock_conn: AsyncMock, rating: Rating
    ) -> None:
        """Конфликт по booking_id - AlreadyRated, агрегаты не трогаются."""
        mock_conn.fetchrow.side_effect = [{"id": "plumber-a"}, None]

        with pytest.raises(AlreadyRated) as exc_info:
            await repository.add_rating(rating)

        assert exc_info.value.booking_id == "booking-1"
        assert mock_conn.fetchrow.call_count == 2
        mock_conn.fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_db_error(
        self, repository: RatingRepository, mock_conn: AsyncMock, rating: Rating
    ) -> None:
        mock_conn.fetchrow.side_effect = ConnectionError("lost")

        with pytest.raises(StorageError):
            await repository.add_rating(rating)


class TestGetSummary:
    """Сводка рейтинга."""

    @pytest.mark.asyncio
    async def test_distribution(self, repository: RatingRepository, mock_db: MagicMock) -> None:
        mock_db.fetchrow.return_value = {
            "id": "plumber-a", "average_rating": 4.3, "total_ratings": 3, "completed_bookings": 3,
        }
        mock_db.fetch.return_value = [{"value": 5, "cnt": 1}, {"value": 4, "cnt": 2}]

        summary = await repository.get_summary("plumber-a")

        assert summary is not None
        assert summary.distribution == {1: 0, 2: 0, 3: 0, 4: 2, 5: 1}
        assert summary.average_rating == 4.3

    @pytest.mark.asyncio
    async def test_unknown_provider(self, repository: RatingRepository, mock_db: MagicMock) -> None:
        assert await repository.get_summary("nobody") is None
        mock_db.fetch.assert_not_called()
