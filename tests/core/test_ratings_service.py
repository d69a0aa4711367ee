# tests/core/test_ratings_service.py
"""
Тесты агрегатора оценок.
"""

import asyncio

import pytest

from src.common.constants import BookingStatus, ServerEvents
from src.common.errors import AlreadyRated, NotEligible, NotFound, ValidationFailed
from src.core.bookings.service import BookingService
from src.core.ratings.service import RatingAggregator
from src.core.users.models import Identity, User
from src.infra.memory_store import MemoryStore


async def _completed_booking(
    booking_service: BookingService, client: User, provider: User, payload: dict
) -> str:
    booking = await booking_service.create(Identity.from_user(client), payload)
    identity = Identity.from_user(provider)
    await booking_service.accept(booking.id, identity)
    await booking_service.arrive(booking.id, identity)
    await booking_service.complete(booking.id, identity)
    return booking.id


class TestSubmit:
    """Приём оценок."""

    @pytest.mark.asyncio
    async def test_rating_and_duplicate(
        self, booking_service, rating_aggregator: RatingAggregator, client_user, plumber_a,
        memory_store: MemoryStore, sample_booking_payload,
    ) -> None:
        """Вторая оценка той же заявки отклоняется, среднее не меняется."""
        booking_id = await _completed_booking(
            booking_service, client_user, plumber_a, sample_booking_payload
        )

        snapshot = await rating_aggregator.submit(booking_id, client_user.id, 4, "Хорошо")

        assert snapshot.average_rating == 4.0
        assert snapshot.total_ratings == 1
        assert snapshot.completed_bookings == 1

        with pytest.raises(AlreadyRated):
            await rating_aggregator.submit(booking_id, client_user.id, 5)

        provider = memory_store.users[plumber_a.id]
        assert provider.average_rating == 4.0
        assert provider.total_ratings == 1

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_single_winner(
        self, booking_service, rating_aggregator: RatingAggregator, client_user, plumber_a,
        memory_store: MemoryStore, sample_booking_payload,
    ) -> None:
        """Одновременные оценки одной заявки: принимается ровно одна."""
        booking_id = await _completed_booking(
            booking_service, client_user, plumber_a, sample_booking_payload
        )

        results = await asyncio.gather(
            *(rating_aggregator.submit(booking_id, client_user.id, value) for value in (5, 3, 1, 4)),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        duplicates = [r for r in results if isinstance(r, AlreadyRated)]
        assert len(winners) == 1
        assert len(duplicates) == 3

        provider = memory_store.users[plumber_a.id]
        assert provider.total_ratings == 1
        assert provider.completed_bookings == 1
        assert provider.average_rating == winners[0].average_rating
        assert len(memory_store.ratings) == 1

    @pytest.mark.asyncio
    async def test_average_over_bookings(
        self, booking_service, rating_aggregator, client_user, plumber_a, sample_booking_payload
    ) -> None:
        first = await _completed_booking(booking_service, client_user, plumber_a, sample_booking_payload)
        second = await _completed_booking(booking_service, client_user, plumber_a, sample_booking_payload)

        await rating_aggregator.submit(first, client_user.id, 5)
        snapshot = await rating_aggregator.submit(second, client_user.id, 4)

        assert snapshot.average_rating == 4.5
        assert snapshot.total_ratings == 2

    @pytest.mark.asyncio
    async def test_provider_notified(
        self, booking_service, rating_aggregator, client_user, plumber_a, connect, drain,
        sample_booking_payload,
    ) -> None:
        entry, sender = connect(plumber_a)
        booking_id = await _completed_booking(
            booking_service, client_user, plumber_a, sample_booking_payload
        )

        await rating_aggregator.submit(
            booking_id, client_user.id, 5, "Супер", client_name="Анна"
        )
        await drain(entry)

        assert sender.of(ServerEvents.NEW_RATING) == [
            {
                "bookingId": booking_id,
                "rating": 5,
                "review": "Супер",
                "clientName": "Анна",
                "averageRating": 5.0,
                "totalRatings": 1,
            }
        ]

    @pytest.mark.asyncio
    async def test_incomplete_booking(
        self, booking_service, rating_aggregator, client_user, plumber_a, sample_booking_payload
    ) -> None:
        booking = await booking_service.create(Identity.from_user(client_user), sample_booking_payload)
        await booking_service.accept(booking.id, Identity.from_user(plumber_a))

        with pytest.raises(NotEligible) as exc_info:
            await rating_aggregator.submit(booking.id, client_user.id, 5)
        assert exc_info.value.message == "Invalid or incomplete booking"

    @pytest.mark.asyncio
    async def test_foreign_client(
        self, booking_service, rating_aggregator, client_user, plumber_a, sample_booking_payload
    ) -> None:
        booking_id = await _completed_booking(
            booking_service, client_user, plumber_a, sample_booking_payload
        )
        with pytest.raises(NotEligible) as exc_info:
            await rating_aggregator.submit(booking_id, "client-2", 5)
        assert exc_info.value.message == "Unauthorized to rate this booking"

    @pytest.mark.asyncio
    async def test_provider_mismatch(
        self, booking_service, rating_aggregator, client_user, plumber_a, plumber_b,
        sample_booking_payload,
    ) -> None:
        booking_id = await _completed_booking(
            booking_service, client_user, plumber_a, sample_booking_payload
        )
        with pytest.raises(NotEligible):
            await rating_aggregator.submit(booking_id, client_user.id, 5, provider_id=plumber_b.id)

    @pytest.mark.asyncio
    async def test_unknown_booking(self, rating_aggregator, client_user) -> None:
        with pytest.raises(NotFound):
            await rating_aggregator.submit("missing", client_user.id, 5)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [0, 6, 4.5, "5", True, None])
    async def test_invalid_value(self, rating_aggregator, client_user, value) -> None:
        """Проверка значения идёт до обращения к хранилищу."""
        with pytest.raises(ValidationFailed) as exc_info:
            await rating_aggregator.submit("b-1", client_user.id, value)
        assert exc_info.value.booking_id == "b-1"

    @pytest.mark.asyncio
    async def test_review_too_long(self, rating_aggregator, client_user) -> None:
        with pytest.raises(ValidationFailed):
            await rating_aggregator.submit("b-1", client_user.id, 5, "x" * 501)


class TestSummary:
    """Сводка рейтинга."""

    @pytest.mark.asyncio
    async def test_summary(
        self, booking_service, rating_aggregator, client_user, plumber_a, sample_booking_payload
    ) -> None:
        booking_id = await _completed_booking(
            booking_service, client_user, plumber_a, sample_booking_payload
        )
        await rating_aggregator.submit(booking_id, client_user.id, 3)

        summary = await rating_aggregator.summary(plumber_a.id)

        assert summary.average_rating == 3.0
        assert summary.distribution[3] == 1

    @pytest.mark.asyncio
    async def test_summary_unknown(self, rating_aggregator) -> None:
        with pytest.raises(NotFound):
            await rating_aggregator.summary("nobody")

    @pytest.mark.asyncio
    async def test_client_has_no_summary(self, rating_aggregator, client_user) -> None:
        with pytest.raises(NotFound):
            await rating_aggregator.summary(client_user.id)
