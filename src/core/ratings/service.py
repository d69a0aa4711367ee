# src/core/ratings/service.py
"""
Агрегатор оценок.

Единственное место, где меняются рейтинговые поля исполнителя:
average_rating, total_ratings и completed_bookings пересчитываются
вместе с добавлением оценки в одной атомарной операции хранилища.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

from src.common.constants import BookingStatus, ServerEvents, TypeMsg
from src.common.errors import NotEligible, NotFound, ValidationFailed
from src.common.logger import log_info
from src.common.topics import Topic
from src.core.bookings.repository import BookingRepository
from src.core.ratings.models import MAX_RATING, MIN_RATING, Rating, RatingSummary, compute_average
from src.core.ratings.repository import RatingRepository
from src.core.users.models import ProviderRatingSnapshot

if TYPE_CHECKING:
    from src.services.realtime_ws.topics import TopicRouter

__all__ = ["RatingAggregator", "compute_average"]


class RatingAggregator:
    """Приём оценок и сводка рейтинга исполнителя."""

    def __init__(
        self,
        bookings: BookingRepository,
        ratings: RatingRepository,
        router: "TopicRouter",
        *,
        review_max_length: Optional[int] = None,
    ) -> None:
        """
        Args:
            bookings: Репозиторий заявок
            ratings: Репозиторий оценок
            router: Маршрутизатор событий
            review_max_length: Максимальная длина отзыва (по умолчанию из конфига)
        """
        if review_max_length is None:
            from src.config import settings

            review_max_length = settings.ratings.REVIEW_MAX_LENGTH

        self._bookings = bookings
        self._ratings = ratings
        self._router = router
        self._review_max_length = review_max_length

    def validate(self, value: Any, review: Optional[str]) -> str:
        """
        Проверяет оценку и отзыв.

        Returns:
            Нормализованный отзыв

        Raises:
            ValidationFailed: Оценка не целое 1..5 или отзыв слишком длинный
        """
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationFailed("Rating must be an integer between 1 and 5")
        if not MIN_RATING <= value <= MAX_RATING:
            raise ValidationFailed("Rating must be between 1 and 5")

        review = review or ""
        if len(review) > self._review_max_length:
            raise ValidationFailed(
                f"Review cannot be more than {self._review_max_length} characters"
            )
        return review

    async def submit(
        self,
        booking_id: str,
        client_id: str,
        value: Any,
        review: Optional[str] = None,
        provider_id: Optional[str] = None,
        *,
        client_name: str = "",
    ) -> ProviderRatingSnapshot:
        """
        Принимает оценку по завершённой заявке.

        Args:
            booking_id: ID заявки
            client_id: ID клиента, который ставит оценку
            value: Оценка 1..5
            review: Отзыв
            provider_id: Исполнитель, указанный клиентом (сверяется с заявкой)
            client_name: Имя клиента для уведомления исполнителя

        Returns:
            Согласованный срез рейтинга исполнителя после фиксации

        Raises:
            ValidationFailed, NotFound, NotEligible, AlreadyRated
        """
        try:
            review = self.validate(value, review)
        except ValidationFailed as e:
            e.booking_id = booking_id
            raise

        booking = await self._bookings.get_by_id(booking_id)
        if booking is None:
            raise NotFound("Booking not found", booking_id=booking_id)
        if booking.status != BookingStatus.COMPLETED:
            raise NotEligible("Invalid or incomplete booking", booking_id=booking_id)
        if booking.client_id != client_id:
            raise NotEligible("Unauthorized to rate this booking", booking_id=booking_id)
        if provider_id is not None and provider_id != booking.provider_id:
            raise NotEligible("Provider does not match the booking", booking_id=booking_id)

        snapshot = await self._ratings.add_rating(
            Rating(
                booking_id=booking.id,
                provider_id=booking.provider_id,
                client_id=client_id,
                value=value,
                review=review,
            )
        )

        await self._router.publish(
            Topic.for_provider(snapshot.provider_id),
            ServerEvents.NEW_RATING,
            {
                "bookingId": booking.id,
                "rating": value,
                "review": review,
                "clientName": client_name,
                "averageRating": snapshot.average_rating,
                "totalRatings": snapshot.total_ratings,
            },
        )
        await log_info(
            f"Исполнитель {snapshot.provider_id}: рейтинг {snapshot.average_rating} "
            f"({snapshot.total_ratings} оценок)",
            type_msg=TypeMsg.INFO,
        )
        return snapshot

    async def summary(self, provider_id: str) -> RatingSummary:
        """
        Raises:
            NotFound: Исполнитель не найден
        """
        result = await self._ratings.get_summary(provider_id)
        if result is None:
            raise NotFound("Provider not found")
        return result
