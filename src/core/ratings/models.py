# src/core/ratings/models.py
"""
Модели данных оценок.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, StrictInt

MIN_RATING = 1
MAX_RATING = 5


def compute_average(values: Iterable[int]) -> float:
    """
    Среднее значение оценок, округлённое до одного знака (половина вверх).
    Для пустого списка - 0.0.
    """
    values = list(values)
    if not values:
        return 0.0
    mean = Decimal(sum(values)) / Decimal(len(values))
    return float(mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


class Rating(BaseModel):
    """Оценка исполнителя по одной завершённой заявке. Не изменяется."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    booking_id: str
    provider_id: str
    client_id: str
    value: int = Field(..., ge=MIN_RATING, le=MAX_RATING)
    review: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RatingSubmitDTO(BaseModel):
    """Данные входящего события submit_rating."""

    model_config = ConfigDict(populate_by_name=True)

    booking_id: str = Field(..., alias="bookingId", min_length=1)
    provider_id: Optional[str] = Field(None, alias="providerId")
    # bool и строки не приводятся к int
    rating: StrictInt
    review: Optional[str] = None


class RatingSummary(BaseModel):
    """Сводка рейтинга исполнителя с распределением оценок."""

    provider_id: str
    average_rating: float
    total_ratings: int
    completed_bookings: int
    distribution: dict[int, int] = Field(
        default_factory=lambda: {v: 0 for v in range(MIN_RATING, MAX_RATING + 1)}
    )
