# src/core/ratings/__init__.py
"""
Домен оценок исполнителей.
"""

from src.core.ratings.models import Rating, RatingSubmitDTO, RatingSummary, compute_average
from src.core.ratings.repository import RatingRepository
from src.core.ratings.service import RatingAggregator

__all__ = [
    "Rating",
    "RatingSubmitDTO",
    "RatingSummary",
    "compute_average",
    "RatingRepository",
    "RatingAggregator",
]
