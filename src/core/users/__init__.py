# src/core/users/__init__.py
"""
Домен пользователей (внешний источник, ядро использует подмножество полей).
"""

from src.core.users.models import Identity, User, ProviderRatingSnapshot
from src.core.users.repository import UserRepository

__all__ = [
    "Identity",
    "User",
    "ProviderRatingSnapshot",
    "UserRepository",
]
