# src/infra/__init__.py
"""
Инфраструктурный слой.
Хранилища: PostgreSQL (asyncpg) и хранилище в памяти процесса
(src.infra.memory_store, импортируется напрямую).
"""

from src.infra.database import DatabaseManager, get_db, init_db, close_db

__all__ = [
    "DatabaseManager",
    "get_db",
    "init_db",
    "close_db",
]
