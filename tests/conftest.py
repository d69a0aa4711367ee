# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import json
import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("REDIS_PASSWORD", "")
os.environ.setdefault("JWT_SECRET", "test_jwt_secret")
os.environ.setdefault("STORAGE_BACKEND", "memory")

from src.common.constants import ServiceCategory, UserRole  # noqa: E402
from src.core.bookings.service import BookingService  # noqa: E402
from src.core.ratings.service import RatingAggregator  # noqa: E402
from src.core.users.models import User  # noqa: E402
from src.infra.memory_store import (  # noqa: E402
    MemoryBookingRepository,
    MemoryRatingRepository,
    MemoryStore,
    MemoryUserRepository,
)
from src.services.realtime_ws.outbox import ConnectionOutbox  # noqa: E402
from src.services.realtime_ws.presence import PresenceEntry, PresenceRegistry  # noqa: E402
from src.services.realtime_ws.topics import TopicRouter  # noqa: E402


TEST_JWT_SECRET = os.environ["JWT_SECRET"]


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Мок конфигурации для тестов."""
    return {
        "_comment_system": "Тестовая конфигурация",
        "PROJECT_NAME": "service_dispatch_test",
        "VERSION": "1.0.0-test",
        "DEBUG": True,
        "LOG_LEVEL": "DEBUG",
        "ENVIRONMENT": "test",
        "REALTIME_WS_GATEWAY_HOST": "127.0.0.1",
        "REALTIME_WS_GATEWAY_PORT": 9089,
        "LOG_TO_FILE": False,
        "LOG_FILE_PATH": "logs/test.log",
        "LOG_FORMAT": "json",
        "DB_HOST": "localhost",
        "DB_PORT": 5432,
        "DB_NAME": "service_dispatch_test",
        "DB_USER": "postgres",
        "DB_MIN_POOL_SIZE": 2,
        "DB_MAX_POOL_SIZE": 5,
        "DB_COMMAND_TIMEOUT": 30,
        "REDIS_HOST": "localhost",
        "REDIS_PORT": 6379,
        "REDIS_DB": 1,
        "REDIS_NAMESPACE": "dispatch_test",
        "REDIS_FANOUT_ENABLED": False,
        "JWT_ALGORITHM": "HS256",
        "TOKEN_QUERY_PARAM": "token",
        "STORAGE_BACKEND": "memory",
        "SEND_BUFFER_SIZE": 8,
        "PRESENCE_SHARDS": 4,
        "INSTANCE_ID": "test-instance",
        "REVIEW_MAX_LENGTH": 500,
    }


@pytest.fixture
def temp_config_file(tmp_path: Path, mock_config: dict[str, Any]) -> Path:
    """Создаёт временный файл конфигурации."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(mock_config, ensure_ascii=False, indent=2))
    return config_file


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (МОКИ)
# =============================================================================

@pytest.fixture
def mock_conn() -> AsyncMock:
    """Мок соединения asyncpg внутри транзакции."""
    conn = AsyncMock()
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetch = AsyncMock(return_value=[])
    conn.execute = AsyncMock(return_value="UPDATE 1")
    return conn


@pytest.fixture
def mock_db(mock_conn: AsyncMock) -> MagicMock:
    """Мок менеджера базы данных."""
    db = MagicMock()
    db.fetchrow = AsyncMock(return_value=None)
    db.fetch = AsyncMock(return_value=[])
    db.execute = AsyncMock(return_value="INSERT 0 1")
    db.health_check = AsyncMock(return_value=True)
    db.is_connected = True

    @asynccontextmanager
    async def transaction():
        yield mock_conn

    db.transaction = transaction
    return db


# =============================================================================
# ФИКСТУРЫ ХРАНИЛИЩА В ПАМЯТИ
# =============================================================================

@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def users_repo(memory_store: MemoryStore) -> MemoryUserRepository:
    return MemoryUserRepository(memory_store)


@pytest.fixture
def bookings_repo(memory_store: MemoryStore) -> MemoryBookingRepository:
    return MemoryBookingRepository(memory_store)


@pytest.fixture
def ratings_repo(memory_store: MemoryStore) -> MemoryRatingRepository:
    return MemoryRatingRepository(memory_store)


# =============================================================================
# ФИКСТУРЫ МОДЕЛЕЙ
# =============================================================================

@pytest.fixture
def client_user(memory_store: MemoryStore) -> User:
    """Клиент, сохранённый в хранилище."""
    user = User(
        id="client-1",
        name="Анна Клиент",
        email="anna@example.com",
        phone="+380501111111",
        role=UserRole.CLIENT,
    )
    memory_store.users[user.id] = user
    return user


@pytest.fixture
def plumber_a(memory_store: MemoryStore) -> User:
    """Сантехник A."""
    user = User(
        id="plumber-a",
        name="Иван Сантехник",
        email="ivan@example.com",
        phone="+380502222222",
        role=UserRole.PROVIDER,
        services=[ServiceCategory.PLUMBER],
        is_available=True,
    )
    memory_store.users[user.id] = user
    return user


@pytest.fixture
def plumber_b(memory_store: MemoryStore) -> User:
    """Сантехник B."""
    user = User(
        id="plumber-b",
        name="Пётр Сантехник",
        email="petr@example.com",
        phone="+380503333333",
        role=UserRole.PROVIDER,
        services=[ServiceCategory.PLUMBER],
        is_available=True,
    )
    memory_store.users[user.id] = user
    return user


@pytest.fixture
def sample_booking_payload() -> dict[str, Any]:
    """Данные события new_booking в плоском формате."""
    return {
        "service": "Plumber",
        "scheduledTime": (datetime.now(timezone.utc) + timedelta(hours=2)).isoformat(),
        "latitude": 50.4501,
        "longitude": 30.5234,
        "location": "ул. Крещатик, 1",
        "clientName": "Анна Клиент",
        "clientPhone": "+380501111111",
        "clientEmail": "anna@example.com",
        "notes": "Течёт кран",
        "amount": 350.0,
    }


@pytest.fixture
def sample_booking_row() -> dict[str, Any]:
    """Строка bookings из БД."""
    now = datetime.now(timezone.utc)
    return {
        "id": "booking-1",
        "client_id": "client-1",
        "provider_id": None,
        "service": "Plumber",
        "status": "pending",
        "scheduled_time": now + timedelta(hours=2),
        "latitude": 50.4501,
        "longitude": 30.5234,
        "address": "ул. Крещатик, 1",
        "client_name": "Анна Клиент",
        "client_phone": "+380501111111",
        "client_email": "anna@example.com",
        "notes": "Течёт кран",
        "amount": 350.0,
        "created_at": now,
        "updated_at": now,
    }


@pytest.fixture
def sample_user_row() -> dict[str, Any]:
    """Строка users из БД (исполнитель)."""
    now = datetime.now(timezone.utc)
    return {
        "id": "plumber-a",
        "name": "Иван Сантехник",
        "email": "ivan@example.com",
        "phone": "+380502222222",
        "role": "provider",
        "services": ["Plumber", "Electrician"],
        "is_available": True,
        "average_rating": 4.5,
        "total_ratings": 2,
        "completed_bookings": 2,
        "created_at": now,
        "updated_at": now,
    }


# =============================================================================
# РЕАЛТАЙМ
# =============================================================================

class RecordingSender:
    """Транспорт, запоминающий отправленные кадры."""

    def __init__(self, fail: bool = False) -> None:
        self.frames: list[dict[str, Any]] = []
        self.fail = fail

    async def __call__(self, frame: dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.frames.append(frame)

    def events(self) -> list[str]:
        return [f["event"] for f in self.frames]

    def of(self, event: str) -> list[dict[str, Any]]:
        return [f["data"] for f in self.frames if f["event"] == event]


@pytest.fixture
def presence() -> PresenceRegistry:
    return PresenceRegistry(shards=4)


@pytest.fixture
def router(presence: PresenceRegistry) -> TopicRouter:
    return TopicRouter(presence)


@pytest.fixture
def booking_service(
    bookings_repo: MemoryBookingRepository,
    users_repo: MemoryUserRepository,
    router: TopicRouter,
) -> BookingService:
    return BookingService(bookings_repo, users_repo, router)


@pytest.fixture
def rating_aggregator(
    bookings_repo: MemoryBookingRepository,
    ratings_repo: MemoryRatingRepository,
    router: TopicRouter,
) -> RatingAggregator:
    return RatingAggregator(bookings_repo, ratings_repo, router, review_max_length=500)


@pytest.fixture
def connect(presence: PresenceRegistry, router: TopicRouter) -> Callable[..., tuple[PresenceEntry, RecordingSender]]:
    """
    Фабрика живых соединений: регистрирует пользователя в реестре,
    подписывает на топики по умолчанию и запускает очередь.
    Вызывать только внутри асинхронного теста.
    """
    outboxes: list[ConnectionOutbox] = []

    def _connect(user: User, connection_id: str | None = None, maxsize: int = 64):
        connection_id = connection_id or f"conn-{user.id}-{len(outboxes)}"
        sender = RecordingSender()
        outbox = ConnectionOutbox(connection_id, sender, maxsize=maxsize)
        entry = presence.admit(
            connection_id,
            user.id,
            user.role,
            outbox,
            services=tuple(user.services),
        )
        router.subscribe_defaults(entry)
        outbox.start()
        outboxes.append(outbox)
        return entry, sender

    _connect.outboxes = outboxes
    return _connect


async def _drain(*entries: PresenceEntry) -> None:
    for entry in entries:
        if entry.outbox is not None and not entry.outbox.closed:
            await entry.outbox.drain()


@pytest.fixture
def drain() -> Callable[..., Any]:
    """Ждёт доставки всего, что стоит в очередях соединений."""
    return _drain


@pytest.fixture
def make_sender() -> Callable[..., RecordingSender]:
    """Фабрика записывающих транспортов."""
    return RecordingSender
