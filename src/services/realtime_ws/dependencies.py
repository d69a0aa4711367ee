# src/services/realtime_ws/dependencies.py
"""
Сборка зависимостей шлюза.

STORAGE_BACKEND=postgres - репозитории на asyncpg,
STORAGE_BACKEND=memory - авторитетное хранилище в памяти процесса.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Request

from src.common.constants import TypeMsg
from src.common.logger import log_info
from src.core.bookings.repository import BookingRepository
from src.core.bookings.service import BookingService
from src.core.ratings.repository import RatingRepository
from src.core.ratings.service import RatingAggregator
from src.core.users.repository import UserRepository
from src.infra.database import DatabaseManager, get_db, init_db
from src.infra.memory_store import (
    MemoryBookingRepository,
    MemoryRatingRepository,
    MemoryStore,
    MemoryUserRepository,
)
from src.services.realtime_ws.gateway import ConnectionGateway, IdentityVerifier, JwtIdentityVerifier
from src.services.realtime_ws.handlers import EventDispatcher
from src.services.realtime_ws.presence import PresenceRegistry
from src.services.realtime_ws.redis_subscriber import RedisTopicBridge
from src.services.realtime_ws.topics import TopicRouter


@dataclass
class GatewayContainer:
    """Все компоненты одного инстанса шлюза."""
    backend: str
    users: Any
    bookings: Any
    ratings: Any
    presence: PresenceRegistry
    router: TopicRouter
    booking_service: BookingService
    rating_aggregator: RatingAggregator
    gateway: ConnectionGateway
    dispatcher: EventDispatcher
    db: Optional[DatabaseManager] = None
    store: Optional[MemoryStore] = None
    bridge: Optional[RedisTopicBridge] = None
    redis: Any = None


def build_container(
    *,
    backend: Optional[str] = None,
    db: Optional[DatabaseManager] = None,
    store: Optional[MemoryStore] = None,
    verifier: Optional[IdentityVerifier] = None,
    presence_shards: Optional[int] = None,
) -> GatewayContainer:
    """
    Собирает компоненты без подключения к внешним сервисам.

    Args:
        backend: postgres | memory (по умолчанию STORAGE_BACKEND)
        db: Менеджер БД для postgres
        store: Хранилище для memory
        verifier: Проверка токенов (по умолчанию JWT)
        presence_shards: Количество шардов реестра
    """
    if backend is None:
        from src.config import settings

        backend = settings.realtime.STORAGE_BACKEND

    if backend == "memory":
        store = store or MemoryStore()
        users = MemoryUserRepository(store)
        bookings = MemoryBookingRepository(store)
        ratings = MemoryRatingRepository(store)
    elif backend == "postgres":
        db = db or get_db()
        users = UserRepository(db)
        bookings = BookingRepository(db)
        ratings = RatingRepository(db)
    else:
        raise ValueError(f"Неизвестный STORAGE_BACKEND: {backend}")

    presence = PresenceRegistry(presence_shards)
    router = TopicRouter(presence)
    booking_service = BookingService(bookings, users, router)
    rating_aggregator = RatingAggregator(bookings, ratings, router)
    gateway = ConnectionGateway(verifier or JwtIdentityVerifier(users))
    dispatcher = EventDispatcher(router, booking_service, rating_aggregator, users)

    return GatewayContainer(
        backend=backend,
        users=users,
        bookings=bookings,
        ratings=ratings,
        presence=presence,
        router=router,
        booking_service=booking_service,
        rating_aggregator=rating_aggregator,
        gateway=gateway,
        dispatcher=dispatcher,
        db=db if backend == "postgres" else None,
        store=store if backend == "memory" else None,
    )


async def start_container(container: GatewayContainer) -> None:
    """Подключает БД и, если включено, Redis мост."""
    from src.config import settings

    if container.db is not None and not container.db.is_connected:
        await init_db(container.db)

    if settings.redis.REDIS_FANOUT_ENABLED and container.bridge is None:
        from redis.asyncio import Redis

        container.redis = Redis.from_url(settings.redis.url)
        container.bridge = RedisTopicBridge(
            container.redis,
            container.router,
            namespace=settings.redis.REDIS_NAMESPACE,
            instance_id=settings.realtime.INSTANCE_ID,
        )
        container.router.attach_bridge(container.bridge)
        await container.bridge.start()

    await log_info(
        f"Шлюз запущен: backend={container.backend}, "
        f"redis_fanout={container.bridge is not None}",
        type_msg=TypeMsg.INFO,
    )


async def stop_container(container: GatewayContainer) -> None:
    """Останавливает мост и закрывает подключения."""
    if container.bridge is not None:
        container.router.attach_bridge(None)
        await container.bridge.stop()
        container.bridge = None
    if container.redis is not None:
        await container.redis.aclose()
        container.redis = None
    if container.db is not None and container.db.is_connected:
        await container.db.disconnect()


# =============================================================================
# FastAPI зависимости
# =============================================================================

def get_container(request: Request) -> GatewayContainer:
    return request.app.state.container


def get_booking_service(request: Request) -> BookingService:
    return get_container(request).booking_service


def get_rating_aggregator(request: Request) -> RatingAggregator:
    return get_container(request).rating_aggregator
