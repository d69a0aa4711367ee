# src/services/realtime_ws/app.py
"""
FastAPI приложение для Realtime WebSocket Gateway.

WebSocket endpoints:
- /ws?token=<jwt> - единое подключение клиентов и исполнителей

REST endpoints:
- GET /health - проверка здоровья
- GET /stats - статистика соединений
- GET /bookings/pending?service=<category> - открытые заявки категории
- GET /bookings/{booking_id} - заявка для сверки после переподключения
- GET /providers/{provider_id}/ratings/stats - рейтинг исполнителя
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Optional
from uuid import uuid4

from fastapi import Depends, FastAPI, Query, Request, WebSocket, WebSocketDisconnect, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from src.common.constants import TypeMsg
from src.common.errors import (
    AuthenticationFailed,
    DispatchError,
    NotEligible,
    NotFound,
    StorageError,
    ValidationFailed,
)
from src.common.logger import log_error, log_info, log_warning
from src.config import settings
from src.core.bookings.service import BookingService
from src.core.ratings.service import RatingAggregator
from src.core.users.models import Identity
from src.services.realtime_ws.dependencies import (
    GatewayContainer,
    build_container,
    get_booking_service,
    get_container,
    get_rating_aggregator,
    start_container,
    stop_container,
)
from src.services.realtime_ws.outbox import ConnectionOutbox


# === MODELS ===

class HealthResponse(BaseModel):
    """Состояние сервиса."""
    status: str
    service: str
    version: str
    storage: str


class StatsResponse(BaseModel):
    """Статистика соединений."""
    active_connections: int
    connections_by_role: dict[str, int]
    total_connections_ever: int
    total_topics: int
    total_published: int
    total_messages_sent: int


# === ERRORS ===

_HTTP_STATUS: dict[type[DispatchError], int] = {
    AuthenticationFailed: status.HTTP_401_UNAUTHORIZED,
    NotEligible: status.HTTP_403_FORBIDDEN,
    NotFound: status.HTTP_404_NOT_FOUND,
    ValidationFailed: status.HTTP_400_BAD_REQUEST,
    StorageError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


async def dispatch_error_handler(request: Request, exc: DispatchError) -> JSONResponse:
    status_code = _HTTP_STATUS.get(type(exc), status.HTTP_409_CONFLICT)
    return JSONResponse(status_code=status_code, content=exc.to_payload())


# === AUTH ===

async def get_identity(request: Request) -> Identity:
    """Личность из заголовка `Authorization: Bearer` или параметра токена."""
    token: Optional[str] = None
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        token = header[7:]
    if not token:
        token = request.query_params.get(settings.auth.TOKEN_QUERY_PARAM)
    return await get_container(request).gateway.authenticate(token)


# === CONNECTION LIFECYCLE ===

def release_connection(container: GatewayContainer, connection_id: str) -> None:
    """Снимает соединение с подписок и из реестра присутствия. Идемпотентна."""
    container.router.drop(connection_id)
    container.presence.remove(connection_id)


async def abort_connection(
    container: GatewayContainer, websocket: WebSocket, connection_id: str
) -> None:
    """
    Обработчик ошибки отправки: освобождает соединение и закрывает сокет с 1011,
    чтобы цикл приёма завершился и события больше не обрабатывались.
    """
    release_connection(container, connection_id)
    try:
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
    except RuntimeError as e:
        # Транспорт уже закрыт
        await log_warning(f"Соединение {connection_id}: закрытие не удалось: {e}")


# === LIFESPAN ===

def create_app(container: Optional[GatewayContainer] = None) -> FastAPI:
    """
    Создаёт приложение.

    Args:
        container: Готовые зависимости; по умолчанию собираются из настроек при старте
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Жизненный цикл приложения."""
        if getattr(app.state, "container", None) is None:
            app.state.container = build_container()
        await start_container(app.state.container)

        yield

        await stop_container(app.state.container)

    app = FastAPI(
        title="Realtime WebSocket Gateway",
        description="WebSocket сервис диспетчеризации заявок на услуги.",
        version=settings.system.VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.container = container
    app.add_exception_handler(DispatchError, dispatch_error_handler)

    # === HEALTH CHECK ===

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check(request: Request) -> HealthResponse:
        """Проверка здоровья сервиса."""
        current = get_container(request)
        healthy = True
        if current.db is not None:
            healthy = await current.db.health_check()
        return HealthResponse(
            status="healthy" if healthy else "degraded",
            service="realtime_ws_gateway",
            version=settings.system.VERSION,
            storage=current.backend,
        )

    # === STATS ===

    @app.get("/stats", response_model=StatsResponse, tags=["Stats"])
    async def get_stats(request: Request) -> StatsResponse:
        """Получить статистику соединений."""
        current = get_container(request)
        return StatsResponse(**current.presence.stats(), **current.router.stats())

    # === RECONCILIATION ===

    @app.get("/bookings/pending", tags=["Bookings"])
    async def list_pending_bookings(
        service: str = Query(..., description="Категория услуги"),
        limit: int = Query(100, ge=1, le=500),
        identity: Identity = Depends(get_identity),
        bookings: BookingService = Depends(get_booking_service),
    ) -> list[dict[str, Any]]:
        """Открытые заявки категории (только для исполнителей)."""
        if not identity.is_provider:
            raise NotEligible("Only providers can list pending bookings")
        pending = await bookings.list_pending_for_service(service, limit=limit)
        return [b.to_public() for b in pending]

    @app.get("/bookings/{booking_id}", tags=["Bookings"])
    async def get_booking(
        booking_id: str,
        identity: Identity = Depends(get_identity),
        bookings: BookingService = Depends(get_booking_service),
    ) -> dict[str, Any]:
        """Заявка видна владельцу, назначенному исполнителю и исполнителям, пока она открыта."""
        booking = await bookings.get(booking_id)
        visible = (
            booking.client_id == identity.user_id
            or booking.provider_id == identity.user_id
            or (identity.is_provider and booking.is_open)
        )
        if not visible:
            raise NotEligible("Booking is not visible to you", booking_id=booking_id)
        return booking.to_public()

    @app.get("/providers/{provider_id}/ratings/stats", tags=["Ratings"])
    async def get_provider_rating_stats(
        provider_id: str,
        identity: Identity = Depends(get_identity),
        ratings: RatingAggregator = Depends(get_rating_aggregator),
    ) -> dict[str, Any]:
        """Средняя оценка, количество и распределение 1..5."""
        summary = await ratings.summary(provider_id)
        return {
            "providerId": summary.provider_id,
            "averageRating": summary.average_rating,
            "totalRatings": summary.total_ratings,
            "completedBookings": summary.completed_bookings,
            "ratingDistribution": {str(k): v for k, v in summary.distribution.items()},
        }

    # === WEBSOCKET ENDPOINT ===

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        """
        WebSocket для клиентов и исполнителей.

        Кадры в обе стороны: {"event": <имя>, "data": {...}}.
        Без валидного токена соединение закрывается с кодом 1008 до accept.
        """
        current: GatewayContainer = websocket.app.state.container
        token = websocket.query_params.get(settings.auth.TOKEN_QUERY_PARAM)

        try:
            identity = await current.gateway.authenticate(token)
        except AuthenticationFailed as e:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=e.message)
            return
        except DispatchError as e:
            await websocket.close(code=status.WS_1011_INTERNAL_ERROR, reason=e.message)
            return

        await websocket.accept()

        connection_id = uuid4().hex

        async def on_send_failure(closed_id: str) -> None:
            await abort_connection(current, websocket, closed_id)

        outbox = ConnectionOutbox(connection_id, websocket.send_json, on_close=on_send_failure)
        entry = current.presence.admit(
            connection_id,
            identity.user_id,
            identity.role,
            outbox,
            services=identity.services,
        )
        current.router.subscribe_defaults(entry)
        outbox.start()
        await log_info(
            f"Подключён {identity.role.value} {identity.user_id} ({connection_id})",
            type_msg=TypeMsg.INFO,
        )

        try:
            while True:
                text = await websocket.receive_text()
                if outbox.closed:
                    break
                await current.dispatcher.handle_text(entry, text)
        except WebSocketDisconnect:
            pass
        except Exception as e:
            if outbox.closed:
                await log_info(f"Соединение {connection_id} закрыто после ошибки отправки: {e}")
            else:
                await log_error(f"Соединение {connection_id} прервано: {e}", exc_info=True)
        finally:
            release_connection(current, connection_id)
            await outbox.close()
            await log_info(f"Отключён {identity.user_id} ({connection_id})", type_msg=TypeMsg.INFO)

    return app


# === APP ===

app = create_app()


# === STARTUP ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=settings.deployment.REALTIME_WS_GATEWAY_HOST,
        port=settings.deployment.REALTIME_WS_GATEWAY_PORT,
    )
