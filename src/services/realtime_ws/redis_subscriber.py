# src/services/realtime_ws/redis_subscriber.py
"""
Мост Redis Pub/Sub для рассылки между инстансами шлюза.

Каналы:
- <namespace>:topic:<topic> - публикации в топик
- <namespace>:user:<user_id> - личные сообщения пользователю

Каждое сообщение помечено instance_id отправителя; свои сообщения
мост игнорирует, чужие доставляет локальным соединениям.
Доставка best-effort: ошибки Redis логируются и не прерывают работу.
"""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Any

from src.common.constants import TypeMsg
from src.common.logger import log_error, log_info, log_warning
from src.common.topics import Topic

if TYPE_CHECKING:
    from redis.asyncio import Redis

    from src.services.realtime_ws.topics import TopicRouter


class RedisTopicBridge:
    """
    Подписчик и публикатор Redis Pub/Sub.

    Получает сообщения других инстансов и пересылает их через TopicRouter.
    """

    def __init__(
        self,
        redis: "Redis",
        router: "TopicRouter",
        *,
        namespace: str,
        instance_id: str,
    ) -> None:
        """
        Args:
            redis: Клиент Redis
            router: Локальный маршрутизатор
            namespace: Префикс каналов
            instance_id: ID этого инстанса
        """
        self._redis = redis
        self._router = router
        self._namespace = namespace
        self._instance_id = instance_id
        self._pubsub = None
        self._task: asyncio.Task | None = None
        self._running = False

        self._topic_prefix = f"{namespace}:topic:"
        self._user_prefix = f"{namespace}:user:"

    @property
    def patterns(self) -> tuple[str, str]:
        return (f"{self._topic_prefix}*", f"{self._user_prefix}*")

    async def start(self) -> None:
        """Запустить подписчика."""
        if self._running:
            return

        self._pubsub = self._redis.pubsub()
        self._running = True
        await self._pubsub.psubscribe(*self.patterns)

        self._task = asyncio.create_task(self._listen())
        await log_info(
            f"Redis мост запущен (instance={self._instance_id}, namespace={self._namespace})",
            type_msg=TypeMsg.INFO,
        )

    async def stop(self) -> None:
        """Остановить подписчика."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._pubsub:
            await self._pubsub.punsubscribe()
            await self._pubsub.aclose()
            self._pubsub = None

    # =========================================================================
    # ПУБЛИКАЦИЯ
    # =========================================================================

    async def forward_topic(self, topic: Topic, event: str, payload: dict[str, Any]) -> None:
        await self._publish(f"{self._topic_prefix}{topic}", event, payload)

    async def forward_user(self, user_id: str, event: str, payload: dict[str, Any]) -> None:
        await self._publish(f"{self._user_prefix}{user_id}", event, payload)

    async def _publish(self, channel: str, event: str, payload: dict[str, Any]) -> None:
        message = json.dumps(
            {"origin": self._instance_id, "event": event, "data": payload},
            default=str,
        )
        try:
            await self._redis.publish(channel, message)
        except Exception as e:
            await log_warning(f"Redis publish {channel} не удался: {e}")

    # =========================================================================
    # ПРИЁМ
    # =========================================================================

    async def _listen(self) -> None:
        """Слушать сообщения из Redis."""
        while self._running:
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=1.0,
                )

                if message is None:
                    continue

                await self.process_message(message)

            except asyncio.CancelledError:
                break
            except Exception as e:
                # Логируем ошибку, но продолжаем работу
                await log_error(f"Redis subscriber error: {e}", exc_info=True)
                await asyncio.sleep(1)

    async def process_message(self, message: dict[str, Any]) -> bool:
        """
        Обработать сообщение из Redis.

        Returns:
            True если сообщение доставлено локально
        """
        if message.get("type") not in ("message", "pmessage"):
            return False

        channel = message.get("channel", b"")
        if isinstance(channel, bytes):
            channel = channel.decode("utf-8")

        data = message.get("data", b"")
        if isinstance(data, bytes):
            data = data.decode("utf-8")

        try:
            parsed = json.loads(data)
        except (json.JSONDecodeError, TypeError):
            await log_warning(f"Некорректное сообщение в канале {channel}")
            return False

        if not isinstance(parsed, dict) or parsed.get("origin") == self._instance_id:
            return False

        event = parsed.get("event")
        payload = parsed.get("data") or {}
        if not event:
            return False

        if channel.startswith(self._topic_prefix):
            try:
                topic = Topic.parse(channel[len(self._topic_prefix):])
            except ValueError:
                await log_warning(f"Неизвестный топик в канале {channel}")
                return False
            return self._router.deliver_local(topic, event, payload) > 0

        if channel.startswith(self._user_prefix):
            user_id = channel[len(self._user_prefix):]
            return self._router.deliver_to_user_local(user_id, event, payload)

        return False
