# src/services/realtime_ws/topics.py
"""
Маршрутизатор событий по топикам.

Топики:
- role:<role>          - все соединения роли
- service:<slug>       - исполнители категории
- provider:<id>        - личный канал исполнителя

Доставка идёт через ConnectionOutbox соединения, не более одного раза.
Таблица подписок шардирована по топику так же, как реестр присутствия:
у каждого шарда своя блокировка, глобальной нет.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable, Optional, Union

from src.common.constants import UserRole
from src.common.logger import log_debug
from src.common.topics import Topic
from src.services.realtime_ws.presence import PresenceEntry, PresenceRegistry, Shard, pick_shard

if TYPE_CHECKING:
    from src.services.realtime_ws.redis_subscriber import RedisTopicBridge

__all__ = ["Topic", "TopicRouter"]

Exclude = Union[str, Iterable[str], None]


def _exclude_set(exclude: Exclude) -> frozenset[str]:
    if exclude is None:
        return frozenset()
    if isinstance(exclude, str):
        return frozenset((exclude,))
    return frozenset(exclude)


class TopicRouter:
    """
    Подписки и рассылка.

    Поддерживает:
    - Подписку соединения на топики по умолчанию для его роли
    - Публикацию в топик с исключением соединений
    - Личные сообщения соединению и пользователю
    - Пересылку публикаций в другие инстансы через RedisTopicBridge
    """

    def __init__(
        self,
        presence: PresenceRegistry,
        bridge: Optional["RedisTopicBridge"] = None,
    ) -> None:
        self._presence = presence
        self._bridge = bridge

        # topic -> set of connection_ids, по шардам
        self._shards = [Shard() for _ in range(presence.shard_count)]

        self._total_published = 0
        self._total_messages_sent = 0

    @property
    def presence(self) -> PresenceRegistry:
        return self._presence

    def attach_bridge(self, bridge: Optional["RedisTopicBridge"]) -> None:
        self._bridge = bridge

    def _topic_shard(self, topic: Topic) -> Shard:
        return pick_shard(self._shards, str(topic))

    # =========================================================================
    # ПОДПИСКИ
    # =========================================================================

    def subscribe(self, connection_id: str, topic: Topic) -> bool:
        """
        Подписывает соединение на топик.

        Returns:
            False если соединение не зарегистрировано
        """
        entry = self._presence.get(connection_id)
        if entry is None:
            return False
        shard = self._topic_shard(topic)
        with shard.lock:
            shard.items.setdefault(topic, set()).add(connection_id)
        entry.subscriptions.add(topic)
        return True

    def unsubscribe(self, connection_id: str, topic: Topic) -> None:
        entry = self._presence.get(connection_id)
        self._discard(connection_id, topic)
        if entry is not None:
            entry.subscriptions.discard(topic)

    def subscribe_defaults(self, entry: PresenceEntry) -> set[Topic]:
        """
        Топик роли для всех; исполнителю ещё личный канал
        и по топику на каждую его категорию.
        """
        topics = {Topic.for_role(entry.role)}
        if entry.role == UserRole.PROVIDER:
            topics.add(Topic.for_provider(entry.user_id))
            topics.update(Topic.for_service(s) for s in entry.services)

        for topic in topics:
            self.subscribe(entry.connection_id, topic)
        return topics

    def drop(self, connection_id: str) -> set[Topic]:
        """Снимает все подписки соединения."""
        entry = self._presence.get(connection_id)
        if entry is not None:
            topics = set(entry.subscriptions)
            entry.subscriptions.clear()
        else:
            topics = set()
            for shard in self._shards:
                with shard.lock:
                    topics.update(t for t, ids in shard.items.items() if connection_id in ids)
        for topic in topics:
            self._discard(connection_id, topic)
        return topics

    def _discard(self, connection_id: str, topic: Topic) -> None:
        shard = self._topic_shard(topic)
        with shard.lock:
            subscribers = shard.items.get(topic)
            if subscribers is None:
                return
            subscribers.discard(connection_id)
            if not subscribers:
                del shard.items[topic]

    def subscribers(self, topic: Topic) -> set[str]:
        """Подписчики топика (копия)."""
        shard = self._topic_shard(topic)
        with shard.lock:
            return set(shard.items.get(topic, ()))

    # =========================================================================
    # ДОСТАВКА
    # =========================================================================

    async def publish(
        self,
        topic: Topic,
        event: str,
        payload: dict[str, Any],
        *,
        exclude: Exclude = None,
    ) -> int:
        """
        Публикует событие подписчикам топика на момент публикации.

        Returns:
            Количество локальных соединений, принявших событие
        """
        delivered = self.deliver_local(topic, event, payload, exclude=exclude)
        self._total_published += 1
        if self._bridge is not None:
            await self._bridge.forward_topic(topic, event, payload)
        await log_debug(f"{event} -> {topic}: {delivered} соединений")
        return delivered

    def deliver_local(
        self,
        topic: Topic,
        event: str,
        payload: dict[str, Any],
        *,
        exclude: Exclude = None,
    ) -> int:
        """Доставка подписчикам этого инстанса."""
        excluded = _exclude_set(exclude)
        delivered = 0
        for connection_id in self.subscribers(topic):
            if connection_id in excluded:
                continue
            if self._offer(self._presence.get(connection_id), event, payload):
                delivered += 1
        return delivered

    async def send(self, connection_id: str, event: str, payload: dict[str, Any]) -> bool:
        """Личное сообщение соединению."""
        return self._offer(self._presence.get(connection_id), event, payload)

    async def send_to_user(self, user_id: str, event: str, payload: dict[str, Any]) -> bool:
        """
        Сообщение пользователю через его первое соединение.
        Если пользователь подключён к другому инстансу, сообщение уходит через мост.

        Returns:
            True если сообщение принято локально
        """
        if self.deliver_to_user_local(user_id, event, payload):
            return True
        if self._bridge is not None:
            await self._bridge.forward_user(user_id, event, payload)
        return False

    def deliver_to_user_local(self, user_id: str, event: str, payload: dict[str, Any]) -> bool:
        return self._offer(self._presence.find_by_user(user_id), event, payload)

    def _offer(self, entry: Optional[PresenceEntry], event: str, payload: dict[str, Any]) -> bool:
        if entry is None or entry.outbox is None:
            return False
        accepted = entry.outbox.offer(event, payload)
        if accepted:
            self._total_messages_sent += 1
        return accepted

    # =========================================================================
    # СТАТИСТИКА
    # =========================================================================

    def stats(self) -> dict[str, int]:
        total_topics = 0
        for shard in self._shards:
            with shard.lock:
                total_topics += len(shard.items)
        return {
            "total_topics": total_topics,
            "total_published": self._total_published,
            "total_messages_sent": self._total_messages_sent,
        }
