# src/services/realtime_ws/presence.py
"""
Реестр присутствия: живое соединение -> пользователь и роль.

Таблица соединений разбита на шарды, у каждого своя блокировка;
вторичный индекс по пользователю шардирован по user_id.
Глобальной блокировки нет, внешний код к словарям не обращается.
"""

from __future__ import annotations

import threading
import zlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Iterator, Optional

from src.common.constants import ServiceCategory, UserRole
from src.common.errors import DuplicateConnection
from src.common.topics import Topic
from src.core.users.models import Identity

if TYPE_CHECKING:
    from src.services.realtime_ws.outbox import ConnectionOutbox


@dataclass
class PresenceEntry:
    """Запись о живом соединении."""
    connection_id: str
    user_id: str
    role: UserRole
    outbox: Optional["ConnectionOutbox"] = None
    services: tuple[ServiceCategory, ...] = ()
    subscriptions: set[Topic] = field(default_factory=set)
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def identity(self) -> Identity:
        return Identity(user_id=self.user_id, role=self.role, services=self.services)


class Shard:
    """Часть таблицы под собственной блокировкой."""
    __slots__ = ("lock", "items")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.items: dict = {}


def pick_shard(shards: list[Shard], key: str) -> Shard:
    return shards[zlib.crc32(key.encode("utf-8")) % len(shards)]


class PresenceRegistry:
    """
    Реестр соединений.

    Несколько соединений одного пользователя допускаются;
    find_by_user возвращает самое раннее из них.
    """

    def __init__(self, shards: Optional[int] = None) -> None:
        if shards is None:
            from src.config import settings

            shards = settings.realtime.PRESENCE_SHARDS
        if shards < 1:
            raise ValueError("Количество шардов должно быть >= 1")

        # connection_id -> PresenceEntry
        self._connections = [Shard() for _ in range(shards)]
        # user_id -> [connection_id, ...] в порядке подключения
        self._by_user = [Shard() for _ in range(shards)]

        self._total_admitted = 0
        self._counter_lock = threading.Lock()

    def _shard(self, shards: list[Shard], key: str) -> Shard:
        return pick_shard(shards, key)

    @property
    def shard_count(self) -> int:
        return len(self._connections)

    # =========================================================================
    # ИЗМЕНЕНИЕ
    # =========================================================================

    def admit(
        self,
        connection_id: str,
        user_id: str,
        role: UserRole,
        outbox: Optional["ConnectionOutbox"] = None,
        *,
        services: tuple[ServiceCategory, ...] = (),
    ) -> PresenceEntry:
        """
        Регистрирует соединение.

        Raises:
            DuplicateConnection: connection_id уже зарегистрирован
        """
        entry = PresenceEntry(
            connection_id=connection_id,
            user_id=user_id,
            role=UserRole(role),
            outbox=outbox,
            services=tuple(services),
        )

        shard = self._shard(self._connections, connection_id)
        with shard.lock:
            if connection_id in shard.items:
                raise DuplicateConnection(f"Connection {connection_id} already registered")
            shard.items[connection_id] = entry

        user_shard = self._shard(self._by_user, user_id)
        with user_shard.lock:
            user_shard.items.setdefault(user_id, []).append(connection_id)

        with self._counter_lock:
            self._total_admitted += 1
        return entry

    def remove(self, connection_id: str) -> Optional[PresenceEntry]:
        """Удаляет соединение. Повторный вызов безопасен и возвращает None."""
        shard = self._shard(self._connections, connection_id)
        with shard.lock:
            entry = shard.items.pop(connection_id, None)
        if entry is None:
            return None

        user_shard = self._shard(self._by_user, entry.user_id)
        with user_shard.lock:
            ids = user_shard.items.get(entry.user_id)
            if ids is not None:
                if connection_id in ids:
                    ids.remove(connection_id)
                if not ids:
                    del user_shard.items[entry.user_id]
        return entry

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    def get(self, connection_id: str) -> Optional[PresenceEntry]:
        shard = self._shard(self._connections, connection_id)
        with shard.lock:
            return shard.items.get(connection_id)

    def find_by_user(self, user_id: str) -> Optional[PresenceEntry]:
        """Первое живое соединение пользователя или None."""
        user_shard = self._shard(self._by_user, user_id)
        with user_shard.lock:
            ids = list(user_shard.items.get(user_id, ()))
        for connection_id in ids:
            entry = self.get(connection_id)
            if entry is not None:
                return entry
        return None

    def list_by_role(self, role: UserRole) -> Iterator[PresenceEntry]:
        """Соединения роли по снимку на момент вызова."""
        role = UserRole(role)
        snapshot: list[PresenceEntry] = []
        for shard in self._connections:
            with shard.lock:
                snapshot.extend(e for e in shard.items.values() if e.role == role)
        return iter(snapshot)

    def __len__(self) -> int:
        total = 0
        for shard in self._connections:
            with shard.lock:
                total += len(shard.items)
        return total

    def stats(self) -> dict[str, object]:
        by_role = {role.value: 0 for role in UserRole}
        for shard in self._connections:
            with shard.lock:
                for entry in shard.items.values():
                    by_role[entry.role.value] += 1
        return {
            "active_connections": sum(by_role.values()),
            "connections_by_role": by_role,
            "total_connections_ever": self._total_admitted,
        }
