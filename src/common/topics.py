# src/common/topics.py
"""
Топики рассылки.

Топик - неизменяемое значение; создаётся только фабричными методами,
поэтому строковый вид всегда один из:
    role:client | role:provider | service:<slug> | provider:<id>
"""

from __future__ import annotations

from dataclasses import dataclass

from src.common.constants import ServiceCategory, UserRole


@dataclass(frozen=True, slots=True)
class Topic:
    kind: str
    key: str

    ROLE = "role"
    SERVICE = "service"
    PROVIDER = "provider"

    @classmethod
    def for_role(cls, role: UserRole | str) -> "Topic":
        return cls(cls.ROLE, UserRole(role).value)

    @classmethod
    def for_service(cls, category: ServiceCategory | str) -> "Topic":
        if not isinstance(category, ServiceCategory):
            category = ServiceCategory.parse(category)
        return cls(cls.SERVICE, category.slug)

    @classmethod
    def for_provider(cls, provider_id: str) -> "Topic":
        if not provider_id:
            raise ValueError("provider_id не может быть пустым")
        return cls(cls.PROVIDER, str(provider_id))

    @classmethod
    def parse(cls, value: str) -> "Topic":
        """Восстанавливает топик из строкового вида (для сообщений Redis)."""
        kind, sep, key = value.partition(":")
        if not sep:
            raise ValueError(f"Некорректный топик: {value!r}")
        if kind == cls.ROLE:
            return cls.for_role(key)
        if kind == cls.SERVICE:
            return cls.for_service(key)
        if kind == cls.PROVIDER:
            return cls.for_provider(key)
        raise ValueError(f"Неизвестный тип топика: {kind!r}")

    def __str__(self) -> str:
        return f"{self.kind}:{self.key}"
