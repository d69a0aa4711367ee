# src/services/__init__.py
"""
Сервисы приложения.

Сервисы:
- realtime_ws: WebSocket шлюз диспетчеризации заявок (FastAPI)
"""

__all__: list[str] = []
