# src/services/realtime_ws/__init__.py
"""
Realtime WebSocket Gateway - диспетчеризация заявок на услуги.

Обеспечивает:
- Аутентификацию соединений по JWT
- Реестр присутствия и рассылку по топикам
- Обработку событий заявок и оценок
- Рассылку между инстансами через Redis Pub/Sub
"""
