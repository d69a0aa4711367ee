#!/usr/bin/env python3
# main.py
"""
Главная точка входа шлюза диспетчеризации заявок.

Режимы:
    realtime_ws - Realtime WebSocket Gateway (по умолчанию)
    init_db     - применить схему migrations/init.sql и выйти
"""

from __future__ import annotations

import asyncio
import signal
import sys

from src.config import settings
from src.common.logger import setup_logging, log_info, log_error
from src.common.constants import TypeMsg
from src.infra.database import init_db, close_db

MODES = ("realtime_ws", "init_db")

# Глобальный флаг для graceful shutdown
_shutdown_event: asyncio.Event | None = None
_running_tasks: list[asyncio.Task] = []


def setup_signal_handlers() -> None:
    """Настраивает обработчики сигналов для graceful shutdown."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    def signal_handler(sig: int) -> None:
        if _shutdown_event and not _shutdown_event.is_set():
            print(f"\nПолучен сигнал остановки (sig={sig}), завершаем работу...")
            _shutdown_event.set()
            for task in _running_tasks:
                if not task.done():
                    task.cancel()

    try:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))
    except NotImplementedError:
        # Windows не поддерживает add_signal_handler
        signal.signal(signal.SIGINT, lambda s, f: signal_handler(s))
        signal.signal(signal.SIGTERM, lambda s, f: signal_handler(s))


async def run_realtime_ws_gateway() -> None:
    """Запускает Realtime WebSocket Gateway."""
    import uvicorn

    await log_info(
        f"Запуск Realtime WebSocket Gateway на порту {settings.deployment.REALTIME_WS_GATEWAY_PORT} "
        f"(storage={settings.realtime.STORAGE_BACKEND}, instance={settings.realtime.INSTANCE_ID})",
        type_msg=TypeMsg.INFO,
    )

    config = uvicorn.Config(
        "src.services.realtime_ws.app:app",
        host=settings.deployment.REALTIME_WS_GATEWAY_HOST,
        port=settings.deployment.REALTIME_WS_GATEWAY_PORT,
        log_level="debug" if settings.system.DEBUG else "info",
    )

    server = uvicorn.Server(config)
    try:
        await server.serve()
    except asyncio.CancelledError:
        await log_info("Realtime WS Gateway: graceful shutdown", type_msg=TypeMsg.DEBUG)
        await server.shutdown()


async def run_init_db() -> None:
    """Применяет схему БД."""
    try:
        await init_db()
    finally:
        await close_db()


async def main(mode: str = "realtime_ws") -> None:
    """
    Главная функция запуска.

    Args:
        mode: Режим запуска
    """
    setup_logging()
    setup_signal_handlers()

    await log_info(
        f"{settings.system.PROJECT_NAME} v{settings.system.VERSION} - режим '{mode}'",
        type_msg=TypeMsg.INFO,
    )

    runner = run_init_db if mode == "init_db" else run_realtime_ws_gateway
    task = asyncio.create_task(runner())
    _running_tasks.append(task)
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception as e:
        await log_error(f"Критическая ошибка в режиме '{mode}': {e}", exc_info=True)
        raise


def print_usage() -> None:
    print("""
Использование: python main.py [режим]

Режимы:
    realtime_ws   - Realtime WebSocket Gateway (:8089), по умолчанию
    init_db       - применить migrations/init.sql

Переменные окружения:
    STORAGE_BACKEND=memory   - хранилище в памяти (без PostgreSQL)
    JWT_SECRET               - секрет подписи токенов
    """)


if __name__ == "__main__":
    mode = "realtime_ws"

    if len(sys.argv) > 1:
        arg = sys.argv[1].lower()
        if arg in ("--help", "-h"):
            print_usage()
            sys.exit(0)
        elif arg in MODES:
            mode = arg
        else:
            print(f"Ошибка: неизвестный режим '{arg}'")
            print_usage()
            sys.exit(1)

    try:
        asyncio.run(main(mode))
    except KeyboardInterrupt:
        pass
