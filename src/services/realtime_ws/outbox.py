# src/services/realtime_ws/outbox.py
"""
Очередь исходящих сообщений одного соединения.

Ограниченная asyncio.Queue разбирается отдельной задачей-отправителем,
поэтому медленный клиент не задерживает рассылку остальным.
При переполнении событие отбрасывается и учитывается; перед следующим
доставленным событием клиент получает resync_required {missed}.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional

from src.common.constants import ServerEvents, TypeMsg
from src.common.logger import log_info, log_warning

Frame = dict[str, Any]
Sender = Callable[[Frame], Awaitable[None]]
CloseCallback = Callable[[str], Awaitable[None]]


def make_frame(event: str, data: dict[str, Any]) -> Frame:
    """Формат исходящего кадра: {"event": ..., "data": {...}}."""
    return {"event": event, "data": data}


class ConnectionOutbox:
    """
    Исходящая очередь соединения.

    Доставка не более одного раза: отброшенное при переполнении
    событие не повторяется, клиент сверяет состояние по resync_required.
    """

    def __init__(
        self,
        connection_id: str,
        send: Sender,
        *,
        maxsize: Optional[int] = None,
        on_close: Optional[CloseCallback] = None,
    ) -> None:
        """
        Args:
            connection_id: ID соединения
            send: Корутина отправки кадра в транспорт
            maxsize: Ёмкость очереди (по умолчанию SEND_BUFFER_SIZE)
            on_close: Вызывается один раз при закрытии из-за ошибки отправки
        """
        if maxsize is None:
            from src.config import settings

            maxsize = settings.realtime.SEND_BUFFER_SIZE

        self.connection_id = connection_id
        self._send = send
        self._queue: asyncio.Queue[Frame] = asyncio.Queue(maxsize=maxsize)
        self._on_close = on_close
        self._task: asyncio.Task | None = None
        self._closed = False

        # Статистика
        self._missed = 0
        self.dropped_total = 0
        self.delivered_total = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Кадров в очереди."""
        return self._queue.qsize()

    @property
    def missed(self) -> int:
        """Отброшено с момента последней доставки."""
        return self._missed

    def start(self) -> None:
        """Запускает задачу-отправителя."""
        if self._task is None and not self._closed:
            self._task = asyncio.create_task(
                self._run(), name=f"outbox:{self.connection_id}"
            )

    def offer(self, event: str, data: dict[str, Any]) -> bool:
        """
        Ставит событие в очередь без ожидания.

        Returns:
            True если событие принято, False если отброшено
        """
        if self._closed:
            return False
        try:
            self._queue.put_nowait(make_frame(event, data))
        except asyncio.QueueFull:
            self._missed += 1
            self.dropped_total += 1
            return False
        return True

    async def drain(self) -> None:
        """Ждёт, пока отправитель разберёт всё, что уже в очереди."""
        await self._queue.join()

    async def close(self) -> None:
        """Останавливает отправителя; неотправленные кадры теряются."""
        self._closed = True
        self._discard_pending()
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _run(self) -> None:
        while True:
            frame = await self._queue.get()
            try:
                if self._missed:
                    missed, self._missed = self._missed, 0
                    await self._send(make_frame(ServerEvents.RESYNC_REQUIRED, {"missed": missed}))
                await self._send(frame)
                self.delivered_total += 1
            except asyncio.CancelledError:
                self._queue.task_done()
                raise
            except Exception as e:
                self._queue.task_done()
                await log_warning(
                    f"Соединение {self.connection_id}: ошибка отправки, очередь закрыта: {e}"
                )
                await self._fail()
                return
            self._queue.task_done()

    async def _fail(self) -> None:
        self._closed = True
        self._task = None
        self._discard_pending()
        if self._on_close is not None:
            await self._on_close(self.connection_id)
        await log_info(
            f"Очередь {self.connection_id} закрыта (доставлено {self.delivered_total}, "
            f"отброшено {self.dropped_total})",
            type_msg=TypeMsg.DEBUG,
        )

    def _discard_pending(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._queue.task_done()
