# tests/common/test_logger.py
"""
Unit тесты для модуля логирования (src/common/logger.py).
"""

import json
import logging
import sys
from pathlib import Path
from unittest.mock import MagicMock, Mock, patch

import pytest

from src.common import logger as logger_module
from src.common.constants import TypeMsg
from src.common.logger import (
    DEFAULT_LOGGER_NAME,
    ColoredFormatter,
    DateBasedRotatingFileHandler,
    JsonFormatter,
    _get_caller_info,
    _loggers,
    get_logger,
    log_debug,
    log_error,
    log_info,
    log_warning,
    setup_logging,
)


def _record(level: int = logging.INFO, msg: str = "Test message", exc_info=None) -> logging.LogRecord:
    record = logging.LogRecord(
        name="test_logger",
        level=level,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )
    record.module = "test_module"
    record.funcName = "test_function"
    return record


class TestJsonFormatter:
    """Тесты для JsonFormatter."""

    def test_format_basic_record(self) -> None:
        """Запись превращается в валидный JSON."""
        data = json.loads(JsonFormatter().format(_record()))

        assert data["level"] == "INFO"
        assert data["message"] == "Test message"
        assert data["module"] == "test_module"
        assert data["function"] == "test_function"
        assert data["line"] == 10
        assert data["timestamp"].endswith("Z")

    def test_format_with_extra_data(self) -> None:
        record = _record(logging.WARNING)
        record.extra_data = {"connection_id": "c-1", "event": "accept_booking"}

        data = json.loads(JsonFormatter().format(record))

        assert data["extra"] == {"connection_id": "c-1", "event": "accept_booking"}

    def test_format_with_exception(self) -> None:
        try:
            raise ValueError("Test exception")
        except ValueError:
            exc_info = sys.exc_info()

        data = json.loads(JsonFormatter().format(_record(logging.ERROR, "Error occurred", exc_info)))

        assert "ValueError" in data["exception"]
        assert "Test exception" in data["exception"]

    def test_non_ascii_kept(self) -> None:
        result = JsonFormatter().format(_record(msg="Заявка принята"))
        assert "Заявка принята" in result


class TestColoredFormatter:
    """Тесты для ColoredFormatter."""

    def test_format_basic_record(self) -> None:
        result = ColoredFormatter().format(_record())

        assert "INFO" in result
        assert "Test message" in result
        assert "\033[" in result

    def test_format_with_caller_info(self) -> None:
        """Информация о вызывающем коде попадает в строку."""
        record = _record(logging.DEBUG, "Debug message")
        record.extra_data = {
            "caller_function": "accept",
            "caller_module": "src.core.bookings.service",
            "caller_file": "service.py",
            "caller_line": 42,
        }

        result = ColoredFormatter().format(record)

        assert "src.core.bookings.service.accept()" in result
        assert "service.py:42" in result


class TestDateBasedRotatingFileHandler:
    """Тесты ротации файлов."""

    def test_writes_to_fixed_file(self, tmp_path: Path) -> None:
        handler = DateBasedRotatingFileHandler(str(tmp_path), max_bytes=0, logger_name="gateway")
        try:
            assert Path(handler.baseFilename) == tmp_path / "gateway.log"
            assert handler.shouldRollover(_record()) is False
        finally:
            handler.close()

    def test_rollover_archives_file(self, tmp_path: Path) -> None:
        """При превышении размера файл переименовывается с датой."""
        handler = DateBasedRotatingFileHandler(str(tmp_path), max_bytes=10, logger_name="gateway")
        handler.setFormatter(logging.Formatter("%(message)s"))
        try:
            handler.emit(_record(msg="x" * 50))
            assert handler.shouldRollover(_record()) is True
            handler.doRollover()
        finally:
            handler.close()

        archives = [p for p in tmp_path.iterdir() if p.name.startswith("gateway_")]
        assert len(archives) == 1


class TestGetLogger:
    """Тесты для get_logger."""

    def setup_method(self) -> None:
        """Очистка кэша логгеров перед каждым тестом."""
        _loggers.clear()
        for existing in logging.Logger.manager.loggerDict.values():
            if isinstance(existing, logging.Logger):
                existing.handlers.clear()

    def test_get_logger_creates_new_logger(self) -> None:
        logger = get_logger("test_logger")

        assert logger.name == "test_logger"
        assert len(logger.handlers) >= 1
        assert logger.propagate is False

    def test_get_logger_returns_cached_logger(self) -> None:
        assert get_logger("test_logger") is get_logger("test_logger")

    def test_default_name(self) -> None:
        assert get_logger().name == DEFAULT_LOGGER_NAME

    @patch("src.config.settings")
    def test_get_logger_uses_settings(self, mock_settings: Mock) -> None:
        """Уровень и формат берутся из конфига."""
        mock_settings.logging.LOG_LEVEL = "WARNING"
        mock_settings.logging.LOG_FORMAT = "json"
        mock_settings.logging.LOG_TO_FILE = False
        mock_settings.logging.LOG_FILE_PATH = "logs/test.log"
        mock_settings.logging.LOG_MAX_BYTES = 10485760

        logger = get_logger("test_with_settings")

        assert logger.level == logging.WARNING
        assert isinstance(logger.handlers[0].formatter, JsonFormatter)

    def test_get_logger_caches_preconfigured_logger(self) -> None:
        """Логгер с уже навешенными хендлерами тоже попадает в кэш."""
        stdlib_logger = logging.getLogger("test_preconfigured")
        handler = logging.NullHandler()
        stdlib_logger.addHandler(handler)
        try:
            _loggers.pop("test_preconfigured", None)

            logger = get_logger("test_preconfigured")

            assert _loggers["test_preconfigured"] is logger
            assert logger.handlers == [handler]
        finally:
            stdlib_logger.removeHandler(handler)
            _loggers.pop("test_preconfigured", None)

    def test_get_logger_handles_missing_settings(self) -> None:
        """Без конфига используются значения по умолчанию."""
        with patch.dict("sys.modules", {"src.config": None}):
            logger = get_logger("test_no_settings")

        assert logger.level == logging.DEBUG
        assert isinstance(logger.handlers[0].formatter, ColoredFormatter)


class TestSetupLogging:
    """Тесты для setup_logging."""

    def setup_method(self) -> None:
        _loggers.clear()

    def test_setup_logging_initializes_system(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(logger_module, "_LOGGING_INITIALIZED", False)

        setup_logging()

        assert DEFAULT_LOGGER_NAME in _loggers
        assert logging.getLogger("asyncpg").level == logging.WARNING
        assert logging.getLogger("redis").level == logging.WARNING

    def test_setup_logging_is_idempotent(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(logger_module, "_LOGGING_INITIALIZED", True)

        setup_logging()

        assert DEFAULT_LOGGER_NAME not in _loggers


class TestGetCallerInfo:
    """Тесты для _get_caller_info."""

    def test_get_caller_info_returns_dict(self) -> None:
        assert isinstance(_get_caller_info(), dict)

    def test_caller_of_log_function(self) -> None:
        """Через одну обёртку видна функция, вызвавшая обёртку."""
        def wrapper():
            return _get_caller_info()

        def calling_code():
            return wrapper()

        info = calling_code()

        assert info["caller_function"] == "calling_code"
        assert info["caller_file"] == "test_logger.py"


class TestLogFunctions:
    """Тесты для асинхронных функций логирования."""

    def setup_method(self) -> None:
        _loggers.clear()

    @pytest.mark.asyncio
    async def test_log_info_basic(self) -> None:
        with patch.object(logging.Logger, "info") as mock_info:
            await log_info("Test message")

            mock_info.assert_called_once()
            assert "Test message" in mock_info.call_args[0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "type_msg, method",
        [
            (TypeMsg.DEBUG, "debug"),
            (TypeMsg.WARNING, "warning"),
            (TypeMsg.ERROR, "error"),
            (TypeMsg.CRITICAL, "critical"),
        ],
    )
    async def test_log_info_with_type_msg(self, type_msg: TypeMsg, method: str) -> None:
        """Уровень выбирается через type_msg."""
        with patch.object(logging.Logger, method) as mock_method:
            await log_info("message", type_msg=type_msg)

            mock_method.assert_called_once()

    @pytest.mark.asyncio
    async def test_log_info_with_extra(self) -> None:
        with patch.object(logging.Logger, "info") as mock_info:
            await log_info("Test message", extra={"booking_id": "b-1"})

            extra = mock_info.call_args[1]["extra"]["extra_data"]
            assert extra["booking_id"] == "b-1"
            assert "caller_function" in extra

    @pytest.mark.asyncio
    async def test_log_debug(self) -> None:
        with patch.object(logging.Logger, "debug") as mock_debug:
            await log_debug("Debug message")

            mock_debug.assert_called_once()

    @pytest.mark.asyncio
    async def test_log_warning(self) -> None:
        with patch.object(logging.Logger, "warning") as mock_warning:
            await log_warning("Warning message")

            mock_warning.assert_called_once()

    @pytest.mark.asyncio
    async def test_log_error_with_exc_info(self) -> None:
        with patch.object(logging.Logger, "error") as mock_error:
            await log_error("Error message", exc_info=True)

            mock_error.assert_called_once()
            assert mock_error.call_args[1].get("exc_info") is True

    @pytest.mark.asyncio
    async def test_log_info_with_custom_logger_name(self) -> None:
        with patch("src.common.logger.get_logger") as mock_get_logger:
            mock_logger = MagicMock()
            mock_get_logger.return_value = mock_logger

            await log_info("Test message", logger_name="custom_logger")

            mock_get_logger.assert_called_once_with("custom_logger")
            mock_logger.info.assert_called_once()
