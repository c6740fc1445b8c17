"""日志配置测试"""

import json
import logging

import pytest
import structlog

from taskfabric.core.logging_config import HANDLER_NAME, setup_logging


@pytest.fixture(autouse=True)
def _restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


def _own_handlers() -> list[logging.Handler]:
    return [h for h in logging.getLogger().handlers if h.get_name() == HANDLER_NAME]


class TestSetupLogging:
    """structlog 初始化"""

    def test_json_to_stderr(self, capsys):
        setup_logging("json", "INFO")
        structlog.get_logger("taskfabric.test").info("archive_completed", task_count=2)
        captured = capsys.readouterr()
        assert captured.out == ""
        record = json.loads(captured.err.strip().splitlines()[-1])
        assert record["event"] == "archive_completed"
        assert record["task_count"] == 2
        assert record["level"] == "info"

    def test_default_level_is_quiet(self, capsys):
        setup_logging("json")
        assert logging.getLogger().level == logging.WARNING
        structlog.get_logger("taskfabric.test").info("projection_cache_miss")
        assert "projection_cache_miss" not in capsys.readouterr().err

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("TASKFABRIC_LOG_LEVEL", "debug")
        monkeypatch.setenv("TASKFABRIC_LOG_FORMAT", "json")
        handler = setup_logging()
        assert logging.getLogger().level == logging.DEBUG
        assert isinstance(handler.formatter.processors[-1], structlog.processors.JSONRenderer)

    def test_unknown_values_fall_back(self):
        handler = setup_logging("yaml", "LOUD")
        assert logging.getLogger().level == logging.WARNING
        assert isinstance(handler.formatter.processors[-1], structlog.dev.ConsoleRenderer)

    def test_repeat_setup_replaces_own_handler(self):
        foreign = logging.NullHandler()
        logging.getLogger().addHandler(foreign)
        first = setup_logging("dev")
        second = setup_logging("dev")
        assert _own_handlers() == [second]
        assert first not in logging.getLogger().handlers
        assert foreign in logging.getLogger().handlers
