"""structlog 配置模块

日志一律写到 stderr，stdout 只留给命令输出（validate 报告、归档摘要）。
- dev: 可读的控制台输出（非终端时关闭颜色）
- json: 每行一个 JSON 对象，便于 CI 收集
"""

import logging
import os
import sys

import structlog

LOG_FORMAT_ENV = "TASKFABRIC_LOG_FORMAT"
LOG_LEVEL_ENV = "TASKFABRIC_LOG_LEVEL"
LOG_FORMATS = ("dev", "json")
DEFAULT_LOG_LEVEL = "WARNING"

# 只替换自己安装的 handler，不动宿主程序的配置
HANDLER_NAME = "taskfabric"


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer(ensure_ascii=False)
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def _resolve_level(name: str) -> int:
    """级别名 -> 数值；无法识别时退回 WARNING"""
    return logging.getLevelNamesMapping().get(name.upper(), logging.WARNING)


def setup_logging(log_format: str | None = None, log_level: str | None = None) -> logging.Handler:
    """初始化 structlog，并把标准库 logging 接到同一渲染器

    Args:
        log_format: "dev" 或 "json"；缺省读 TASKFABRIC_LOG_FORMAT，未知值按 dev 处理
        log_level: 级别名；缺省读 TASKFABRIC_LOG_LEVEL（默认 WARNING，命令行保持安静）

    Returns:
        安装到 root logger 上的 handler（重复调用会替换上一次安装的）
    """
    log_format = log_format or os.environ.get(LOG_FORMAT_ENV, "dev")
    if log_format not in LOG_FORMATS:
        log_format = "dev"
    level = _resolve_level(log_level or os.environ.get(LOG_LEVEL_ENV, DEFAULT_LOG_LEVEL))

    shared = _shared_processors()
    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=_renderer(log_format),
            foreign_pre_chain=shared,
        )
    )

    root_logger = logging.getLogger()
    for existing in [h for h in root_logger.handlers if h.get_name() == HANDLER_NAME]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    return handler
