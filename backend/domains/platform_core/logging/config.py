"""
日志配置

同步过程的日志统一交给 structlog 渲染：
- console: 开发时在终端阅读
- json: 每行一个 JSON 对象，便于采集

普通模块用 logging.getLogger(__name__) 写日志即可；
需要键值对字段时用 get_logger(__name__)。两种来源共用同一条处理链。
"""

import logging
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import structlog

from ..settings import LoggingSettings, get_settings

SERVICE_NAME = "book-sync"

# 这些库在 INFO 级别过于嘈杂
_QUIET_LOGGERS = ("aiohttp", "asyncio")


class LogFormat(str, Enum):
    CONSOLE = "console"
    JSON = "json"


@dataclass
class LogConfig:
    level: str = "INFO"
    format: LogFormat = LogFormat.CONSOLE
    add_timestamp: bool = True
    service_name: str = SERVICE_NAME

    @classmethod
    def from_settings(
        cls,
        settings: Optional[LoggingSettings] = None,
        service_name: str = SERVICE_NAME,
    ) -> "LogConfig":
        settings = settings or get_settings().logging
        return cls(
            level=settings.level,
            format=LogFormat.JSON if settings.json_format else LogFormat.CONSOLE,
            add_timestamp=settings.include_timestamp,
            service_name=service_name,
        )


def _shared_processors(config: LogConfig) -> list:
    """structlog 与标准库日志共用的前置处理器"""
    def add_service(logger, method_name, event_dict):
        event_dict.setdefault("service", config.service_name)
        return event_dict

    chain = []
    if config.add_timestamp:
        chain.append(structlog.processors.TimeStamper(fmt="iso"))
    chain += [
        add_service,
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    return chain


def _renderer(config: LogConfig):
    if config.format == LogFormat.JSON:
        return structlog.processors.JSONRenderer(ensure_ascii=False)
    return structlog.dev.ConsoleRenderer(
        colors=sys.stderr.isatty(),
        exception_formatter=structlog.dev.plain_traceback,
    )


def _install_stderr_handler(formatter: logging.Formatter, level: int) -> None:
    """根日志器只保留一个 stderr handler，重复配置不会叠加输出"""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)


def configure_logging(config: Optional[LogConfig] = None, service_name: str = SERVICE_NAME):
    """
    初始化日志（CLI 启动时调用一次，可重复调用）

    Args:
        config: 为 None 时按 BOOK_SYNC_LOG_* 配置构造
        service_name: 写入每条日志的 service 字段
    """
    config = config or LogConfig.from_settings(service_name=service_name)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_shared_processors(config),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(config),
        ],
        foreign_pre_chain=_shared_processors(config),
    )
    _install_stderr_handler(formatter, getattr(logging, config.level, logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """
    键值对日志器

        logger = get_logger(__name__)
        logger.warning("note_fetch_failed", path="a.md", book_id=book.id, error=str(e))
    """
    return structlog.get_logger(name)


def bind_sync_context(user_id: str, owner: str, repo: str):
    """本次同步后续的日志都带上 user_id / owner / repo"""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(user_id=user_id, owner=owner, repo=repo)


def clear_sync_context():
    structlog.contextvars.clear_contextvars()
