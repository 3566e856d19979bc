"""
结构化日志模块

基于 structlog 提供统一的日志配置，支持控制台与 JSON 输出。
"""

from .config import (
    LogConfig,
    LogFormat,
    bind_sync_context,
    clear_sync_context,
    configure_logging,
    get_logger,
)

__all__ = [
    "configure_logging",
    "get_logger",
    "LogConfig",
    "LogFormat",
    "bind_sync_context",
    "clear_sync_context",
]
