"""
Platform Core - 同步引擎共享基础设施

提供与具体业务无关的基础组件:
- 存储层基类（PostgreSQL 连接管理、单例工厂）
- 结构化日志配置（structlog）
- 配置管理（pydantic-settings）
- 异步工具（在事件循环中执行阻塞调用）

注意: 统一异常体系在 domains.core 模块中。
"""

from .async_utils import run_sync
from .base.store import (
    BaseStore,
    ThreadLocalConnectionMixin,
    get_database_url,
    get_store_instance,
    reset_all_stores,
    reset_store_instance,
)
from .logging import (
    bind_sync_context,
    clear_sync_context,
    configure_logging,
    get_logger,
)
from .settings import (
    BookSyncSettings,
    LoggingSettings,
    RemoteDeletionPolicy,
    get_settings,
    reload_settings,
)

__all__ = [
    "run_sync",
    # Store
    "BaseStore",
    "ThreadLocalConnectionMixin",
    "get_database_url",
    "get_store_instance",
    "reset_store_instance",
    "reset_all_stores",
    # Logging
    "configure_logging",
    "get_logger",
    "bind_sync_context",
    "clear_sync_context",
    # Settings
    "BookSyncSettings",
    "LoggingSettings",
    "RemoteDeletionPolicy",
    "get_settings",
    "reload_settings",
]
