"""
存储基础组件

提供 PostgreSQL 存储层的基类与单例工厂。
"""

from .store import (
    BaseStore,
    ThreadLocalConnectionMixin,
    get_database_url,
    get_store_instance,
    reset_all_stores,
    reset_store_instance,
)

__all__ = [
    "BaseStore",
    "ThreadLocalConnectionMixin",
    "get_database_url",
    "get_store_instance",
    "reset_store_instance",
    "reset_all_stores",
]
