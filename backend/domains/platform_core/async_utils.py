"""
异步工具函数

提供在异步上下文中安全执行同步代码的工具。
"""

import asyncio
from typing import Callable, TypeVar

T = TypeVar("T")


async def run_sync(func: Callable[..., T], *args, **kwargs) -> T:
    """
    在线程池中执行同步函数，避免阻塞 event loop。

    用于包装使用 psycopg2（同步驱动）的存储层调用。
    每个线程持有独立的数据库连接（见 ThreadLocalConnectionMixin）。

    Example:
        note = await run_sync(note_store.create_or_update, note_input)
    """
    return await asyncio.to_thread(func, *args, **kwargs)
