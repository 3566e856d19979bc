"""
PostgreSQL 存储层基类

同步流程通过 run_sync 在线程池中调用存储层，因此：
- 每个线程持有自己的连接（threading.local）
- 一个 _cursor() 块就是一个事务：正常退出提交，异常回滚
- 子类只写 SQL，行到实体的转换统一走 _row_to_entity

存储实例通过 get_store_instance 按名称缓存，测试中用 reset_* 清理。
"""

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Generic, Iterator, List, Optional, Sequence, Set, TypeVar

import psycopg2
from psycopg2.extras import RealDictCursor

from ..settings import get_settings

logger = logging.getLogger(__name__)

T = TypeVar('T')


def get_database_url() -> str:
    """数据库连接 URL（DATABASE_URL 环境变量优先）"""
    return get_settings().resolved_database_url


class ThreadLocalConnectionMixin:
    """
    按线程隔离的数据库连接

    连接在第一次使用时才建立，构造存储对象本身不会访问数据库。
    """

    def _init_connection(self, database_url: Optional[str] = None):
        self.database_url = database_url or get_database_url()
        self._local = threading.local()

    def _connection(self) -> psycopg2.extensions.connection:
        conn = getattr(self._local, 'conn', None)
        if conn is None or conn.closed:
            conn = psycopg2.connect(self.database_url)
            conn.autocommit = False
            self._local.conn = conn
            logger.debug(f"db_connected: thread={threading.get_ident()}")
        return conn

    @contextmanager
    def _cursor(self) -> Iterator[RealDictCursor]:
        """单事务游标：块内语句一起提交或一起回滚"""
        conn = self._connection()
        cursor = conn.cursor(cursor_factory=RealDictCursor)
        try:
            yield cursor
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()

    def close(self):
        """关闭当前线程的连接"""
        conn = getattr(self._local, 'conn', None)
        if conn is not None and not conn.closed:
            conn.close()
        self._local.conn = None


class BaseStore(ThreadLocalConnectionMixin, ABC, Generic[T]):
    """
    存储层基类

    子类声明 table_name / allowed_columns，并实现 _row_to_entity。

    使用示例:
        class TagStore(BaseStore[Tag], TagRepository):
            table_name = "tags"
            allowed_columns = {"id", "book_id", "name"}

            def _row_to_entity(self, row):
                return Tag.from_dict(row)

            def list_by_book(self, book_id):
                return self._fetch_all('SELECT * FROM tags WHERE book_id = %s', (book_id,))
    """

    table_name: str = ""
    allowed_columns: Set[str] = set()

    def __init__(self, database_url: Optional[str] = None):
        """
        Args:
            database_url: PostgreSQL 连接 URL，默认从配置读取
        """
        self._init_connection(database_url)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @abstractmethod
    def _row_to_entity(self, row: Dict[str, Any]) -> T:
        """数据库行（字典）转实体"""

    # ==================== 查询辅助 ====================

    def _fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[T]:
        with self._cursor() as cursor:
            cursor.execute(sql, params)
            row = cursor.fetchone()
        return self._row_to_entity(dict(row)) if row else None

    def _fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[T]:
        with self._cursor() as cursor:
            cursor.execute(sql, params)
            rows = cursor.fetchall()
        return [self._row_to_entity(dict(row)) for row in rows]

    def get_by_id(self, id_field: str, id_value: Any) -> Optional[T]:
        """
        按唯一键获取实体

        id_field 必须在 allowed_columns 中，否则返回 None。
        """
        if id_field not in self.allowed_columns:
            logger.warning(f"invalid_id_field: {self.table_name}.{id_field}")
            return None
        return self._fetch_one(f'SELECT * FROM {self.table_name} WHERE {id_field} = %s', (id_value,))


# ==================== 单例工厂 ====================

_store_instances: Dict[str, Any] = {}


def get_store_instance(store_class: type, key: Optional[str] = None, **kwargs) -> Any:
    """按 key（默认类名）缓存存储实例"""
    key = key or store_class.__name__
    if key not in _store_instances:
        _store_instances[key] = store_class(**kwargs)
    return _store_instances[key]


def reset_store_instance(key: str) -> None:
    """关闭并移除一个存储实例（用于测试）"""
    instance = _store_instances.pop(key, None)
    if instance is not None and hasattr(instance, 'close'):
        instance.close()


def reset_all_stores() -> None:
    """关闭并移除所有存储实例"""
    for key in list(_store_instances):
        reset_store_instance(key)
