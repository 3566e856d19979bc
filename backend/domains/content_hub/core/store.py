"""
内容存储层 - PostgreSQL 数据源

contents 表保存当前状态与基线，content_versions 表保存版本链
（随内容级联删除）。版本一旦写入不再修改。
"""

import logging
from typing import Any, Dict, Optional

from psycopg2.extras import Json

from domains.platform_core.base.store import (
    BaseStore,
    get_store_instance,
)

from .models import Content, Version
from .repositories import ContentRepository

logger = logging.getLogger(__name__)


class ContentStore(BaseStore[Content], ContentRepository):
    """
    内容存储层

    表结构见 schema.sql。
    """

    table_name = "contents"

    allowed_columns = {
        'id', 'user_id', 'book_id', 'path', 'title', 'body', 'scope',
        'metadata', 'baseline', 'created_at', 'updated_at',
    }

    def _row_to_entity(self, row: Dict[str, Any]) -> Content:
        """将数据库行转换为 Content（不含版本）"""
        return Content.from_dict(row)

    def _load_versions(self, cursor, content_id: str) -> tuple[Version, ...]:
        cursor.execute('''
            SELECT id, content_id, commit_id, created_at, changes
            FROM content_versions
            WHERE content_id = %s
            ORDER BY seq ASC
        ''', (content_id,))
        return tuple(
            Version.from_dict({**dict(row), 'id': str(row['id']), 'content_id': str(row['content_id'])})
            for row in cursor.fetchall()
        )

    def _load(self, where: str, params: tuple) -> Optional[Content]:
        with self._cursor() as cursor:
            cursor.execute(f'SELECT * FROM contents WHERE {where}', params)
            row = cursor.fetchone()
            if row is None:
                return None
            data = dict(row)
            data['versions'] = [v.to_dict() for v in self._load_versions(cursor, data['id'])]
        return Content.from_dict(data)

    def get(self, content_id: str) -> Optional[Content]:
        """获取内容（包含完整版本链）"""
        return self._load('id = %s', (content_id,))

    def find_by_path(self, book_id: str, path: str) -> Optional[Content]:
        return self._load('book_id = %s AND path = %s', (book_id, path))

    def save(self, content: Content) -> Content:
        """
        保存内容

        当前状态整体覆盖；版本按 id 追加，已存在的版本保持不变。
        """
        with self._cursor() as cursor:
            cursor.execute('''
                INSERT INTO contents (
                    id, user_id, book_id, path, title, body, scope,
                    metadata, baseline, created_at, updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (id) DO UPDATE SET
                    title = EXCLUDED.title,
                    body = EXCLUDED.body,
                    scope = EXCLUDED.scope,
                    metadata = EXCLUDED.metadata,
                    updated_at = EXCLUDED.updated_at
            ''', (
                content.id, content.user_id, content.book_id, content.path,
                content.title, content.body, content.scope.value,
                Json(content.metadata.to_dict()), Json(content.baseline.to_dict()),
                content.created_at, content.updated_at,
            ))

            for version in content.versions:
                cursor.execute('''
                    INSERT INTO content_versions (id, content_id, commit_id, created_at, changes)
                    VALUES (%s, %s, %s, %s, %s)
                    ON CONFLICT (id) DO NOTHING
                ''', (
                    version.id, version.content_id, version.commit_id,
                    version.created_at, Json(version.changes.to_dict()),
                ))

        logger.debug(f"content_saved: {content.id} ({len(content.versions)} versions)")
        return content


# ==================== 单例管理 ====================

def get_content_store(database_url: Optional[str] = None) -> ContentStore:
    """获取内容存储层单例"""
    return get_store_instance(ContentStore, "ContentStore", database_url=database_url)
