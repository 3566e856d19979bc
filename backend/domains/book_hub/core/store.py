"""
书籍同步存储层 - PostgreSQL 数据源

- NoteStore: 笔记（按 (book_id, path) upsert，同一事务内维护标签关联）
- TagStore: 标签（查找 / 删除未被引用的标签）
- BookStore: 书籍
- CredentialStore: GitHub 连接凭证

表结构见 schema.sql。
"""

import logging
import uuid as uuid_lib
from typing import Any, Dict, Iterable, List, Optional

from domains.platform_core.base.store import (
    BaseStore,
    get_store_instance,
)

from .models import Book, Credential, Note, NoteInput, Tag
from .repositories import (
    BookRepository,
    CredentialRepository,
    NoteRepository,
    TagRepository,
)

logger = logging.getLogger(__name__)


_NOTE_SELECT = '''
    SELECT n.*,
           COALESCE(
               array_agg(t.name ORDER BY nt.position) FILTER (WHERE t.name IS NOT NULL),
               '{}'
           ) AS tags
    FROM notes n
    LEFT JOIN note_tags nt ON nt.note_id = n.id
    LEFT JOIN tags t ON t.id = nt.tag_id
'''


class NoteStore(BaseStore[Note], NoteRepository):
    """
    笔记存储层

    每次 upsert 在一个事务内完成：笔记行、引用到的标签行、笔记-标签关联。
    """

    table_name = "notes"

    allowed_columns = {
        'id', 'user_id', 'book_id', 'path', 'title', 'body', 'scope',
        'created_at', 'updated_at',
    }

    def _row_to_entity(self, row: Dict[str, Any]) -> Note:
        return Note.from_dict(row)

    def create_or_update(self, note: NoteInput) -> Note:
        """按 (book_id, path) 写入笔记，并替换其标签关联"""
        with self._cursor() as cursor:
            cursor.execute('''
                INSERT INTO notes (id, user_id, book_id, path, title, body, scope, created_at, updated_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, clock_timestamp(), clock_timestamp())
                ON CONFLICT (book_id, path) DO UPDATE SET
                    user_id = EXCLUDED.user_id,
                    title = EXCLUDED.title,
                    body = EXCLUDED.body,
                    scope = EXCLUDED.scope,
                    updated_at = clock_timestamp()
                RETURNING *
            ''', (
                str(uuid_lib.uuid4()), note.user_id, note.book_id, note.path,
                note.title, note.body, note.scope.value,
            ))
            row = dict(cursor.fetchone())

            cursor.execute('DELETE FROM note_tags WHERE note_id = %s', (row['id'],))

            # 按名称顺序加行锁，并发写入共享标签的笔记不会互相死锁
            tag_ids = {}
            for name in sorted(set(note.tags)):
                # DO UPDATE 保证已存在的标签也能 RETURNING id
                cursor.execute('''
                    INSERT INTO tags (id, book_id, name)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (book_id, name) DO UPDATE SET name = EXCLUDED.name
                    RETURNING id
                ''', (str(uuid_lib.uuid4()), note.book_id, name))
                tag_ids[name] = cursor.fetchone()['id']

            for position, name in enumerate(note.tags):
                cursor.execute('''
                    INSERT INTO note_tags (note_id, tag_id, position)
                    VALUES (%s, %s, %s)
                    ON CONFLICT DO NOTHING
                ''', (row['id'], tag_ids[name], position))

        row['tags'] = list(note.tags)
        return self._row_to_entity(row)

    def find_by_book_and_path(self, book_id: str, path: str) -> Optional[Note]:
        return self._fetch_one(
            _NOTE_SELECT + ' WHERE n.book_id = %s AND n.path = %s GROUP BY n.id',
            (book_id, path)
        )

    def list_by_book(self, book_id: str) -> List[Note]:
        return self._fetch_all(
            _NOTE_SELECT + ' WHERE n.book_id = %s GROUP BY n.id ORDER BY n.path',
            (book_id,)
        )

    def delete_by_paths(self, book_id: str, paths: Iterable[str]) -> int:
        paths = list(paths)
        if not paths:
            return 0
        with self._cursor() as cursor:
            cursor.execute(
                'DELETE FROM notes WHERE book_id = %s AND path = ANY(%s)',
                (book_id, paths)
            )
            deleted = cursor.rowcount
        logger.info(f"notes_deleted: book={book_id} count={deleted}")
        return deleted


_UNREFERENCED = 'NOT EXISTS (SELECT 1 FROM note_tags nt WHERE nt.tag_id = t.id)'


class TagStore(BaseStore[Tag], TagRepository):
    """
    标签存储层

    删除语句自身再次检查"未被引用"条件，
    查找与删除之间新增的引用不会导致误删。
    """

    table_name = "tags"

    allowed_columns = {'id', 'book_id', 'name'}

    def _row_to_entity(self, row: Dict[str, Any]) -> Tag:
        return Tag.from_dict(row)

    def list_by_book(self, book_id: str) -> List[Tag]:
        return self._fetch_all(
            'SELECT * FROM tags WHERE book_id = %s ORDER BY name',
            (book_id,)
        )

    def find_unused(self, book_id: str) -> List[Tag]:
        return self._fetch_all(
            f'SELECT t.* FROM tags t WHERE t.book_id = %s AND {_UNREFERENCED} ORDER BY t.name',
            (book_id,)
        )

    def delete_by_ids(self, book_id: str, tag_ids: Iterable[str]) -> int:
        tag_ids = [str(tag_id) for tag_id in tag_ids]
        if not tag_ids:
            return 0
        with self._cursor() as cursor:
            cursor.execute(
                f'DELETE FROM tags t WHERE t.book_id = %s AND t.id = ANY(%s::uuid[]) AND {_UNREFERENCED}',
                (book_id, tag_ids)
            )
            return cursor.rowcount


class BookStore(BaseStore[Book], BookRepository):
    """书籍存储层"""

    table_name = "books"

    allowed_columns = {
        'id', 'user_id', 'owner', 'repo', 'name', 'description',
        'sync_status', 'last_synced_at', 'created_at', 'updated_at',
    }

    def _row_to_entity(self, row: Dict[str, Any]) -> Book:
        return Book.from_dict(row)

    def find_by_owner_and_repo(self, owner: str, repo: str) -> Optional[Book]:
        return self._fetch_one(
            'SELECT * FROM books WHERE owner = %s AND repo = %s',
            (owner, repo)
        )

    def find_by_id(self, book_id: str) -> Optional[Book]:
        return self.get_by_id('id', book_id)

    def create(self, book: Book) -> Book:
        with self._cursor() as cursor:
            cursor.execute('''
                INSERT INTO books (
                    id, user_id, owner, repo, name, description,
                    sync_status, last_synced_at, created_at, updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, now(), now())
                RETURNING *
            ''', (
                book.id, book.user_id, book.owner, book.repo, book.name,
                book.description, book.sync_status.value, book.last_synced_at,
            ))
            row = cursor.fetchone()
        logger.info(f"book_created: {book.full_name}")
        return self._row_to_entity(dict(row))

    def update(self, book: Book) -> Book:
        with self._cursor() as cursor:
            cursor.execute('''
                UPDATE books SET
                    name = %s,
                    description = %s,
                    sync_status = %s,
                    last_synced_at = %s,
                    updated_at = now()
                WHERE id = %s
                RETURNING *
            ''', (
                book.name, book.description, book.sync_status.value,
                book.last_synced_at, book.id,
            ))
            row = cursor.fetchone()
        return self._row_to_entity(dict(row)) if row else book


class CredentialStore(BaseStore[Credential], CredentialRepository):
    """GitHub 连接凭证存储层（只读）"""

    table_name = "github_connections"

    allowed_columns = {'user_id', 'access_token', 'github_user_id', 'github_login', 'created_at'}

    def _row_to_entity(self, row: Dict[str, Any]) -> Credential:
        return Credential.from_dict(row)

    def find_by_user_id(self, user_id: str) -> Optional[Credential]:
        return self.get_by_id('user_id', user_id)


# ==================== 单例管理 ====================

def get_note_store(database_url: Optional[str] = None) -> NoteStore:
    """获取笔记存储层单例"""
    return get_store_instance(NoteStore, "NoteStore", database_url=database_url)


def get_tag_store(database_url: Optional[str] = None) -> TagStore:
    """获取标签存储层单例"""
    return get_store_instance(TagStore, "TagStore", database_url=database_url)


def get_book_store(database_url: Optional[str] = None) -> BookStore:
    """获取书籍存储层单例"""
    return get_store_instance(BookStore, "BookStore", database_url=database_url)


def get_credential_store(database_url: Optional[str] = None) -> CredentialStore:
    """获取凭证存储层单例"""
    return get_store_instance(CredentialStore, "CredentialStore", database_url=database_url)
