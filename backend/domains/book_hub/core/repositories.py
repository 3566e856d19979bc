"""
同步引擎依赖的外部接口

同步核心只依赖这些抽象：
- ContentProvider: 远端内容提供方（异步）
- NoteRepository / TagRepository / BookRepository / CredentialRepository: 存储层（同步，阻塞）

PostgreSQL 实现见 store.py，GitHub 实现见 providers/github.py。
"""

from abc import ABC, abstractmethod
from typing import Iterable, Optional

from .models import Book, Credential, Note, NoteInput, Tag


class ContentProvider(ABC):
    """
    远端内容提供方

    所有方法失败时都抛出 ContentProviderError。
    """

    @abstractmethod
    async def list_paths(self, access_token: str, owner: str, repo: str) -> list[str]:
        """列出仓库内所有 Markdown 文件路径"""

    @abstractmethod
    async def get_content(self, access_token: str, owner: str, repo: str, path: str) -> str:
        """获取单个文件的原始文本"""

    @abstractmethod
    async def get_revision(self, access_token: str, owner: str, repo: str) -> str:
        """当前分支最新提交的 SHA（作为全量同步时内容版本的提交 ID）"""


class NoteRepository(ABC):
    """笔记仓库接口"""

    @abstractmethod
    def create_or_update(self, note: NoteInput) -> Note:
        """
        按 (book_id, path) 写入笔记

        不存在则创建，存在则更新标题/正文/范围/标签，总是刷新 updated_at。
        引用到的标签不存在时一并创建。
        """

    @abstractmethod
    def find_by_book_and_path(self, book_id: str, path: str) -> Optional[Note]:
        """按 (book_id, path) 查找笔记"""

    @abstractmethod
    def list_by_book(self, book_id: str) -> list[Note]:
        """列出书籍下所有笔记"""

    @abstractmethod
    def delete_by_paths(self, book_id: str, paths: Iterable[str]) -> int:
        """删除书籍下指定路径的笔记，返回删除数量"""


class TagRepository(ABC):
    """标签仓库接口"""

    @abstractmethod
    def list_by_book(self, book_id: str) -> list[Tag]:
        """列出书籍下所有标签"""

    @abstractmethod
    def find_unused(self, book_id: str) -> list[Tag]:
        """查找没有被任何笔记引用的标签"""

    @abstractmethod
    def delete_by_ids(self, book_id: str, tag_ids: Iterable[str]) -> int:
        """
        删除指定标签

        删除时重新检查引用数，仍被引用的标签不会被删除。
        """


class BookRepository(ABC):
    """书籍仓库接口"""

    @abstractmethod
    def find_by_owner_and_repo(self, owner: str, repo: str) -> Optional[Book]:
        """按远端坐标查找书籍"""

    @abstractmethod
    def find_by_id(self, book_id: str) -> Optional[Book]:
        """按 ID 查找书籍"""

    @abstractmethod
    def create(self, book: Book) -> Book:
        """创建书籍"""

    @abstractmethod
    def update(self, book: Book) -> Book:
        """更新书籍（名称、描述、同步状态）"""


class CredentialRepository(ABC):
    """凭证仓库接口"""

    @abstractmethod
    def find_by_user_id(self, user_id: str) -> Optional[Credential]:
        """获取用户的 GitHub 凭证"""
