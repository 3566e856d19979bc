"""
内容服务层

在内容仓库之上提供版本化操作：
- create: 创建内容，初始状态即版本回放的基线
- track: 同步写入笔记后调用，首次出现时创建，之后有变化时记录修订
- record_revision: 计算差异并记录新版本（无差异时不记录）
- get_history: 版本历史（新 -> 旧）
- restore: 重建并保存指定提交时的状态
"""

import logging
from dataclasses import replace
from typing import Iterable, Optional

from domains.core.exceptions import BusinessError, ContentNotFoundError

from ..core.models import Content, ContentScope, ContentState, Metadata, create_content
from ..core.repositories import ContentRepository
from ..core.store import get_content_store
from .differ import VersionDiffer
from .versioning import VersionedContentStore

logger = logging.getLogger(__name__)


class ContentService:
    """
    内容服务层

    封装版本相关的业务逻辑，代理存储层操作。
    """

    def __init__(
        self,
        repository: Optional[ContentRepository] = None,
        differ: Optional[VersionDiffer] = None,
        versioning: Optional[VersionedContentStore] = None,
    ):
        self._repository = repository
        self.differ = differ or VersionDiffer()
        self.versioning = versioning or VersionedContentStore()

    @property
    def repository(self) -> ContentRepository:
        """延迟获取存储层"""
        if self._repository is None:
            self._repository = get_content_store()
        return self._repository

    def _require(self, content_id: str) -> Content:
        content = self.repository.get(content_id)
        if content is None:
            raise ContentNotFoundError(content_id)
        return content

    def find_by_path(self, book_id: str, path: str) -> Optional[Content]:
        return self.repository.find_by_path(book_id, path)

    def create(
        self,
        user_id: str,
        book_id: str,
        path: str,
        title: str = "",
        body: str = "",
        scope: ContentScope = ContentScope.PRIVATE,
        metadata: Optional[Metadata] = None,
    ) -> Content:
        """
        创建内容（无版本，当前状态即基线）

        Raises:
            BusinessError: 同一书籍下该路径已存在内容
            ValidationError: 路径无效
        """
        existing = self.repository.find_by_path(book_id, path)
        if existing is not None:
            raise BusinessError(
                "CONTENT_ALREADY_EXISTS",
                f"内容已存在: {path}",
                details={"book_id": book_id, "path": path, "content_id": existing.id},
            )

        content = create_content(
            user_id=user_id,
            book_id=book_id,
            path=path,
            title=title,
            body=body,
            scope=scope,
            metadata=metadata,
        )
        self.repository.save(content)
        logger.info(f"content_created: {content.id} path={path}")
        return content

    def track(
        self,
        user_id: str,
        book_id: str,
        path: str,
        commit_id: str,
        title: str,
        body: str,
        scope: ContentScope = ContentScope.PRIVATE,
        tags: Iterable[str] = (),
    ) -> tuple[Content, bool]:
        """
        跟踪一个已同步文件的最新状态

        路径第一次出现时创建内容；之后标题、正文或标签有变化时
        以 commit_id 记录一次修订，没有变化则什么都不写。

        Returns:
            (最新内容, 是否写入了存储)
        """
        content = self.repository.find_by_path(book_id, path)
        if content is None:
            created = self.create(
                user_id, book_id, path,
                title=title, body=body, scope=scope, metadata=Metadata(tags=tuple(tags)),
            )
            return created, True

        return self.record_revision(
            content.id,
            commit_id,
            title=title,
            body=body,
            metadata=replace(content.metadata, tags=tuple(tags)),
        )

    def record_revision(
        self,
        content_id: str,
        commit_id: str,
        title: Optional[str] = None,
        body: Optional[str] = None,
        metadata: Optional[Metadata] = None,
    ) -> tuple[Content, bool]:
        """
        记录一次修订

        未提供的字段视为不变。

        Returns:
            (最新内容, 是否记录了新版本)
        """
        content = self._require(content_id)
        target = ContentState(
            title=content.title if title is None else title,
            body=content.body if body is None else body,
            metadata=content.metadata if metadata is None else metadata,
        )

        changes = self.differ.diff(content, target)
        if changes.is_empty:
            logger.info(f"revision_unchanged: {content_id} @ {commit_id}")
            return content, False

        updated = self.versioning.apply_change(content, commit_id, changes)
        self.repository.save(updated)
        logger.info(f"revision_recorded: {content_id} @ {commit_id} fields={sorted(changes.to_dict())}")
        return updated, True

    def get_history(self, content_id: str):
        """获取版本历史（新 -> 旧）"""
        return self.versioning.history(self._require(content_id))

    def restore(self, content_id: str, commit_id: str, persist: bool = True) -> Content:
        """
        恢复到指定提交时的状态

        Args:
            persist: 是否保存恢复后的状态（版本链不变）

        Raises:
            ContentNotFoundError: 内容不存在
            VersionNotFoundError: 提交不在版本链中
        """
        restored = self.versioning.restore_version(self._require(content_id), commit_id)
        if persist:
            self.repository.save(restored)
        return restored


# 单例实例
_content_service: ContentService | None = None


def get_content_service() -> ContentService:
    """获取内容服务单例"""
    global _content_service
    if _content_service is None:
        _content_service = ContentService()
    return _content_service
