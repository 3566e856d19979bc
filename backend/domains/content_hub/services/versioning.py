"""
版本管理

维护内容的不可变版本链：
- apply_change: 追加版本并返回应用变更后的新内容
- history: 按时间倒序查看版本
- restore_version: 从基线回放到指定提交，重建当时的状态
"""

import logging
import uuid as uuid_lib
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Optional

from domains.core.exceptions import InvalidChangeError, VersionNotFoundError

from ..core.models import Content, ContentChanges, Version

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VersionedContentStore:
    """
    版本化内容操作

    所有方法都不修改输入对象，返回新的 Content 值。
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        """
        Args:
            clock: 时间来源，默认 UTC 当前时间
        """
        self._clock = clock or _utcnow

    def apply_change(self, content: Content, commit_id: str, changes: ContentChanges) -> Content:
        """
        应用变更并追加一个版本

        Raises:
            InvalidChangeError: 变更为空
        """
        if changes is None or changes.is_empty:
            raise InvalidChangeError()

        now = self._clock()
        version = Version(
            id=str(uuid_lib.uuid4()),
            content_id=content.id,
            commit_id=commit_id,
            created_at=now,
            changes=changes,
        )

        updated = content.with_state(content.state.apply(changes), updated_at=now)
        logger.debug(f"version_appended: {content.id} @ {commit_id}")
        return replace(updated, versions=content.versions + (version,))

    def history(self, content: Content) -> tuple[Version, ...]:
        """
        版本历史（新 -> 旧）

        创建时间相同的版本，后追加的排在前面。
        """
        return tuple(sorted(reversed(content.versions), key=lambda v: v.created_at, reverse=True))

    def find_version(self, content: Content, commit_id: str) -> Optional[Version]:
        """按提交 ID 查找版本（同一提交出现多次时取最近追加的一次）"""
        for version in reversed(content.versions):
            if version.commit_id == commit_id:
                return version
        return None

    def restore_version(self, content: Content, commit_id: str) -> Content:
        """
        重建指定提交时的内容状态

        版本按时间正序排列，从基线依次回放到目标版本（含）。
        版本链本身保持不变。

        Raises:
            VersionNotFoundError: 版本链中没有该提交
        """
        ordered = sorted(content.versions, key=lambda v: v.created_at)
        target_index = None
        for index, version in enumerate(ordered):
            if version.commit_id == commit_id:
                target_index = index
        if target_index is None:
            raise VersionNotFoundError(content.id, commit_id)

        state = content.baseline
        for version in ordered[:target_index + 1]:
            state = state.apply(version.changes)

        logger.info(f"version_restored: {content.id} @ {commit_id} ({target_index + 1} versions replayed)")
        return content.with_state(state, updated_at=self._clock())
