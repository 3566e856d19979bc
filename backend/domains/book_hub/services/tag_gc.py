"""
标签垃圾回收

同步完成后删除书籍中没有被任何笔记引用的标签。
必须在本次所有笔记写入完成之后执行。
"""

import logging

from domains.platform_core.async_utils import run_sync

from ..core.repositories import TagRepository

logger = logging.getLogger(__name__)


class TagGarbageCollector:
    """标签垃圾回收器"""

    def __init__(self, tag_repository: TagRepository):
        self.tag_repository = tag_repository

    def delete_unused(self, book_id: str, dry_run: bool = False) -> list[str]:
        """
        删除未被引用的标签

        先查找候选，再按 ID 删除；删除语句会重新检查引用，
        期间重新被引用的标签会保留下来。

        Args:
            book_id: 书籍 ID
            dry_run: 如果为 True，只预览不执行

        Returns:
            被删除（dry_run 时为将被删除）的标签名
        """
        candidates = self.tag_repository.find_unused(book_id)
        if not candidates:
            return []

        names = [tag.name for tag in candidates]
        if dry_run:
            logger.info(f"[DRY RUN] tag_gc: book={book_id} tags={names}")
            return names

        deleted = self.tag_repository.delete_by_ids(book_id, [tag.id for tag in candidates])
        if deleted != len(candidates):
            # 部分候选在查找后又被引用
            remaining = {tag.id for tag in self.tag_repository.list_by_book(book_id)}
            names = [tag.name for tag in candidates if tag.id not in remaining]
            logger.info(f"tag_gc_skipped_referenced: book={book_id} skipped={len(candidates) - deleted}")

        logger.info(f"tags_deleted: book={book_id} count={len(names)}")
        return names

    async def delete_unused_async(self, book_id: str) -> list[str]:
        """在线程池中执行 delete_unused"""
        return await run_sync(self.delete_unused, book_id)
