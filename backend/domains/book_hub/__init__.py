"""
书籍同步领域模块

将远端 GitHub 仓库（书籍）中的 Markdown 文件同步为本地笔记:
- Markdown 解析：Front Matter（title / scope / tags）+ 正文行内 #tag
- 全量对账：逐文件 获取 -> 解析 -> 写入，单文件失败隔离，并发受限
- 标签回收：删除不再被任何笔记引用的标签
- 同步编排：凭证 -> 书籍 -> 远端列表 -> 对账 -> 标签回收 ∥ 状态更新

使用示例:
    from domains.book_hub import get_sync_service

    count = await get_sync_service().sync(user_id, "octocat", "notes")
"""

from .core.markdown import parse_markdown
from .core.models import Book, Note, NoteScope, SyncStatus, Tag
from .services.sync_service import PushCommit, SyncService, get_sync_service

__all__ = [
    'Book',
    'Note',
    'NoteScope',
    'SyncStatus',
    'Tag',
    'parse_markdown',
    'PushCommit',
    'SyncService',
    'get_sync_service',
]
