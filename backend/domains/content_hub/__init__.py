"""
内容版本管理领域模块

为每一篇内容维护可审计、可回放的变更历史：
- 每次变更都会产生一个新的不可变内容值，并追加一条版本记录
- 版本只记录与前一状态不同的字段（稀疏变更）
- 元数据补丁逐字段合并
- 可以从基线回放到任意提交，重建当时的状态
"""

from .core.models import (
    Content,
    ContentChanges,
    ContentScope,
    ContentState,
    Metadata,
    MetadataPatch,
    Version,
    apply_patch,
    create_content,
)
from .services.content_service import ContentService, get_content_service
from .services.differ import VersionDiffer
from .services.versioning import VersionedContentStore

__all__ = [
    'Content',
    'ContentChanges',
    'ContentScope',
    'ContentState',
    'Metadata',
    'MetadataPatch',
    'Version',
    'apply_patch',
    'create_content',
    'VersionDiffer',
    'VersionedContentStore',
    'ContentService',
    'get_content_service',
]
