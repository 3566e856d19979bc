"""
核心层：内容 / 版本数据模型和存储
"""

from .models import (
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
from .repositories import ContentRepository
from .store import ContentStore, get_content_store

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
    'ContentRepository',
    'ContentStore',
    'get_content_store',
]
