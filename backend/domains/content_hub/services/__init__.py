"""
服务层：差异计算、版本管理、内容服务
"""

from .content_service import ContentService, get_content_service
from .differ import VersionDiffer, diff_metadata
from .versioning import VersionedContentStore

__all__ = [
    'VersionDiffer',
    'diff_metadata',
    'VersionedContentStore',
    'ContentService',
    'get_content_service',
]
