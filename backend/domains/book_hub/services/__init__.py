"""
服务层：对账、标签回收、同步编排
"""

from .reconciler import FileFailure, ReconcileResult, SourceReconciler, fallback_title
from .sync_service import PushCommit, SyncService, collapse_commits, get_sync_service
from .tag_gc import TagGarbageCollector

__all__ = [
    'FileFailure',
    'ReconcileResult',
    'SourceReconciler',
    'fallback_title',
    'TagGarbageCollector',
    'PushCommit',
    'SyncService',
    'collapse_commits',
    'get_sync_service',
]
