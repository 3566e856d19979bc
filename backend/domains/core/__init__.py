"""
Core - 通用应用基础设施

提供与具体业务无关的统一异常体系。
"""

from .exceptions import (
    ApplicationError,
    BookNotFoundError,
    BusinessError,
    ContentNotFoundError,
    ContentProviderError,
    CredentialNotFoundError,
    ErrorCategory,
    ExternalServiceError,
    FetchFailedError,
    FileSyncError,
    IngestFailedError,
    InvalidChangeError,
    ListingFailedError,
    NotFoundError,
    SyncError,
    SyncFailureReason,
    UpsertFailedError,
    ValidationError,
    VersionNotFoundError,
)

__all__ = [
    "ErrorCategory",
    "ApplicationError",
    "NotFoundError",
    "ValidationError",
    "BusinessError",
    "ExternalServiceError",
    "SyncFailureReason",
    "SyncError",
    "CredentialNotFoundError",
    "BookNotFoundError",
    "ContentProviderError",
    "ListingFailedError",
    "FileSyncError",
    "FetchFailedError",
    "IngestFailedError",
    "UpsertFailedError",
    "InvalidChangeError",
    "VersionNotFoundError",
    "ContentNotFoundError",
]
