"""
异常定义

所有可预期的失败都表示为 ApplicationError 子类，携带：
- code: 稳定的错误码，CLI 和日志中直接输出
- category: 错误分类，决定对外的 HTTP 状态码
- details / cause: 结构化附加信息和原始异常

下半部分是同步流程与版本管理专用的异常。
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(str, Enum):
    """错误分类"""
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    BUSINESS = "business"
    EXTERNAL = "external"       # GitHub 等远端服务
    INTERNAL = "internal"


_STATUS_BY_CATEGORY = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.BUSINESS: 422,
    ErrorCategory.EXTERNAL: 502,
    ErrorCategory.INTERNAL: 500,
}


@dataclass
class ApplicationError(Exception):
    """
    异常基类

    示例:
        raise BookNotFoundError("octocat", "notes")
        raise ValidationError("无效的文件路径: a/../b", field="path")
        raise BusinessError("BOOK_ALREADY_EXISTS", "书籍已存在: octocat/notes")
    """
    code: str
    message: str
    category: ErrorCategory = ErrorCategory.INTERNAL
    details: Optional[Dict[str, Any]] = None
    cause: Optional[Exception] = None

    def __post_init__(self):
        Exception.__init__(self, self.message)

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    @property
    def http_status_code(self) -> int:
        return _STATUS_BY_CATEGORY.get(self.category, 500)

    def to_dict(self) -> Dict[str, Any]:
        """序列化为 {code, message, category[, details]}"""
        data: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "category": self.category.value,
        }
        if self.details:
            data["details"] = self.details
        return data


# ==================== 通用异常 ====================

class NotFoundError(ApplicationError):
    """按标识查找的对象不存在"""
    def __init__(self, resource: str, key: Any, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code="NOT_FOUND",
            message=f"{resource}不存在: {key}",
            category=ErrorCategory.NOT_FOUND,
            details=details or {"resource": resource, "key": str(key)},
        )
        self.resource = resource
        self.key = key


class ValidationError(ApplicationError):
    """输入值不合法"""
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            category=ErrorCategory.VALIDATION,
            details={"field": field} if field else None,
        )
        self.field = field


class BusinessError(ApplicationError):
    """违反业务规则（如重复添加同一本书）"""
    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(code, message, ErrorCategory.BUSINESS, details, cause)


class ExternalServiceError(ApplicationError):
    """远端服务调用失败"""
    def __init__(
        self,
        service: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            code="EXTERNAL_SERVICE_ERROR",
            message=f"{service}: {message}",
            category=ErrorCategory.EXTERNAL,
            details=details or {"service": service},
            cause=cause,
        )


# ==================== 同步相关异常 ====================

class SyncFailureReason(str, Enum):
    """导致整次同步中止的原因"""
    CREDENTIAL_NOT_FOUND = "credential_not_found"
    BOOK_NOT_FOUND = "book_not_found"
    LISTING_FAILED = "listing_failed"


class CredentialNotFoundError(NotFoundError):
    """用户未连接 GitHub（找不到访问凭证）"""
    def __init__(self, user_id: str):
        super().__init__("GitHub 连接", user_id)
        self.code = "CREDENTIAL_NOT_FOUND"


class BookNotFoundError(NotFoundError):
    """书籍不存在"""
    def __init__(self, owner: str, repo: str):
        super().__init__("书籍", f"{owner}/{repo}", details={"owner": owner, "repo": repo})
        self.code = "BOOK_NOT_FOUND"


class ContentProviderError(ExternalServiceError):
    """远端内容服务请求失败（请求错误或响应异常）"""
    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        path: Optional[str] = None,
        cause: Optional[Exception] = None,
    ):
        details: Dict[str, Any] = {"service": "GitHub"}
        if status is not None:
            details["status"] = status
        if path is not None:
            details["path"] = path
        super().__init__("GitHub", message, details=details, cause=cause)
        self.status = status
        self.path = path


class ListingFailedError(ExternalServiceError):
    """列出远端文件失败"""
    def __init__(self, owner: str, repo: str, cause: Optional[Exception] = None):
        super().__init__(
            "GitHub",
            f"列出文件失败: {owner}/{repo}",
            details={"owner": owner, "repo": repo},
            cause=cause,
        )
        self.code = "LISTING_FAILED"


class SyncError(ApplicationError):
    """
    同步失败

    凭证缺失、书籍不存在、远端列表失败三类致命错误统一包装为此异常，
    调用方只会看到成功数量或一个 SyncError。
    """
    def __init__(
        self,
        reason: SyncFailureReason,
        owner: str,
        repo: str,
        cause: Optional[Exception] = None,
    ):
        category = cause.category if isinstance(cause, ApplicationError) else ErrorCategory.INTERNAL
        super().__init__(
            code="SYNC_FAILED",
            message=f"同步失败: {owner}/{repo} ({reason.value})",
            category=category,
            details={"reason": reason.value, "owner": owner, "repo": repo},
            cause=cause,
        )
        self.reason = reason


class FileSyncError(ApplicationError):
    """单个文件的同步错误（只记录日志，不向调用方传播）"""
    kind: str = "file"

    def __init__(
        self,
        path: str,
        book_id: str,
        cause: Optional[Exception] = None,
        category: ErrorCategory = ErrorCategory.INTERNAL,
    ):
        super().__init__(
            code=f"{self.kind.upper()}_FAILED",
            message=f"{path}: {cause}" if cause else path,
            category=category,
            details={"path": path, "book_id": book_id},
            cause=cause,
        )
        self.path = path
        self.book_id = book_id


class FetchFailedError(FileSyncError):
    """获取远端文件内容失败"""
    kind = "fetch"

    def __init__(self, path: str, book_id: str, cause: Optional[Exception] = None):
        super().__init__(path, book_id, cause, category=ErrorCategory.EXTERNAL)


class IngestFailedError(FileSyncError):
    """解析 Markdown 失败"""
    kind = "ingest"


class UpsertFailedError(FileSyncError):
    """写入笔记失败"""
    kind = "upsert"


# ==================== 版本管理异常 ====================

class InvalidChangeError(ValidationError):
    """变更内容为空（不允许创建空版本）"""
    def __init__(self, message: str = "变更内容至少需要包含一个字段"):
        super().__init__(message, field="changes")
        self.code = "INVALID_CHANGE"


class VersionNotFoundError(NotFoundError):
    """版本历史中不存在指定的提交"""
    def __init__(self, content_id: str, commit_id: str):
        super().__init__(
            "版本",
            commit_id,
            details={"content_id": content_id, "commit_id": commit_id},
        )
        self.code = "VERSION_NOT_FOUND"
        self.content_id = content_id
        self.commit_id = commit_id


class ContentNotFoundError(NotFoundError):
    """内容不存在"""
    def __init__(self, content_id: str):
        super().__init__("内容", content_id)
        self.code = "CONTENT_NOT_FOUND"


# ==================== 导出 ====================

__all__ = [
    # 基类
    "ErrorCategory",
    "ApplicationError",
    # 通用异常
    "NotFoundError",
    "ValidationError",
    "BusinessError",
    "ExternalServiceError",
    # 同步异常
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
    # 版本异常
    "InvalidChangeError",
    "VersionNotFoundError",
    "ContentNotFoundError",
]
