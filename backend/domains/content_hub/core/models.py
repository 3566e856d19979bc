"""
内容与版本数据模型定义

所有模型都是不可变值对象（frozen dataclass）：
任何修改都通过 dataclasses.replace 产生新值，原对象保持不变。

- Metadata: 内容元数据（标签、分类、语言、阅读时间、发布时间）
- MetadataPatch: 元数据的部分更新，缺省字段表示"保持原值"
- ContentChanges: 一个版本的稀疏变更（标题 / 正文 / 元数据补丁）
- Version: 版本记录，变更不能为空
- ContentState: 标题 + 正文 + 元数据的快照
- Content: 内容实体，持有不可变的版本链和版本前的基线状态
"""

import re
import uuid as uuid_lib
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from domains.core.exceptions import InvalidChangeError, ValidationError

LANGUAGE_PATTERN = re.compile(r'^[a-z]{2}(-[A-Z]{2})?$')


class ContentScope(str, Enum):
    """内容公开范围"""
    PRIVATE = "private"
    UNLISTED = "unlisted"
    PUBLIC = "public"


def _validate_language(language: Optional[str]) -> None:
    if language is not None and not LANGUAGE_PATTERN.match(language):
        raise ValidationError(f"无效的语言代码: {language}", field="language")


def _validate_reading_time(reading_time: Optional[int]) -> None:
    if reading_time is not None and reading_time < 0:
        raise ValidationError(f"阅读时间不能为负数: {reading_time}", field="reading_time")


def _datetime_to_iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def _iso_to_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace('Z', '+00:00'))


@dataclass(frozen=True)
class Metadata:
    """
    内容元数据

    Attributes:
        tags: 标签
        categories: 分类
        language: 语言代码（如 ja, en-US）
        reading_time: 阅读时间（分钟）
        published_at: 首次发布时间
        last_published_at: 最近发布时间
    """
    tags: tuple[str, ...] = ()
    categories: tuple[str, ...] = ()
    language: Optional[str] = None
    reading_time: Optional[int] = None
    published_at: Optional[datetime] = None
    last_published_at: Optional[datetime] = None

    def __post_init__(self):
        object.__setattr__(self, 'tags', tuple(self.tags))
        object.__setattr__(self, 'categories', tuple(self.categories))
        _validate_language(self.language)
        _validate_reading_time(self.reading_time)

    def to_dict(self) -> dict[str, Any]:
        return {
            'tags': list(self.tags),
            'categories': list(self.categories),
            'language': self.language,
            'reading_time': self.reading_time,
            'published_at': _datetime_to_iso(self.published_at),
            'last_published_at': _datetime_to_iso(self.last_published_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'Metadata':
        return cls(
            tags=tuple(data.get('tags') or ()),
            categories=tuple(data.get('categories') or ()),
            language=data.get('language'),
            reading_time=data.get('reading_time'),
            published_at=_iso_to_datetime(data.get('published_at')),
            last_published_at=_iso_to_datetime(data.get('last_published_at')),
        )


@dataclass(frozen=True)
class MetadataPatch:
    """
    元数据补丁

    每个字段都是可选的：None 表示补丁中不包含该字段，应用时保留原值。
    """
    tags: Optional[tuple[str, ...]] = None
    categories: Optional[tuple[str, ...]] = None
    language: Optional[str] = None
    reading_time: Optional[int] = None
    published_at: Optional[datetime] = None
    last_published_at: Optional[datetime] = None

    def __post_init__(self):
        if self.tags is not None:
            object.__setattr__(self, 'tags', tuple(self.tags))
        if self.categories is not None:
            object.__setattr__(self, 'categories', tuple(self.categories))
        _validate_language(self.language)
        _validate_reading_time(self.reading_time)

    @property
    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    def to_dict(self) -> dict[str, Any]:
        """只输出补丁中存在的字段"""
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, tuple):
                value = list(value)
            elif isinstance(value, datetime):
                value = value.isoformat()
            result[f.name] = value
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'MetadataPatch':
        return cls(
            tags=tuple(data['tags']) if data.get('tags') is not None else None,
            categories=tuple(data['categories']) if data.get('categories') is not None else None,
            language=data.get('language'),
            reading_time=data.get('reading_time'),
            published_at=_iso_to_datetime(data.get('published_at')),
            last_published_at=_iso_to_datetime(data.get('last_published_at')),
        )


def apply_patch(base: Metadata, patch: Optional[MetadataPatch]) -> Metadata:
    """
    逐字段合并元数据补丁

    补丁中存在的字段替换原值，其余字段保持 base 的值。
    """
    if patch is None or patch.is_empty:
        return base
    updates = {
        f.name: getattr(patch, f.name)
        for f in fields(patch)
        if getattr(patch, f.name) is not None
    }
    return replace(base, **updates)


@dataclass(frozen=True)
class ContentChanges:
    """
    一个版本的稀疏变更

    只包含与前一状态不同的字段。
    """
    title: Optional[str] = None
    body: Optional[str] = None
    metadata: Optional[MetadataPatch] = None

    @property
    def is_empty(self) -> bool:
        return (
            self.title is None
            and self.body is None
            and (self.metadata is None or self.metadata.is_empty)
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.title is not None:
            result['title'] = self.title
        if self.body is not None:
            result['body'] = self.body
        if self.metadata is not None and not self.metadata.is_empty:
            result['metadata'] = self.metadata.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'ContentChanges':
        metadata = data.get('metadata')
        return cls(
            title=data.get('title'),
            body=data.get('body'),
            metadata=MetadataPatch.from_dict(metadata) if metadata else None,
        )


@dataclass(frozen=True)
class Version:
    """
    版本记录

    Attributes:
        id: 版本 ID
        content_id: 所属内容 ID
        commit_id: 来源提交 ID（如 GitHub commit SHA）
        created_at: 创建时间
        changes: 稀疏变更，不能为空
    """
    id: str
    content_id: str
    commit_id: str
    created_at: datetime
    changes: ContentChanges

    def __post_init__(self):
        if not self.commit_id:
            raise InvalidChangeError("提交 ID 不能为空")
        if self.changes.is_empty:
            raise InvalidChangeError()

    def to_dict(self) -> dict[str, Any]:
        return {
            'id': self.id,
            'content_id': self.content_id,
            'commit_id': self.commit_id,
            'created_at': self.created_at.isoformat(),
            'changes': self.changes.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'Version':
        return cls(
            id=data['id'],
            content_id=data['content_id'],
            commit_id=data['commit_id'],
            created_at=_iso_to_datetime(data['created_at']),
            changes=ContentChanges.from_dict(data.get('changes') or {}),
        )


@dataclass(frozen=True)
class ContentState:
    """标题 + 正文 + 元数据的快照"""
    title: str = ""
    body: str = ""
    metadata: Metadata = field(default_factory=Metadata)

    def apply(self, changes: ContentChanges) -> 'ContentState':
        """在当前状态上应用一次变更，返回新状态"""
        return ContentState(
            title=changes.title if changes.title is not None else self.title,
            body=changes.body if changes.body is not None else self.body,
            metadata=apply_patch(self.metadata, changes.metadata),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            'title': self.title,
            'body': self.body,
            'metadata': self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'ContentState':
        return cls(
            title=data.get('title', ''),
            body=data.get('body', ''),
            metadata=Metadata.from_dict(data.get('metadata') or {}),
        )


@dataclass(frozen=True)
class Content:
    """
    内容实体

    版本链只追加、不删除；baseline 记录任何版本产生之前的状态，
    用于按提交回放重建历史状态。
    """
    id: str
    user_id: str
    book_id: str
    path: str
    title: str
    body: str
    scope: ContentScope = ContentScope.PRIVATE
    metadata: Metadata = field(default_factory=Metadata)
    versions: tuple[Version, ...] = ()
    baseline: ContentState = field(default_factory=ContentState)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        object.__setattr__(self, 'versions', tuple(self.versions))
        if not self.path or self.path.startswith('/') or '..' in self.path:
            raise ValidationError(f"无效的文件路径: {self.path}", field="path")

    @property
    def state(self) -> ContentState:
        return ContentState(title=self.title, body=self.body, metadata=self.metadata)

    def with_state(self, state: ContentState, updated_at: datetime) -> 'Content':
        return replace(
            self,
            title=state.title,
            body=state.body,
            metadata=state.metadata,
            updated_at=updated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'book_id': self.book_id,
            'path': self.path,
            'title': self.title,
            'body': self.body,
            'scope': self.scope.value,
            'metadata': self.metadata.to_dict(),
            'versions': [v.to_dict() for v in self.versions],
            'baseline': self.baseline.to_dict(),
            'created_at': _datetime_to_iso(self.created_at),
            'updated_at': _datetime_to_iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'Content':
        return cls(
            id=str(data['id']),
            user_id=str(data['user_id']),
            book_id=str(data['book_id']),
            path=data['path'],
            title=data.get('title', ''),
            body=data.get('body', ''),
            scope=ContentScope(data.get('scope') or ContentScope.PRIVATE.value),
            metadata=Metadata.from_dict(data.get('metadata') or {}),
            versions=tuple(Version.from_dict(v) for v in data.get('versions') or ()),
            baseline=ContentState.from_dict(data.get('baseline') or {}),
            created_at=_iso_to_datetime(data.get('created_at')),
            updated_at=_iso_to_datetime(data.get('updated_at')),
        )


def create_content(
    user_id: str,
    book_id: str,
    path: str,
    title: str = "",
    body: str = "",
    scope: ContentScope = ContentScope.PRIVATE,
    metadata: Optional[Metadata] = None,
    content_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Content:
    """
    创建新内容

    初始状态同时作为版本回放的基线。
    """
    now = now or datetime.now(timezone.utc)
    metadata = metadata or Metadata()
    return Content(
        id=content_id or str(uuid_lib.uuid4()),
        user_id=user_id,
        book_id=book_id,
        path=path,
        title=title,
        body=body,
        scope=scope,
        metadata=metadata,
        versions=(),
        baseline=ContentState(title=title, body=body, metadata=metadata),
        created_at=now,
        updated_at=now,
    )
