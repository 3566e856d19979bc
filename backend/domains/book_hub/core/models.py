"""
书籍同步数据模型定义

远端 GitHub 仓库作为一本"书籍"（Book），仓库中的每个 Markdown 文件
同步为一条笔记（Note），笔记通过标签（Tag）归类。

- Book: 书籍，记录远端坐标和同步状态
- Note: 笔记，以 (book_id, path) 唯一标识
- NoteInput: 笔记写入参数（upsert 使用）
- Tag: 标签，属于某本书籍
- Credential: 用户的 GitHub 访问凭证
- IngestedNote: Markdown 解析结果
"""

import uuid as uuid_lib
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class NoteScope(str, Enum):
    """
    笔记公开范围

    - private: 仅自己可见（默认）
    - unlisted: 持有链接可见
    - public: 公开
    """
    PRIVATE = "private"
    UNLISTED = "unlisted"
    PUBLIC = "public"

    @classmethod
    def parse(cls, value: Any) -> 'NoteScope':
        """解析公开范围，无法识别时返回 private"""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return cls.PRIVATE


class SyncStatus(str, Enum):
    """书籍同步状态"""
    NEVER_SYNCED = "never-synced"
    SYNCING = "syncing"
    SYNCED = "synced"
    ERROR = "error"


@dataclass
class Book:
    """
    书籍数据类

    Attributes:
        id: 书籍 ID
        user_id: 所属用户
        owner: GitHub 仓库所有者
        repo: GitHub 仓库名
        name: 显示名称（默认取 README 标题）
        description: 描述（默认取 README 正文）
        sync_status: 同步状态
        last_synced_at: 最近一次同步完成时间
    """
    id: str = field(default_factory=lambda: str(uuid_lib.uuid4()))
    user_id: str = ""
    owner: str = ""
    repo: str = ""
    name: str = ""
    description: str = ""
    sync_status: SyncStatus = SyncStatus.NEVER_SYNCED
    last_synced_at: datetime | None = None

    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    def to_dict(self) -> dict[str, Any]:
        """转换为字典"""
        return {
            'id': self.id,
            'user_id': self.user_id,
            'owner': self.owner,
            'repo': self.repo,
            'name': self.name,
            'description': self.description,
            'sync_status': self.sync_status.value,
            'last_synced_at': self.last_synced_at,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'Book':
        """从字典创建书籍实例"""
        valid_fields = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        for key in ('id', 'user_id'):
            if valid_fields.get(key) is not None:
                valid_fields[key] = str(valid_fields[key])
        if 'sync_status' in valid_fields:
            valid_fields['sync_status'] = SyncStatus(valid_fields['sync_status'])
        return cls(**valid_fields)


@dataclass
class Note:
    """
    笔记数据类

    Attributes:
        id: 笔记 ID
        user_id: 所属用户
        book_id: 所属书籍
        path: 仓库内文件路径（书籍内唯一）
        title: 标题
        body: 正文（不含 Front Matter）
        scope: 公开范围
        tags: 标签名
    """
    id: str = field(default_factory=lambda: str(uuid_lib.uuid4()))
    user_id: str = ""
    book_id: str = ""
    path: str = ""
    title: str = ""
    body: str = ""
    scope: NoteScope = NoteScope.PRIVATE
    tags: tuple[str, ...] = ()

    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """转换为字典"""
        return {
            'id': self.id,
            'user_id': self.user_id,
            'book_id': self.book_id,
            'path': self.path,
            'title': self.title,
            'body': self.body,
            'scope': self.scope.value,
            'tags': list(self.tags),
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'Note':
        """从字典创建笔记实例"""
        valid_fields = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        for key in ('id', 'user_id', 'book_id'):
            if valid_fields.get(key) is not None:
                valid_fields[key] = str(valid_fields[key])
        if 'scope' in valid_fields:
            valid_fields['scope'] = NoteScope.parse(valid_fields['scope'])
        if 'tags' in valid_fields:
            valid_fields['tags'] = tuple(valid_fields['tags'] or ())
        return cls(**valid_fields)


@dataclass(frozen=True)
class NoteInput:
    """笔记写入参数，以 (book_id, path) 为键执行 upsert"""
    user_id: str
    book_id: str
    path: str
    title: str
    body: str
    scope: NoteScope = NoteScope.PRIVATE
    tags: tuple[str, ...] = ()


@dataclass
class Tag:
    """标签（书籍内名称唯一）"""
    id: str = field(default_factory=lambda: str(uuid_lib.uuid4()))
    book_id: str = ""
    name: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'Tag':
        return cls(id=str(data['id']), book_id=str(data['book_id']), name=data['name'])


@dataclass
class Credential:
    """
    GitHub 访问凭证

    Attributes:
        user_id: 所属用户
        access_token: 访问令牌
        github_user_id: GitHub 用户 ID
        github_login: GitHub 登录名
    """
    user_id: str
    access_token: str
    github_user_id: str | None = None
    github_login: str | None = None

    def __repr__(self) -> str:
        return f"Credential(user_id={self.user_id!r}, github_login={self.github_login!r})"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'Credential':
        github_user_id = data.get('github_user_id')
        return cls(
            user_id=str(data['user_id']),
            access_token=data['access_token'],
            github_user_id=str(github_user_id) if github_user_id is not None else None,
            github_login=data.get('github_login'),
        )


@dataclass(frozen=True)
class IngestedNote:
    """Markdown 解析结果"""
    title: str = ""
    body: str = ""
    scope: NoteScope = NoteScope.PRIVATE
    tags: tuple[str, ...] = ()
