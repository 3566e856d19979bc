"""
核心层：数据模型、Markdown 解析、存储接口与 PostgreSQL 实现
"""

from .markdown import MAX_TAG_LENGTH, MarkdownIngestor, parse_markdown
from .models import (
    Book,
    Credential,
    IngestedNote,
    Note,
    NoteInput,
    NoteScope,
    SyncStatus,
    Tag,
)
from .repositories import (
    BookRepository,
    ContentProvider,
    CredentialRepository,
    NoteRepository,
    TagRepository,
)
from .store import (
    BookStore,
    CredentialStore,
    NoteStore,
    TagStore,
    get_book_store,
    get_credential_store,
    get_note_store,
    get_tag_store,
)

__all__ = [
    'Book',
    'Credential',
    'IngestedNote',
    'Note',
    'NoteInput',
    'NoteScope',
    'SyncStatus',
    'Tag',
    'MAX_TAG_LENGTH',
    'MarkdownIngestor',
    'parse_markdown',
    'BookRepository',
    'ContentProvider',
    'CredentialRepository',
    'NoteRepository',
    'TagRepository',
    'BookStore',
    'CredentialStore',
    'NoteStore',
    'TagStore',
    'get_book_store',
    'get_credential_store',
    'get_note_store',
    'get_tag_store',
]
