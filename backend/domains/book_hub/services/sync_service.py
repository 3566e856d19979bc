"""
同步服务层

同步流程（状态机）:
    ResolveCredential -> ResolveBook -> ListRemotePaths
    -> ProcessFiles（并发，单文件失败隔离）
    -> [PruneRemoved，取决于远端删除策略]
    -> TrackContents（为写入的笔记记录内容版本）
    -> GarbageCollectTags ∥ UpdateSyncStatus -> Done

前三步失败抛出 SyncError，书籍同步状态保持不变；
内容版本、标签回收和状态更新是尽力而为的，失败只记录日志，不影响返回的数量。

另外提供:
- add_book: 以仓库 README 创建书籍
- push: 根据推送事件的提交做增量同步
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Iterable, Optional

from domains.core.exceptions import (
    ApplicationError,
    BookNotFoundError,
    BusinessError,
    CredentialNotFoundError,
    ListingFailedError,
    SyncError,
    SyncFailureReason,
)
from domains.content_hub.core.models import ContentScope
from domains.content_hub.services.content_service import ContentService, get_content_service
from domains.platform_core.async_utils import run_sync
from domains.platform_core.logging import bind_sync_context, clear_sync_context, get_logger
from domains.platform_core.settings import RemoteDeletionPolicy, get_settings

from ..core.markdown import MarkdownIngestor
from ..core.models import Book, Credential, Note, SyncStatus
from ..core.repositories import (
    BookRepository,
    ContentProvider,
    CredentialRepository,
    NoteRepository,
    TagRepository,
)
from ..core.store import get_book_store, get_credential_store, get_note_store, get_tag_store
from .reconciler import ReconcileResult, SourceReconciler
from .tag_gc import TagGarbageCollector

logger = get_logger(__name__)

README_PATH = "README.md"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PushCommit:
    """推送事件中的一次提交"""
    id: str = ""
    added: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> 'PushCommit':
        return cls(
            id=data.get('id', ''),
            added=list(data.get('added') or []),
            modified=list(data.get('modified') or []),
            removed=list(data.get('removed') or []),
        )


def collapse_commits(commits: Iterable[PushCommit]) -> tuple[list[str], list[str]]:
    """
    按提交顺序合并路径变更

    同一路径以最后一次出现为准。只处理 .md 文件。

    Returns:
        (需要写入的路径, 需要删除的路径)
    """
    final: dict[str, bool] = {}
    for commit in commits:
        for path in [*commit.added, *commit.modified]:
            final.pop(path, None)
            final[path] = True
        for path in commit.removed:
            final.pop(path, None)
            final[path] = False

    modified = [path for path, alive in final.items() if alive and path.endswith('.md')]
    removed = [path for path, alive in final.items() if not alive and path.endswith('.md')]
    return modified, removed


def last_commit_ids(commits: Iterable[PushCommit]) -> dict[str, str]:
    """每个新增/修改路径对应的最后一次提交 ID"""
    commit_ids: dict[str, str] = {}
    for commit in commits:
        for path in [*commit.added, *commit.modified]:
            if commit.id:
                commit_ids[path] = commit.id
    return commit_ids


@dataclass
class _BookLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class SyncService:
    """
    同步服务（同步流程编排）

    所有依赖都可以注入；未注入时使用 PostgreSQL 存储层和 GitHub 提供方。
    同一进程内同一本书的同步串行执行。
    """

    def __init__(
        self,
        provider: Optional[ContentProvider] = None,
        note_repository: Optional[NoteRepository] = None,
        tag_repository: Optional[TagRepository] = None,
        book_repository: Optional[BookRepository] = None,
        credential_repository: Optional[CredentialRepository] = None,
        content_service: Optional[ContentService] = None,
        ingestor: Optional[MarkdownIngestor] = None,
        concurrency: Optional[int] = None,
        deletion_policy: Optional[RemoteDeletionPolicy] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        settings = get_settings()
        self._provider = provider
        self._note_repository = note_repository
        self._tag_repository = tag_repository
        self._book_repository = book_repository
        self._credential_repository = credential_repository
        self._content_service = content_service
        self.ingestor = ingestor or MarkdownIngestor()
        self.concurrency = concurrency or settings.concurrency
        self.deletion_policy = RemoteDeletionPolicy(deletion_policy or settings.remote_deletion_policy)
        self._clock = clock or _utcnow
        self._locks: dict[tuple[str, str], _BookLock] = {}

    # ==================== 依赖（延迟获取） ====================

    @property
    def provider(self) -> ContentProvider:
        if self._provider is None:
            from ..providers.github import GitHubContentProvider
            self._provider = GitHubContentProvider()
        return self._provider

    @property
    def note_repository(self) -> NoteRepository:
        if self._note_repository is None:
            self._note_repository = get_note_store()
        return self._note_repository

    @property
    def tag_repository(self) -> TagRepository:
        if self._tag_repository is None:
            self._tag_repository = get_tag_store()
        return self._tag_repository

    @property
    def book_repository(self) -> BookRepository:
        if self._book_repository is None:
            self._book_repository = get_book_store()
        return self._book_repository

    @property
    def credential_repository(self) -> CredentialRepository:
        if self._credential_repository is None:
            self._credential_repository = get_credential_store()
        return self._credential_repository

    @property
    def content_service(self) -> ContentService:
        if self._content_service is None:
            self._content_service = get_content_service()
        return self._content_service

    @property
    def reconciler(self) -> SourceReconciler:
        return SourceReconciler(
            self.provider,
            self.note_repository,
            ingestor=self.ingestor,
            concurrency=self.concurrency,
        )

    @property
    def tag_gc(self) -> TagGarbageCollector:
        return TagGarbageCollector(self.tag_repository)

    async def close(self):
        """释放提供方持有的 HTTP 会话"""
        close = getattr(self._provider, 'close', None)
        if close is not None:
            await close()

    @asynccontextmanager
    async def _book_lock(self, owner: str, repo: str) -> AsyncIterator[None]:
        """同一本书串行执行；没有持有者和等待者时移除该书的锁"""
        key = (owner, repo)
        entry = self._locks.setdefault(key, _BookLock())
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    # ==================== 同步流程 ====================

    async def sync(
        self,
        user_id: str,
        owner: str,
        repo: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> int:
        """
        全量同步一本书

        Args:
            user_id: 用户 ID
            owner: 仓库所有者
            repo: 仓库名
            cancel_event: 取消信号，触发后返回已完成的数量

        Returns:
            成功写入的文件数

        Raises:
            SyncError: 凭证缺失、书籍不存在或远端列表失败
        """
        bind_sync_context(user_id, owner, repo)
        try:
            async with self._book_lock(owner, repo):
                credential, book = await self._resolve(user_id, owner, repo)
                reconciler = self.reconciler

                try:
                    paths = await reconciler.list_paths(credential.access_token, owner, repo)
                except ListingFailedError as e:
                    logger.error("sync_aborted", reason=SyncFailureReason.LISTING_FAILED.value, error=str(e.cause))
                    raise SyncError(SyncFailureReason.LISTING_FAILED, owner, repo, cause=e) from e

                revision = await self._resolve_revision(credential, owner, repo)
                logger.info("sync_started", book_id=book.id, paths=len(paths))
                result = await reconciler.reconcile(
                    credential.access_token, owner, repo, book.id, user_id,
                    paths=paths, cancel_event=cancel_event,
                )

                if self.deletion_policy == RemoteDeletionPolicy.PRUNE and not result.cancelled:
                    await self._prune(book, paths)

                if revision is not None:
                    await self._track_contents(book, result.notes, {note.path: revision for note in result.notes})
                await self._finalize(book, result)
                logger.info(
                    "sync_finished",
                    book_id=book.id,
                    succeeded=result.succeeded,
                    failed=[f.path for f in result.failed],
                    cancelled=result.cancelled,
                )
                return result.succeeded
        finally:
            clear_sync_context()

    async def push(
        self,
        user_id: str,
        owner: str,
        repo: str,
        commits: Iterable[PushCommit],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> int:
        """
        根据推送事件增量同步

        写入新增/修改的 .md 文件，删除被移除文件对应的笔记。

        Returns:
            成功写入的文件数

        Raises:
            SyncError: 凭证缺失或书籍不存在
        """
        commits = list(commits)
        modified, removed = collapse_commits(commits)

        bind_sync_context(user_id, owner, repo)
        try:
            async with self._book_lock(owner, repo):
                credential, book = await self._resolve(user_id, owner, repo)
                result = await self.reconciler.apply_push(
                    credential.access_token, owner, repo, book.id, user_id,
                    modified=modified, removed=removed, cancel_event=cancel_event,
                )
                await self._track_contents(book, result.notes, last_commit_ids(commits))
                await self._finalize(book, result)
                return result.succeeded
        finally:
            clear_sync_context()

    async def add_book(self, user_id: str, owner: str, repo: str) -> Book:
        """
        添加书籍

        读取仓库的 README.md：标题作为书名（没有则用仓库名），正文作为描述。
        新书籍的同步状态为 never-synced。

        Raises:
            CredentialNotFoundError: 用户未连接 GitHub
            BusinessError: 书籍已存在
            ContentProviderError: README 获取失败
        """
        credential = await run_sync(self.credential_repository.find_by_user_id, user_id)
        if credential is None:
            raise CredentialNotFoundError(user_id)

        existing = await run_sync(self.book_repository.find_by_owner_and_repo, owner, repo)
        if existing is not None:
            raise BusinessError(
                "BOOK_ALREADY_EXISTS",
                f"书籍已存在: {owner}/{repo}",
                details={"owner": owner, "repo": repo, "book_id": existing.id},
            )

        raw = await self.provider.get_content(credential.access_token, owner, repo, README_PATH)
        readme = self.ingestor.parse(raw)

        book = Book(
            user_id=user_id,
            owner=owner,
            repo=repo,
            name=readme.title or repo,
            description=readme.body,
            sync_status=SyncStatus.NEVER_SYNCED,
        )
        created = await run_sync(self.book_repository.create, book)
        logger.info("book_added", book_id=created.id, owner=owner, repo=repo)
        return created

    # ==================== 内部步骤 ====================

    async def _resolve(self, user_id: str, owner: str, repo: str) -> tuple[Credential, Book]:
        """解析凭证和书籍，失败时包装为 SyncError"""
        try:
            credential = await run_sync(self.credential_repository.find_by_user_id, user_id)
            if credential is None:
                raise CredentialNotFoundError(user_id)
        except Exception as e:
            raise self._abort(SyncFailureReason.CREDENTIAL_NOT_FOUND, owner, repo, e) from e

        try:
            book = await run_sync(self.book_repository.find_by_owner_and_repo, owner, repo)
            if book is None:
                raise BookNotFoundError(owner, repo)
        except Exception as e:
            raise self._abort(SyncFailureReason.BOOK_NOT_FOUND, owner, repo, e) from e

        return credential, book

    def _abort(self, reason: SyncFailureReason, owner: str, repo: str, cause: Exception) -> SyncError:
        if isinstance(cause, ApplicationError):
            logger.warning("sync_aborted", reason=reason.value, error=cause.message)
        else:
            logger.error("sync_aborted", reason=reason.value, error=str(cause), exc_info=cause)
        return SyncError(reason, owner, repo, cause=cause)

    async def _resolve_revision(self, credential: Credential, owner: str, repo: str) -> Optional[str]:
        """分支最新提交；获取失败时本次同步不记录内容版本"""
        try:
            return await self.provider.get_revision(credential.access_token, owner, repo)
        except Exception as e:
            logger.warning("sync_revision_unavailable", error=str(e))
            return None

    async def _track_contents(self, book: Book, notes: list[Note], commit_ids: dict[str, str]):
        """为写入成功的笔记记录内容版本（逐个尽力而为）"""
        written = 0
        for note in notes:
            commit_id = commit_ids.get(note.path)
            if not commit_id:
                continue
            try:
                _, changed = await run_sync(
                    self.content_service.track,
                    note.user_id, book.id, note.path, commit_id, note.title, note.body,
                    scope=ContentScope(note.scope.value),
                    tags=note.tags,
                )
            except Exception as e:
                logger.error("content_track_failed", path=note.path, book_id=book.id, error=str(e))
                continue
            written += changed
        if notes:
            logger.info("contents_tracked", book_id=book.id, notes=len(notes), written=written)

    async def _prune(self, book: Book, remote_paths: list[str]):
        """删除远端已不存在的文件对应的笔记（标记-清除）"""
        remote = set(remote_paths)
        try:
            notes = await run_sync(self.note_repository.list_by_book, book.id)
            stale = [note.path for note in notes if note.path not in remote]
            if stale:
                deleted = await run_sync(self.note_repository.delete_by_paths, book.id, stale)
                logger.info("notes_pruned", book_id=book.id, count=deleted, paths=stale)
        except Exception as e:
            logger.error("notes_prune_failed", book_id=book.id, error=str(e))

    async def _update_status(self, book: Book) -> Book:
        updated = replace(book, sync_status=SyncStatus.SYNCED, last_synced_at=self._clock())
        return await run_sync(self.book_repository.update, updated)

    async def _finalize(self, book: Book, result: ReconcileResult):
        """
        并发执行标签回收和同步状态更新

        被取消的同步不更新状态（本次并未完整完成）。
        """
        steps = {"tag_gc": self.tag_gc.delete_unused_async(book.id)}
        if not result.cancelled:
            steps["sync_status"] = self._update_status(book)

        outcomes = await asyncio.gather(*steps.values(), return_exceptions=True)
        for step, outcome in zip(steps, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"{step}_failed", book_id=book.id, error=str(outcome))


# 单例实例
_sync_service: SyncService | None = None


def get_sync_service() -> SyncService:
    """获取同步服务单例"""
    global _sync_service
    if _sync_service is None:
        _sync_service = SyncService()
    return _sync_service
