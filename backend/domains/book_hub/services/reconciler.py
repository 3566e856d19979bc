"""
远端文件与本地笔记的对账

对每个远端路径独立执行 获取 -> 解析 -> 写入：
- 单个文件失败只记录日志并跳过，不影响其他文件
- 并发数由信号量限制（BOOK_SYNC_CONCURRENCY）
- 支持通过 asyncio.Event 取消：未开始写入的文件被放弃，
  已在写入中的文件等待其完成并计入结果
"""

import asyncio
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

from domains.core.exceptions import (
    FetchFailedError,
    FileSyncError,
    IngestFailedError,
    ListingFailedError,
    UpsertFailedError,
)
from domains.platform_core.async_utils import run_sync
from domains.platform_core.logging import get_logger
from domains.platform_core.settings import get_settings

from ..core.markdown import MarkdownIngestor
from ..core.models import Note, NoteInput
from ..core.repositories import ContentProvider, NoteRepository

logger = get_logger(__name__)

_MD_SUFFIX = re.compile(r'\.md$')


def fallback_title(path: str) -> str:
    """取路径最后一段并去掉 .md 后缀"""
    return _MD_SUFFIX.sub('', path.rsplit('/', 1)[-1])


def _unique(paths: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(paths))


@dataclass
class FileFailure:
    """单个文件的失败记录"""
    path: str
    kind: str
    error: str


@dataclass
class ReconcileResult:
    """
    对账结果

    Attributes:
        succeeded: 成功写入的文件数
        upserted: 成功写入的路径
        notes: 成功写入后的笔记（与 upserted 顺序一致）
        failed: 失败的文件
        removed: 删除的笔记数（推送同步）
        cancelled: 是否被取消
        listed: 本次处理的远端路径
    """
    succeeded: int = 0
    upserted: list[str] = field(default_factory=list)
    notes: list[Note] = field(default_factory=list)
    failed: list[FileFailure] = field(default_factory=list)
    removed: int = 0
    cancelled: bool = False
    listed: list[str] = field(default_factory=list)


class SourceReconciler:
    """
    对账器

    使用示例:
        reconciler = SourceReconciler(provider, note_store)
        result = await reconciler.reconcile(token, "octocat", "notes", book.id, user_id)
        print(result.succeeded)
    """

    def __init__(
        self,
        provider: ContentProvider,
        note_repository: NoteRepository,
        ingestor: Optional[MarkdownIngestor] = None,
        concurrency: Optional[int] = None,
    ):
        self.provider = provider
        self.note_repository = note_repository
        self.ingestor = ingestor or MarkdownIngestor()
        self.concurrency = concurrency or get_settings().concurrency

    async def list_paths(self, access_token: str, owner: str, repo: str) -> list[str]:
        """
        列出远端路径

        Raises:
            ListingFailedError: 列表失败（整次同步中止）
        """
        try:
            paths = await self.provider.list_paths(access_token, owner, repo)
        except Exception as e:
            raise ListingFailedError(owner, repo, cause=e) from e
        return _unique(paths)

    async def reconcile(
        self,
        access_token: str,
        owner: str,
        repo: str,
        book_id: str,
        user_id: str,
        paths: Optional[list[str]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ReconcileResult:
        """
        全量对账

        Args:
            paths: 远端路径列表，None 则先列出
            cancel_event: 取消信号

        Raises:
            ListingFailedError: 列表失败
        """
        if paths is None:
            paths = await self.list_paths(access_token, owner, repo)
        else:
            paths = _unique(paths)

        result = ReconcileResult(listed=list(paths))
        await self._fan_out(access_token, owner, repo, book_id, user_id, paths, result, cancel_event)
        logger.info(
            "reconcile_finished",
            book_id=book_id,
            total=len(paths),
            succeeded=result.succeeded,
            failed=len(result.failed),
            cancelled=result.cancelled,
        )
        return result

    async def apply_push(
        self,
        access_token: str,
        owner: str,
        repo: str,
        book_id: str,
        user_id: str,
        modified: Iterable[str],
        removed: Iterable[str],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ReconcileResult:
        """
        增量对账（推送事件）

        写入 modified 中的路径，删除 removed 中的路径对应的笔记。
        """
        modified = _unique(modified)
        removed = _unique(removed)

        result = ReconcileResult(listed=list(modified))
        await self._fan_out(access_token, owner, repo, book_id, user_id, modified, result, cancel_event)

        if removed and not result.cancelled:
            try:
                result.removed = await run_sync(self.note_repository.delete_by_paths, book_id, removed)
            except Exception as e:
                logger.error("note_delete_failed", book_id=book_id, paths=removed, error=str(e))

        logger.info(
            "push_applied",
            book_id=book_id,
            modified=len(modified),
            succeeded=result.succeeded,
            removed=result.removed,
            failed=len(result.failed),
        )
        return result

    # ==================== 单文件处理 ====================

    async def _process_path(
        self,
        semaphore: asyncio.Semaphore,
        access_token: str,
        owner: str,
        repo: str,
        book_id: str,
        user_id: str,
        path: str,
        cancel_event: Optional[asyncio.Event],
        upserting: set[asyncio.Task],
    ) -> Note:
        async with semaphore:
            try:
                raw = await self.provider.get_content(access_token, owner, repo, path)
            except Exception as e:
                raise FetchFailedError(path, book_id, e) from e

            try:
                ingested = self.ingestor.parse(raw)
            except Exception as e:
                raise IngestFailedError(path, book_id, e) from e

            # 取消后不再开始新的写入
            if cancel_event is not None and cancel_event.is_set():
                raise asyncio.CancelledError()

            note = NoteInput(
                user_id=user_id,
                book_id=book_id,
                path=path,
                title=ingested.title or fallback_title(path),
                body=ingested.body,
                scope=ingested.scope,
                tags=ingested.tags,
            )
            # 写入在线程池中执行，无法中途取消，只能等它完成
            upserting.add(asyncio.current_task())
            try:
                return await run_sync(self.note_repository.create_or_update, note)
            except Exception as e:
                raise UpsertFailedError(path, book_id, e) from e

    def _collect(self, task: asyncio.Task, path: str, book_id: str, result: ReconcileResult):
        if task.cancelled():
            return

        error = task.exception()
        if error is None:
            result.succeeded += 1
            result.upserted.append(path)
            result.notes.append(task.result())
            return

        kind = error.kind if isinstance(error, FileSyncError) else FileSyncError.kind
        cause = error.cause if isinstance(error, FileSyncError) else error
        result.failed.append(FileFailure(path=path, kind=kind, error=str(cause)))

        log = logger.warning if kind == FetchFailedError.kind else logger.error
        log(f"note_{kind}_failed", path=path, book_id=book_id, error=str(cause))

    async def _fan_out(
        self,
        access_token: str,
        owner: str,
        repo: str,
        book_id: str,
        user_id: str,
        paths: list[str],
        result: ReconcileResult,
        cancel_event: Optional[asyncio.Event],
    ):
        if cancel_event is not None and cancel_event.is_set():
            result.cancelled = True
            return
        if not paths:
            return

        semaphore = asyncio.Semaphore(self.concurrency)
        upserting: set[asyncio.Task] = set()
        tasks = {
            asyncio.create_task(
                self._process_path(
                    semaphore, access_token, owner, repo, book_id, user_id, path,
                    cancel_event, upserting,
                )
            ): path
            for path in paths
        }
        cancel_waiter = asyncio.create_task(cancel_event.wait()) if cancel_event is not None else None
        pending = set(tasks)

        try:
            while pending:
                waiting = pending | {cancel_waiter} if cancel_waiter is not None else pending
                done, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)

                for task in done:
                    if task is cancel_waiter:
                        continue
                    pending.discard(task)
                    self._collect(task, tasks[task], book_id, result)

                if pending and cancel_waiter is not None and cancel_waiter.done():
                    result.cancelled = True
                    in_flight = pending & upserting
                    logger.info(
                        "reconcile_cancelled",
                        book_id=book_id,
                        outstanding=len(pending),
                        awaiting_upserts=len(in_flight),
                    )
                    for task in pending - in_flight:
                        task.cancel()
                    await asyncio.gather(*pending, return_exceptions=True)
                    for task in pending:
                        self._collect(task, tasks[task], book_id, result)
                    pending.clear()
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()
            for task in tasks:
                if not task.done():
                    task.cancel()
