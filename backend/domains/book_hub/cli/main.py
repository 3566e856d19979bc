#!/usr/bin/env python3
"""
Book Sync CLI - 书籍同步与内容版本管理入口

命令:
  add-book      以仓库 README 添加书籍
  sync          全量同步一本书
  push          根据推送事件（JSON 文件）增量同步
  gc-tags       清理未被引用的标签
  history       查看内容的版本历史
  restore       将内容恢复到指定提交
"""

import argparse
import asyncio
import json
import sys

from dotenv import load_dotenv

from domains.core.exceptions import ApplicationError
from domains.platform_core.logging import LogConfig, configure_logging


# 加载当前目录的 .env 文件
load_dotenv()


def cmd_add_book(args):
    """执行 add-book 命令"""
    from ..services.sync_service import SyncService

    async def run():
        service = SyncService()
        try:
            return await service.add_book(args.user, args.owner, args.repo)
        finally:
            await service.close()

    book = asyncio.run(run())
    print(f"已添加书籍: {book.full_name} ({book.name}) id={book.id}")


def cmd_sync(args):
    """执行 sync 命令"""
    from ..services.sync_service import SyncService

    async def run():
        service = SyncService(concurrency=args.concurrency, deletion_policy=args.prune)
        try:
            return await service.sync(args.user, args.owner, args.repo)
        finally:
            await service.close()

    count = asyncio.run(run())
    print(f"同步完成: {args.owner}/{args.repo} 成功 {count} 个文件")


def cmd_push(args):
    """执行 push 命令 - 事件文件为 GitHub push 事件或其中的 commits 数组"""
    from ..services.sync_service import PushCommit, SyncService

    with open(args.event, 'r', encoding='utf-8') as f:
        payload = json.load(f)
    raw_commits = payload.get('commits', []) if isinstance(payload, dict) else payload
    commits = [PushCommit.from_dict(c) for c in raw_commits]

    async def run():
        service = SyncService()
        try:
            return await service.push(args.user, args.owner, args.repo, commits)
        finally:
            await service.close()

    count = asyncio.run(run())
    print(f"增量同步完成: {args.owner}/{args.repo} 成功 {count} 个文件")


def cmd_gc_tags(args):
    """执行 gc-tags 命令"""
    from ..core.store import get_book_store, get_tag_store
    from ..services.tag_gc import TagGarbageCollector

    book = get_book_store().find_by_owner_and_repo(args.owner, args.repo)
    if book is None:
        print(f"书籍不存在: {args.owner}/{args.repo}")
        sys.exit(1)

    names = TagGarbageCollector(get_tag_store()).delete_unused(book.id, dry_run=args.dry_run)
    prefix = "[DRY RUN] 将删除" if args.dry_run else "已删除"
    print(f"{prefix} {len(names)} 个标签: {', '.join(names)}")


def _find_content(args):
    """按 owner/repo/path 定位内容"""
    from domains.content_hub.services.content_service import get_content_service
    from domains.core.exceptions import BookNotFoundError, ContentNotFoundError

    from ..core.store import get_book_store

    book = get_book_store().find_by_owner_and_repo(args.owner, args.repo)
    if book is None:
        raise BookNotFoundError(args.owner, args.repo)

    service = get_content_service()
    content = service.find_by_path(book.id, args.path)
    if content is None:
        raise ContentNotFoundError(f"{args.owner}/{args.repo}:{args.path}")
    return service, content


def cmd_history(args):
    """执行 history 命令"""
    service, content = _find_content(args)

    versions = service.get_history(content.id)
    if not versions:
        print("暂无版本记录")
        return
    for version in versions:
        fields = ', '.join(sorted(version.changes.to_dict()))
        print(f"{version.created_at.isoformat()}  {version.commit_id}  [{fields}]")


def cmd_restore(args):
    """执行 restore 命令"""
    service, content = _find_content(args)

    restored = service.restore(content.id, args.commit, persist=not args.dry_run)
    print(f"已恢复到 {args.commit}: {restored.title}")
    if args.dry_run:
        print("(预览模式，未保存)")


def main():
    parser = argparse.ArgumentParser(
        description="Book Sync - 书籍同步与内容版本管理",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  book-sync add-book --user <uid> octocat notes
  book-sync sync --user <uid> octocat notes --prune
  book-sync push --user <uid> octocat notes --event push.json
  book-sync gc-tags octocat notes --dry-run
  book-sync history octocat notes docs/intro.md
  book-sync restore octocat notes docs/intro.md <commit-sha>
        """
    )
    parser.add_argument('--log-level', help='日志级别（默认读取 BOOK_SYNC_LOG_LEVEL）')

    subparsers = parser.add_subparsers(dest='command', help='子命令')

    def add_book_args(p):
        p.add_argument('owner', help='仓库所有者')
        p.add_argument('repo', help='仓库名')

    # add-book
    p_add = subparsers.add_parser('add-book', help='以仓库 README 添加书籍')
    p_add.add_argument('--user', required=True, help='用户 ID')
    add_book_args(p_add)
    p_add.set_defaults(func=cmd_add_book)

    # sync
    p_sync = subparsers.add_parser('sync', help='全量同步一本书')
    p_sync.add_argument('--user', required=True, help='用户 ID')
    add_book_args(p_sync)
    p_sync.add_argument('--concurrency', type=int, help='并发数（默认读取 BOOK_SYNC_CONCURRENCY）')
    p_sync.add_argument('--prune', action='store_const', const='prune',
                        help='删除远端已不存在的文件对应的笔记')
    p_sync.set_defaults(func=cmd_sync)

    # push
    p_push = subparsers.add_parser('push', help='根据推送事件增量同步')
    p_push.add_argument('--user', required=True, help='用户 ID')
    add_book_args(p_push)
    p_push.add_argument('--event', required=True, help='推送事件 JSON 文件')
    p_push.set_defaults(func=cmd_push)

    # gc-tags
    p_gc = subparsers.add_parser('gc-tags', help='清理未被引用的标签')
    add_book_args(p_gc)
    p_gc.add_argument('--dry-run', action='store_true', help='预览模式')
    p_gc.set_defaults(func=cmd_gc_tags)

    # history
    p_history = subparsers.add_parser('history', help='查看内容的版本历史')
    add_book_args(p_history)
    p_history.add_argument('path', help='文件路径')
    p_history.set_defaults(func=cmd_history)

    # restore
    p_restore = subparsers.add_parser('restore', help='将内容恢复到指定提交')
    add_book_args(p_restore)
    p_restore.add_argument('path', help='文件路径')
    p_restore.add_argument('commit', help='提交 ID')
    p_restore.add_argument('--dry-run', action='store_true', help='预览模式（不保存）')
    p_restore.set_defaults(func=cmd_restore)

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.log_level:
        config = LogConfig.from_settings()
        config.level = args.log_level.upper()
        configure_logging(config)
    else:
        configure_logging()

    try:
        args.func(args)
    except ApplicationError as e:
        print(f"错误: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
