"""
GitHub 内容提供方

- list_paths: git trees API（recursive=1），只保留 .md 文件
- get_content: contents API，base64 解码
- get_revision: branches API，分支最新提交的 SHA

HTTP 错误、网络错误和响应格式错误统一转换为 ContentProviderError。
"""

import asyncio
import base64
import binascii
import logging
from typing import Any, Optional
from urllib.parse import quote

import aiohttp

from domains.core.exceptions import ContentProviderError
from domains.platform_core.settings import get_settings

from ..core.repositories import ContentProvider

logger = logging.getLogger(__name__)


class GitHubContentProvider(ContentProvider):
    """
    基于 aiohttp 的 GitHub 内容提供方

    session 可以由外部注入（测试 / 复用连接池）；
    未注入时在首次请求时创建，调用 close() 释放。
    """

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        api_url: Optional[str] = None,
        branch: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        settings = get_settings()
        self.api_url = (api_url or settings.github_api_url).rstrip('/')
        self.branch = branch or settings.github_branch
        self.timeout = aiohttp.ClientTimeout(total=timeout or settings.request_timeout)
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self):
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @staticmethod
    def _headers(access_token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    async def _get_json(self, url: str, access_token: str, path: Optional[str] = None, **params) -> Any:
        session = await self._get_session()
        try:
            async with session.get(
                url,
                headers=self._headers(access_token),
                params=params or None,
                timeout=self.timeout,
            ) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise ContentProviderError(
                        f"HTTP {response.status}: {error_text[:200]}",
                        status=response.status,
                        path=path,
                    )
                return await response.json(content_type=None)
        except ContentProviderError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise ContentProviderError(f"请求失败: {e}", path=path, cause=e) from e

    async def list_paths(self, access_token: str, owner: str, repo: str) -> list[str]:
        """列出分支上所有 Markdown 文件路径"""
        url = f"{self.api_url}/repos/{owner}/{repo}/git/trees/{quote(self.branch, safe='')}"
        data = await self._get_json(url, access_token, recursive="1")

        if not isinstance(data, dict) or not isinstance(data.get('tree'), list):
            raise ContentProviderError("响应格式错误: 缺少 tree")
        if data.get('truncated'):
            logger.warning(f"github_tree_truncated: {owner}/{repo}")

        return [
            item['path']
            for item in data['tree']
            if item.get('type') == 'blob' and str(item.get('path', '')).endswith('.md')
        ]

    async def get_content(self, access_token: str, owner: str, repo: str, path: str) -> str:
        """获取文件内容（UTF-8 文本）"""
        url = f"{self.api_url}/repos/{owner}/{repo}/contents/{quote(path)}"
        data = await self._get_json(url, access_token, path=path, ref=self.branch)

        if not isinstance(data, dict) or data.get('type') != 'file' or 'content' not in data:
            raise ContentProviderError("响应格式错误: 不是文件", path=path)
        # 超过 1MB 的文件返回 encoding=none 且 content 为空
        if data.get('encoding') != 'base64' or not data['content']:
            raise ContentProviderError(
                f"文件内容不可用: encoding={data.get('encoding')}", status=200, path=path
            )

        try:
            return base64.b64decode(data['content']).decode('utf-8')
        except (binascii.Error, UnicodeDecodeError) as e:
            raise ContentProviderError(f"内容解码失败: {e}", path=path, cause=e) from e

    async def get_revision(self, access_token: str, owner: str, repo: str) -> str:
        """分支最新提交的 SHA"""
        url = f"{self.api_url}/repos/{owner}/{repo}/branches/{quote(self.branch, safe='')}"
        data = await self._get_json(url, access_token)

        commit = data.get('commit') if isinstance(data, dict) else None
        sha = commit.get('sha') if isinstance(commit, dict) else None
        if not isinstance(sha, str) or not sha:
            raise ContentProviderError("响应格式错误: 缺少 commit.sha")
        return sha
