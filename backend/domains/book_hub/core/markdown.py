"""
Markdown 解析

将一篇 Markdown 文档（YAML Front Matter + 正文）解析为规范化的笔记记录：
标题、正文、公开范围、标签。

Front Matter 格式：
    ---
    title: 标题
    scope: private | unlisted | public
    tags: [a, b]        # 也可以写成 "a, b"
    ---
    正文...

解析永不抛出异常：Front Matter 格式错误时退回默认值
（scope=private, tags=(), title=""），保证单个文件不会中断整次同步。
"""

import logging
import re
from typing import Any

import yaml

from .models import IngestedNote, NoteScope

logger = logging.getLogger(__name__)

MAX_TAG_LENGTH = 30

FRONT_MATTER_PATTERN = re.compile(
    r'^---[ \t]*\r?\n(?P<fm>.*?)^---[ \t]*\r?(?:\n|\Z)',
    re.MULTILINE | re.DOTALL,
)

# 只匹配一级 ATX 标题，闭合的 # 需要前置空白
HEADING_PATTERN = re.compile(r'^#[ \t]+(?P<title>.*?)(?:[ \t]+#+)?[ \t]*$', re.MULTILINE)

# 行内标签：排除 "# 标题"、"##"、URL 片段和 HTML 实体
INLINE_TAG_PATTERN = re.compile(r'(?<![\w#/&])#(\w[\w/-]*)')

FENCED_CODE_PATTERN = re.compile(r'^(```|~~~).*?^\1[ \t]*$', re.MULTILINE | re.DOTALL)


def split_front_matter(raw: str) -> tuple[dict[str, Any], str]:
    """
    拆分 Front Matter 和正文

    没有 Front Matter、缺少结束分隔符或 YAML 无法解析时返回 ({}, 原文)。
    """
    text = raw.lstrip('\ufeff')
    match = FRONT_MATTER_PATTERN.match(text)
    if not match:
        return {}, text

    body = text[match.end():]
    try:
        data = yaml.safe_load(match.group('fm'))
    except yaml.YAMLError as e:
        logger.debug(f"front_matter_invalid: {e}")
        return {}, body

    if not isinstance(data, dict):
        return {}, body
    return data, body


def _front_matter_tags(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(',')
    elif isinstance(value, (list, tuple, set)):
        items = list(value)
    else:
        items = [value]
    return [str(item).strip().lstrip('#') for item in items if item is not None]


def _inline_tags(body: str) -> list[str]:
    return INLINE_TAG_PATTERN.findall(FENCED_CODE_PATTERN.sub('', body))


def _normalize_tags(tags: list[str]) -> tuple[str, ...]:
    """去重（区分大小写，保持顺序），丢弃空标签和超长标签"""
    result = []
    seen = set()
    for tag in tags:
        if not tag or len(tag) > MAX_TAG_LENGTH or tag in seen:
            continue
        seen.add(tag)
        result.append(tag)
    return tuple(result)


def _extract_title(front_matter: dict[str, Any], body: str) -> str:
    title = front_matter.get('title')
    if isinstance(title, (str, int, float)) and str(title).strip():
        return str(title).strip()

    match = HEADING_PATTERN.search(FENCED_CODE_PATTERN.sub('', body))
    if match:
        return match.group('title').strip()
    return ""


def parse_markdown(raw: str) -> IngestedNote:
    """
    解析 Markdown 文档

    标题优先取 Front Matter 的 title，其次取正文第一个一级标题，都没有则为空。
    标签 = Front Matter tags + 正文中的 #tag（Front Matter 在前）。

    Args:
        raw: 原始文本

    Returns:
        IngestedNote
    """
    if not isinstance(raw, str):
        return IngestedNote()

    front_matter, body = split_front_matter(raw)
    tags = _front_matter_tags(front_matter.get('tags')) + _inline_tags(body)

    return IngestedNote(
        title=_extract_title(front_matter, body),
        body=body,
        scope=NoteScope.parse(front_matter.get('scope')),
        tags=_normalize_tags(tags),
    )


class MarkdownIngestor:
    """Markdown 解析器（供同步流程注入使用）"""

    def parse(self, raw: str) -> IngestedNote:
        return parse_markdown(raw)
