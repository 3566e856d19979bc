"""
版本差异计算

比较两个内容状态，得到只包含差异字段的变更集。
既用于记录新版本（正向），也用于校验回放结果（反向）。
"""

from dataclasses import fields
from typing import Union

from ..core.models import Content, ContentChanges, ContentState, Metadata, MetadataPatch

StateLike = Union[Content, ContentState]


def _as_state(value: StateLike) -> ContentState:
    if isinstance(value, Content):
        return value.state
    return value


def diff_metadata(old: Metadata, new: Metadata) -> MetadataPatch:
    """逐字段比较元数据，只保留发生变化且新值存在的字段"""
    changed = {}
    for f in fields(new):
        new_value = getattr(new, f.name)
        if getattr(old, f.name) != new_value and new_value is not None:
            changed[f.name] = new_value
    return MetadataPatch(**changed)


class VersionDiffer:
    """版本差异计算器"""

    def diff(self, old: StateLike, new: StateLike) -> ContentChanges:
        """
        计算 old -> new 的变更集

        标题、正文按值比较，元数据按结构比较。
        两个状态相同时返回空变更集（调用方应视为"不记录版本"）。
        """
        old_state = _as_state(old)
        new_state = _as_state(new)

        metadata = None
        if old_state.metadata != new_state.metadata:
            patch = diff_metadata(old_state.metadata, new_state.metadata)
            if not patch.is_empty:
                metadata = patch

        return ContentChanges(
            title=new_state.title if old_state.title != new_state.title else None,
            body=new_state.body if old_state.body != new_state.body else None,
            metadata=metadata,
        )
