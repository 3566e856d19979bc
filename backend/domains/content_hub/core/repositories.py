"""
内容存储接口

版本服务只依赖此接口，具体实现见 store.py（PostgreSQL）。
"""

from abc import ABC, abstractmethod
from typing import Optional

from .models import Content


class ContentRepository(ABC):
    """内容仓库接口"""

    @abstractmethod
    def get(self, content_id: str) -> Optional[Content]:
        """获取内容（包含完整版本链）"""

    @abstractmethod
    def save(self, content: Content) -> Content:
        """保存内容；版本链只追加新版本"""

    @abstractmethod
    def find_by_path(self, book_id: str, path: str) -> Optional[Content]:
        """按 (book_id, path) 获取内容（包含完整版本链）"""
