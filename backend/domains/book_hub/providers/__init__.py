"""
远端内容提供方
"""

from .github import GitHubContentProvider

__all__ = ['GitHubContentProvider']
