"""Settings, error taxonomy and logging setup."""

import logging

import pytest
import structlog
from pydantic import ValidationError as PydanticValidationError

from domains.core.exceptions import (
    ApplicationError,
    ContentProviderError,
    ErrorCategory,
    FetchFailedError,
    ListingFailedError,
    SyncError,
    SyncFailureReason,
    UpsertFailedError,
    VersionNotFoundError,
)
from domains.platform_core.logging import (
    LogConfig,
    LogFormat,
    bind_sync_context,
    clear_sync_context,
    configure_logging,
    get_logger,
)
from domains.platform_core.settings import (
    BookSyncSettings,
    RemoteDeletionPolicy,
    get_settings,
    reload_settings,
)


# ==================== settings ====================

def test_defaults():
    settings = BookSyncSettings(_env_file=None)

    assert settings.concurrency == 8
    assert settings.remote_deletion_policy == RemoteDeletionPolicy.KEEP
    assert settings.github_api_url == "https://api.github.com"
    assert settings.logging.level == "INFO"


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("BOOK_SYNC_CONCURRENCY", "3")
    monkeypatch.setenv("BOOK_SYNC_GITHUB_API_URL", "https://ghe.example/api/v3/")
    monkeypatch.setenv("BOOK_SYNC_LOG_LEVEL", "debug")

    settings = reload_settings()

    assert settings.concurrency == 3
    assert settings.github_api_url == "https://ghe.example/api/v3"
    assert settings.logging.level == "DEBUG"
    assert get_settings() is settings


def test_database_url_env_takes_precedence(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://other/db")

    assert BookSyncSettings(_env_file=None).resolved_database_url == "postgresql://other/db"


def test_invalid_concurrency_is_rejected():
    with pytest.raises(PydanticValidationError):
        BookSyncSettings(_env_file=None, concurrency=0)


# ==================== exceptions ====================

def test_sync_error_takes_category_from_cause():
    cause = ListingFailedError("octocat", "notes", cause=ContentProviderError("HTTP 502", status=502))
    error = SyncError(SyncFailureReason.LISTING_FAILED, "octocat", "notes", cause=cause)

    assert isinstance(error, ApplicationError)
    assert error.code == "SYNC_FAILED"
    assert error.category == ErrorCategory.EXTERNAL
    assert error.http_status_code == 502
    assert error.to_dict()["details"]["reason"] == "listing_failed"


def test_file_errors_carry_path_and_kind():
    error = FetchFailedError("a.md", "book-1", RuntimeError("timeout"))

    assert error.kind == "fetch"
    assert error.code == "FETCH_FAILED"
    assert error.details == {"path": "a.md", "book_id": "book-1"}
    assert UpsertFailedError("a.md", "book-1").code == "UPSERT_FAILED"


def test_version_not_found_is_404():
    error = VersionNotFoundError("content-1", "abc")

    assert error.http_status_code == 404
    assert error.code == "VERSION_NOT_FOUND"


# ==================== logging ====================

def test_configure_logging_installs_single_handler():
    configure_logging(LogConfig(level="DEBUG", format=LogFormat.JSON))
    configure_logging(LogConfig(level="WARNING"))

    root = logging.getLogger()
    assert len(root.handlers) == 1
    assert root.level == logging.WARNING
    assert isinstance(root.handlers[0].formatter, structlog.stdlib.ProcessorFormatter)


def test_sync_context_is_bound_and_cleared():
    bind_sync_context("user-1", "octocat", "notes")
    assert structlog.contextvars.get_contextvars() == {
        "user_id": "user-1", "owner": "octocat", "repo": "notes",
    }

    clear_sync_context()
    assert structlog.contextvars.get_contextvars() == {}


def test_get_logger_accepts_key_values():
    configure_logging(LogConfig(level="INFO"))

    get_logger(__name__).info("note_fetch_failed", path="a.md", book_id="b", error="boom")


# ==================== store singletons ====================

def test_store_singletons_are_lazy_and_resettable(monkeypatch):
    from domains.book_hub.core.store import NoteStore, get_note_store
    from domains.platform_core.base.store import reset_all_stores

    monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db.invalid:5432/books")

    store = get_note_store()

    assert isinstance(store, NoteStore)
    assert store.database_url == "postgresql://u:p@db.invalid:5432/books"
    assert get_note_store() is store

    reset_all_stores()
    assert get_note_store() is not store
