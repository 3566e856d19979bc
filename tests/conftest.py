import pytest

from domains.book_hub.core.models import Book, Credential
from domains.book_hub.services.sync_service import SyncService
from domains.content_hub.services.content_service import ContentService
from domains.platform_core.base.store import reset_all_stores
from domains.platform_core.settings import get_settings

from fakes import (
    OWNER,
    REPO,
    TOKEN,
    USER_ID,
    FakeContentProvider,
    InMemoryBookRepository,
    InMemoryContentRepository,
    InMemoryCredentialRepository,
    InMemoryDatabase,
    InMemoryNoteRepository,
    InMemoryTagRepository,
)


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch):
    for key in ("BOOK_SYNC_CONCURRENCY", "BOOK_SYNC_REMOTE_DELETION_POLICY", "DATABASE_URL"):
        monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
    reset_all_stores()


@pytest.fixture
def db():
    return InMemoryDatabase()


@pytest.fixture
def note_repo(db):
    return InMemoryNoteRepository(db)


@pytest.fixture
def tag_repo(db):
    return InMemoryTagRepository(db)


@pytest.fixture
def book():
    return Book(user_id=USER_ID, owner=OWNER, repo=REPO, name="Notes")


@pytest.fixture
def book_repo(book):
    return InMemoryBookRepository([book])


@pytest.fixture
def credential_repo():
    return InMemoryCredentialRepository([Credential(user_id=USER_ID, access_token=TOKEN)])


@pytest.fixture
def content_repo():
    return InMemoryContentRepository()


@pytest.fixture
def make_service(note_repo, tag_repo, book_repo, credential_repo, content_repo):
    """Build a SyncService over the in-memory repositories."""

    def factory(provider: FakeContentProvider, **overrides) -> SyncService:
        deps = dict(
            provider=provider,
            note_repository=note_repo,
            tag_repository=tag_repo,
            book_repository=book_repo,
            credential_repository=credential_repo,
            content_service=ContentService(repository=content_repo),
        )
        deps.update(overrides)
        return SyncService(**deps)

    return factory
