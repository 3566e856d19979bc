"""End-to-end sync passes against in-memory repositories."""

import asyncio

import pytest

from domains.book_hub.core.models import NoteScope, SyncStatus
from domains.book_hub.services.sync_service import PushCommit, collapse_commits, last_commit_ids
from domains.content_hub.services.content_service import ContentService
from domains.core.exceptions import (
    BookNotFoundError,
    BusinessError,
    ContentProviderError,
    CredentialNotFoundError,
    ListingFailedError,
    SyncError,
    SyncFailureReason,
)
from domains.platform_core.settings import RemoteDeletionPolicy

from fakes import (
    OWNER,
    REPO,
    USER_ID,
    FailingTagRepository,
    FakeContentProvider,
    InMemoryBookRepository,
    InMemoryContentRepository,
    InMemoryCredentialRepository,
    InMemoryNoteRepository,
    SlowNoteRepository,
)


def paths_of(note_repo, book):
    return {note.path for note in note_repo.list_by_book(book.id)}


async def test_sync_returns_count_of_all_paths(make_service, note_repo, book_repo, book):
    files = {f"notes/n{i}.md": f"# Note {i}\nbody" for i in range(12)}
    service = make_service(FakeContentProvider(files))

    count = await service.sync(USER_ID, OWNER, REPO)

    assert count == len(files)
    assert paths_of(note_repo, book) == set(files)
    stamped = book_repo.find_by_id(book.id)
    assert stamped.sync_status == SyncStatus.SYNCED
    assert stamped.last_synced_at is not None


async def test_failed_fetch_is_skipped(make_service, note_repo, book):
    provider = FakeContentProvider({"n1.md": "one", "n2.md": "two"}, failing={"n2.md"})
    service = make_service(provider)

    count = await service.sync(USER_ID, OWNER, REPO)

    assert count == 1
    assert paths_of(note_repo, book) == {"n1.md"}
    assert sorted(provider.fetched) == ["n1.md", "n2.md"]


async def test_failed_subset_does_not_create_notes(make_service, note_repo, book):
    files = {f"p{i}.md": f"body {i}" for i in range(10)}
    failing = {"p2.md", "p5.md", "p7.md"}
    service = make_service(FakeContentProvider(files, failing=failing))

    count = await service.sync(USER_ID, OWNER, REPO)

    assert count == len(files) - len(failing)
    assert paths_of(note_repo, book) == set(files) - failing


async def test_failed_fetch_keeps_existing_note(make_service, note_repo, book):
    await make_service(FakeContentProvider({"n1.md": "old", "n2.md": "old"})).sync(USER_ID, OWNER, REPO)
    before = note_repo.find_by_book_and_path(book.id, "n2.md")

    provider = FakeContentProvider({"n1.md": "new", "n2.md": "new"}, failing={"n2.md"})
    count = await make_service(provider).sync(USER_ID, OWNER, REPO)

    assert count == 1
    assert note_repo.find_by_book_and_path(book.id, "n1.md").body == "new"
    assert note_repo.find_by_book_and_path(book.id, "n2.md") == before


async def test_upsert_failure_is_skipped(db, make_service, book):
    failing_repo = InMemoryNoteRepository(db, fail_paths={"bad.md"})
    service = make_service(
        FakeContentProvider({"good.md": "ok", "bad.md": "ok"}),
        note_repository=failing_repo,
    )

    assert await service.sync(USER_ID, OWNER, REPO) == 1
    assert paths_of(failing_repo, book) == {"good.md"}


async def test_note_fields_and_fallback_title(make_service, note_repo, book):
    files = {
        "guides/setup.md": "---\nscope: public\ntags: [howto]\n---\nno heading #ops",
        "titled.md": "# Proper Title\ntext",
    }
    await make_service(FakeContentProvider(files)).sync(USER_ID, OWNER, REPO)

    setup = note_repo.find_by_book_and_path(book.id, "guides/setup.md")
    assert setup.title == "setup"
    assert setup.scope == NoteScope.PUBLIC
    assert setup.tags == ("howto", "ops")
    assert setup.user_id == USER_ID
    assert note_repo.find_by_book_and_path(book.id, "titled.md").title == "Proper Title"


async def test_resync_updates_and_bumps_updated_at(make_service, note_repo, book):
    await make_service(FakeContentProvider({"a.md": "v1"})).sync(USER_ID, OWNER, REPO)
    first = note_repo.find_by_book_and_path(book.id, "a.md")

    await make_service(FakeContentProvider({"a.md": "v1"})).sync(USER_ID, OWNER, REPO)
    second = note_repo.find_by_book_and_path(book.id, "a.md")

    assert second.id == first.id
    assert second.updated_at > first.updated_at


async def test_missing_credential_aborts(make_service, book_repo, book):
    service = make_service(
        FakeContentProvider({"a.md": "x"}),
        credential_repository=InMemoryCredentialRepository(),
    )

    with pytest.raises(SyncError) as exc_info:
        await service.sync(USER_ID, OWNER, REPO)

    assert exc_info.value.reason == SyncFailureReason.CREDENTIAL_NOT_FOUND
    assert isinstance(exc_info.value.cause, CredentialNotFoundError)
    assert book_repo.find_by_id(book.id).sync_status == SyncStatus.NEVER_SYNCED


async def test_missing_book_aborts(make_service, note_repo):
    provider = FakeContentProvider({"a.md": "x"})
    service = make_service(provider, book_repository=InMemoryBookRepository())

    with pytest.raises(SyncError) as exc_info:
        await service.sync(USER_ID, OWNER, REPO)

    assert exc_info.value.reason == SyncFailureReason.BOOK_NOT_FOUND
    assert isinstance(exc_info.value.cause, BookNotFoundError)
    assert exc_info.value.http_status_code == 404
    assert provider.fetched == []


async def test_listing_failure_aborts_without_touching_status(make_service, note_repo, book_repo, book):
    provider = FakeContentProvider(
        {"a.md": "x"},
        listing_error=ContentProviderError("HTTP 502: bad gateway", status=502),
    )
    service = make_service(provider)

    with pytest.raises(SyncError) as exc_info:
        await service.sync(USER_ID, OWNER, REPO)

    assert exc_info.value.reason == SyncFailureReason.LISTING_FAILED
    assert isinstance(exc_info.value.cause, ListingFailedError)
    assert book_repo.update_calls == 0
    assert book_repo.find_by_id(book.id).sync_status == SyncStatus.NEVER_SYNCED
    assert note_repo.list_by_book(book.id) == []


async def test_concurrency_is_bounded(make_service):
    files = {f"f{i}.md": "x" for i in range(20)}
    provider = FakeContentProvider(files)
    service = make_service(provider, concurrency=3)

    assert await service.sync(USER_ID, OWNER, REPO) == 20
    assert provider.max_in_flight <= 3


async def test_cancellation_returns_count_so_far(make_service, note_repo, book):
    gate = asyncio.Event()
    provider = FakeContentProvider({"a.md": "x", "b.md": "y"}, gate=gate)
    cancel = asyncio.Event()
    service = make_service(provider)

    task = asyncio.create_task(service.sync(USER_ID, OWNER, REPO, cancel_event=cancel))
    while provider.in_flight < 2:
        await asyncio.sleep(0)
    cancel.set()
    count = await asyncio.wait_for(task, timeout=5)

    assert count == 0
    assert note_repo.list_by_book(book.id) == []


async def test_cancellation_waits_for_upsert_in_progress(db, make_service, tag_repo, book):
    slow_repo = SlowNoteRepository(db, delay=0.3)
    provider = FakeContentProvider({"a.md": "#keep\nbody", "b.md": "#other"})
    cancel = asyncio.Event()
    service = make_service(provider, note_repository=slow_repo, concurrency=1)

    task = asyncio.create_task(service.sync(USER_ID, OWNER, REPO, cancel_event=cancel))
    assert await asyncio.to_thread(slow_repo.entered.wait, 5)
    cancel.set()
    count = await asyncio.wait_for(task, timeout=5)

    assert count == 1
    assert paths_of(slow_repo, book) == {"a.md"}
    assert {tag.name for tag in tag_repo.list_by_book(book.id)} == {"keep"}

    await asyncio.sleep(0.5)
    assert paths_of(slow_repo, book) == {"a.md"}
    assert slow_repo.upsert_calls == 1


async def test_cancelled_pass_does_not_stamp_status(make_service, book_repo, book):
    cancel = asyncio.Event()
    cancel.set()
    service = make_service(FakeContentProvider({"a.md": "x"}))

    assert await service.sync(USER_ID, OWNER, REPO, cancel_event=cancel) == 0
    assert book_repo.find_by_id(book.id).sync_status == SyncStatus.NEVER_SYNCED


async def test_tag_gc_failure_does_not_change_count(db, make_service, book_repo, book):
    service = make_service(
        FakeContentProvider({"a.md": "#x", "b.md": "#y"}),
        tag_repository=FailingTagRepository(db),
    )

    assert await service.sync(USER_ID, OWNER, REPO) == 2
    assert book_repo.find_by_id(book.id).sync_status == SyncStatus.SYNCED


async def test_status_update_failure_does_not_change_count(make_service, book):
    books = InMemoryBookRepository([book], fail_update=True)
    service = make_service(FakeContentProvider({"a.md": "x"}), book_repository=books)

    assert await service.sync(USER_ID, OWNER, REPO) == 1
    assert books.update_calls == 1


async def test_unused_tags_are_collected_after_sync(make_service, tag_repo, book):
    await make_service(FakeContentProvider({"a.md": "#keep #drop"})).sync(USER_ID, OWNER, REPO)
    assert {t.name for t in tag_repo.list_by_book(book.id)} == {"keep", "drop"}

    await make_service(FakeContentProvider({"a.md": "#keep"})).sync(USER_ID, OWNER, REPO)

    assert {t.name for t in tag_repo.list_by_book(book.id)} == {"keep"}


async def test_keep_policy_leaves_remotely_deleted_notes(make_service, note_repo, book):
    await make_service(FakeContentProvider({"a.md": "x", "gone.md": "y"})).sync(USER_ID, OWNER, REPO)

    await make_service(FakeContentProvider({"a.md": "x"})).sync(USER_ID, OWNER, REPO)

    assert paths_of(note_repo, book) == {"a.md", "gone.md"}


async def test_prune_policy_removes_remotely_deleted_notes(make_service, note_repo, tag_repo, book):
    await make_service(FakeContentProvider({"a.md": "x", "gone.md": "#orphan"})).sync(USER_ID, OWNER, REPO)

    service = make_service(FakeContentProvider({"a.md": "x"}), deletion_policy=RemoteDeletionPolicy.PRUNE)
    await service.sync(USER_ID, OWNER, REPO)

    assert paths_of(note_repo, book) == {"a.md"}
    assert tag_repo.list_by_book(book.id) == []


async def test_prune_keeps_listed_paths_whose_fetch_failed(make_service, note_repo, book):
    await make_service(FakeContentProvider({"a.md": "x", "b.md": "y"})).sync(USER_ID, OWNER, REPO)

    service = make_service(
        FakeContentProvider({"a.md": "x", "b.md": "y"}, failing={"b.md"}),
        deletion_policy=RemoteDeletionPolicy.PRUNE,
    )
    await service.sync(USER_ID, OWNER, REPO)

    assert paths_of(note_repo, book) == {"a.md", "b.md"}


async def test_prune_policy_from_settings(monkeypatch, make_service, note_repo, book):
    await make_service(FakeContentProvider({"a.md": "x", "gone.md": "y"})).sync(USER_ID, OWNER, REPO)
    monkeypatch.setenv("BOOK_SYNC_REMOTE_DELETION_POLICY", "prune")

    from domains.platform_core.settings import reload_settings
    reload_settings()
    await make_service(FakeContentProvider({"a.md": "x"})).sync(USER_ID, OWNER, REPO)

    assert paths_of(note_repo, book) == {"a.md"}


async def test_concurrent_syncs_of_same_book_are_serialized(make_service, note_repo, book):
    provider = FakeContentProvider({f"f{i}.md": "x" for i in range(5)})
    service = make_service(provider, concurrency=5)

    counts = await asyncio.gather(
        service.sync(USER_ID, OWNER, REPO),
        service.sync(USER_ID, OWNER, REPO),
    )

    assert counts == [5, 5]
    assert provider.max_in_flight <= 5
    assert service._locks == {}


async def test_book_locks_are_released_after_failed_sync(make_service):
    service = make_service(
        FakeContentProvider({}, listing_error=ContentProviderError("HTTP 500", status=500))
    )

    for _ in range(3):
        with pytest.raises(SyncError):
            await service.sync(USER_ID, OWNER, REPO)
    with pytest.raises(SyncError):
        await service.sync(USER_ID, "someone", "else")

    assert service._locks == {}


# ==================== content versions ====================

async def test_first_sync_creates_contents_without_versions(make_service, content_repo, book):
    files = {"a.md": "# Alpha\none #x", "docs/b.md": "two"}
    await make_service(FakeContentProvider(files)).sync(USER_ID, OWNER, REPO)

    alpha = content_repo.find_by_path(book.id, "a.md")
    assert alpha.title == "Alpha"
    assert alpha.metadata.tags == ("x",)
    assert alpha.versions == ()
    assert content_repo.find_by_path(book.id, "docs/b.md").title == "b"


async def test_changed_file_records_version_at_branch_head(make_service, content_repo, book):
    await make_service(FakeContentProvider({"a.md": "v1", "b.md": "same"}, revision="sha-1")).sync(USER_ID, OWNER, REPO)
    await make_service(FakeContentProvider({"a.md": "v2", "b.md": "same"}, revision="sha-2")).sync(USER_ID, OWNER, REPO)

    changed = content_repo.find_by_path(book.id, "a.md")
    assert [v.commit_id for v in changed.versions] == ["sha-2"]
    assert changed.versions[0].changes.body == "v2"
    assert content_repo.find_by_path(book.id, "b.md").versions == ()


async def test_unavailable_revision_skips_content_tracking(make_service, note_repo, content_repo, book):
    provider = FakeContentProvider({"a.md": "x"}, revision_error=ContentProviderError("HTTP 500", status=500))

    assert await make_service(provider).sync(USER_ID, OWNER, REPO) == 1
    assert paths_of(note_repo, book) == {"a.md"}
    assert content_repo.contents == {}


async def test_content_tracking_failure_does_not_change_count(make_service, book):
    class BrokenContentRepository(InMemoryContentRepository):
        def save(self, content):
            raise RuntimeError("contents table unavailable")

    service = make_service(
        FakeContentProvider({"a.md": "x", "b.md": "y"}),
        content_service=ContentService(repository=BrokenContentRepository()),
    )

    assert await service.sync(USER_ID, OWNER, REPO) == 2


# ==================== push ====================

def test_collapse_commits_last_change_wins():
    commits = [
        PushCommit(id="1", added=["a.md"], modified=["b.md"], removed=["c.md"]),
        PushCommit(id="2", modified=["c.md"], removed=["a.md", "image.png"]),
    ]

    modified, removed = collapse_commits(commits)

    assert sorted(modified) == ["b.md", "c.md"]
    assert removed == ["a.md"]


async def test_push_upserts_modified_and_deletes_removed(make_service, note_repo, book_repo, book):
    await make_service(FakeContentProvider({"old.md": "x", "keep.md": "y"})).sync(USER_ID, OWNER, REPO)

    provider = FakeContentProvider({"new.md": "# New", "keep.md": "y2", "broken.md": "z"}, failing={"broken.md"})
    commits = [PushCommit.from_dict({
        "id": "abc",
        "added": ["new.md"],
        "modified": ["keep.md", "broken.md"],
        "removed": ["old.md"],
    })]

    count = await make_service(provider).push(USER_ID, OWNER, REPO, commits)

    assert count == 2
    assert paths_of(note_repo, book) == {"new.md", "keep.md"}
    assert note_repo.find_by_book_and_path(book.id, "keep.md").body == "y2"
    assert book_repo.find_by_id(book.id).sync_status == SyncStatus.SYNCED


def test_last_commit_ids_track_latest_commit_per_path():
    commits = [
        PushCommit(id="c1", added=["a.md", "b.md"]),
        PushCommit(id="c2", modified=["a.md"]),
        PushCommit(id="", modified=["b.md"]),
    ]

    assert last_commit_ids(commits) == {"a.md": "c2", "b.md": "c1"}


async def test_push_records_content_versions_per_commit(make_service, content_repo, book):
    await make_service(FakeContentProvider({"a.md": "# A\nv1"}, revision="base")).sync(USER_ID, OWNER, REPO)

    commits = [
        PushCommit(id="c1", modified=["a.md"]),
        PushCommit(id="c2", modified=["a.md"]),
    ]
    await make_service(FakeContentProvider({"a.md": "# A\nv2"})).push(USER_ID, OWNER, REPO, commits)

    content = content_repo.find_by_path(book.id, "a.md")
    assert content.body == "# A\nv2"
    assert [v.commit_id for v in content.versions] == ["c2"]


async def test_push_for_unknown_book_raises(make_service):
    service = make_service(FakeContentProvider({}), book_repository=InMemoryBookRepository())

    with pytest.raises(SyncError) as exc_info:
        await service.push(USER_ID, OWNER, REPO, [PushCommit(modified=["a.md"])])

    assert exc_info.value.reason == SyncFailureReason.BOOK_NOT_FOUND


# ==================== add_book ====================

async def test_add_book_uses_readme_title_and_body(make_service):
    books = InMemoryBookRepository()
    provider = FakeContentProvider({"README.md": "# My Garden\nWelcome."})
    service = make_service(provider, book_repository=books)

    book = await service.add_book(USER_ID, OWNER, "garden")

    assert book.name == "My Garden"
    assert book.description == "# My Garden\nWelcome."
    assert book.sync_status == SyncStatus.NEVER_SYNCED
    assert books.find_by_owner_and_repo(OWNER, "garden") is book


async def test_add_book_falls_back_to_repo_name(make_service):
    service = make_service(
        FakeContentProvider({"README.md": "no heading"}),
        book_repository=InMemoryBookRepository(),
    )

    assert (await service.add_book(USER_ID, OWNER, "garden")).name == "garden"


async def test_add_book_requires_credential(make_service):
    service = make_service(
        FakeContentProvider({"README.md": "x"}),
        credential_repository=InMemoryCredentialRepository(),
    )

    with pytest.raises(CredentialNotFoundError):
        await service.add_book(USER_ID, OWNER, "garden")


async def test_add_book_rejects_duplicates(make_service):
    service = make_service(FakeContentProvider({"README.md": "x"}))

    with pytest.raises(BusinessError) as exc_info:
        await service.add_book(USER_ID, OWNER, REPO)

    assert exc_info.value.code == "BOOK_ALREADY_EXISTS"


async def test_add_book_propagates_readme_fetch_failure(make_service):
    service = make_service(FakeContentProvider({}), book_repository=InMemoryBookRepository())

    with pytest.raises(ContentProviderError):
        await service.add_book(USER_ID, OWNER, "garden")
