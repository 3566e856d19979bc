"""NoteStore SQL issued per upsert, against a recording cursor."""

from contextlib import contextmanager

import pytest

from domains.book_hub.core.models import NoteInput
from domains.book_hub.core.store import NoteStore

from fakes import USER_ID

BOOK_ID = "book-1"


class RecordingCursor:
    """Records statements; answers RETURNING clauses for notes and tags."""

    def __init__(self):
        self.statements: list[tuple[str, tuple]] = []
        self._row = None

    def execute(self, sql, params=()):
        sql = " ".join(sql.split())
        self.statements.append((sql, tuple(params)))
        if sql.startswith("INSERT INTO notes"):
            _, user_id, book_id, path, title, body, scope = params
            self._row = {
                "id": "note-1", "user_id": user_id, "book_id": book_id, "path": path,
                "title": title, "body": body, "scope": scope,
                "created_at": None, "updated_at": None,
            }
        elif sql.startswith("INSERT INTO tags"):
            self._row = {"id": f"tag-{params[2]}"}
        else:
            self._row = None

    def fetchone(self):
        return self._row

    def inserts(self, table):
        return [params for sql, params in self.statements if sql.startswith(f"INSERT INTO {table} ")]


@pytest.fixture
def cursor():
    return RecordingCursor()


@pytest.fixture
def store(cursor):
    store = NoteStore(database_url="postgresql://unused/db")

    @contextmanager
    def recording_cursor():
        yield cursor

    store._cursor = recording_cursor
    return store


def test_tag_rows_are_locked_in_name_order(store, cursor):
    note = store.create_or_update(NoteInput(
        user_id=USER_ID, book_id=BOOK_ID, path="a.md", title="A", body="",
        tags=("zeta", "alpha", "mid"),
    ))

    assert [params[2] for params in cursor.inserts("tags")] == ["alpha", "mid", "zeta"]
    assert cursor.inserts("note_tags") == [
        ("note-1", "tag-zeta", 0),
        ("note-1", "tag-alpha", 1),
        ("note-1", "tag-mid", 2),
    ]
    assert note.tags == ("zeta", "alpha", "mid")


def test_notes_with_reversed_tags_take_locks_in_same_order(store, cursor):
    store.create_or_update(NoteInput(user_id=USER_ID, book_id=BOOK_ID, path="a.md", title="A", body="", tags=("x", "y")))
    first = [params[2] for params in cursor.inserts("tags")]
    cursor.statements.clear()

    store.create_or_update(NoteInput(user_id=USER_ID, book_id=BOOK_ID, path="b.md", title="B", body="", tags=("y", "x")))
    second = [params[2] for params in cursor.inserts("tags")]

    assert first == second == ["x", "y"]
    assert [params[2] for params in cursor.inserts("note_tags")] == [0, 1]
    assert [params[1] for params in cursor.inserts("note_tags")] == ["tag-y", "tag-x"]


def test_note_without_tags_only_clears_links(store, cursor):
    store.create_or_update(NoteInput(user_id=USER_ID, book_id=BOOK_ID, path="a.md", title="A", body=""))

    assert cursor.inserts("tags") == []
    assert cursor.inserts("note_tags") == []
    assert any(sql.startswith("DELETE FROM note_tags") for sql, _ in cursor.statements)
