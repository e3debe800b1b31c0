import pytest

from taskboard.api.db import SQLiteRepository
from taskboard.api.models import Priority
from taskboard.api.repositories import InMemoryRepository, ListQuery
from taskboard.api.schemas import NoteCreate, TodoCreate, TodoUpdate
from taskboard.api.services import MentionSynchronizer, detail_todo, seed_demo_data


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "sqlite":
        return SQLiteRepository(str(tmp_path / "nested" / "taskboard.db"))
    return InMemoryRepository()


@pytest.fixture
def owner(store):
    return store.create_user(name="Alice Smith", username="alice", email="alice@example.com", password_hash="h")


@pytest.fixture
def other(store):
    return store.create_user(name="Bob Jones", username="bob", email="bob@example.com", password_hash="h")


def titles(items):
    return [t["title"] for t in items]


class TestUsers:
    def test_lookup_by_login(self, store, owner):
        assert store.get_user_by_login("ALICE@example.com")["id"] == owner["id"]
        assert store.get_user_by_login("Alice")["id"] == owner["id"]
        assert store.get_user_by_login("nobody") is None
        assert store.get_user("missing") is None

    def test_find_users_by_names(self, store, owner, other):
        found = store.find_users_by_names(["BOB", "alice smith", "ghost"])
        assert [u["id"] for u in found] == [owner["id"], other["id"]]
        assert store.find_users_by_names([]) == []


class TestTodos:
    def test_create_get_update(self, store, owner):
        created = store.create_todo(owner["id"], TodoCreate(title="Write", description="draft", tags=["Work", "Ideas"]))
        assert created["priority"] == Priority.MEDIUM
        assert [t["name"] for t in store.get_tags(created["tag_ids"])] == ["Work", "Ideas"]

        updated = store.update_todo(created["id"], TodoUpdate(priority=Priority.HIGH, tags=["Ideas"]))
        assert updated["priority"] == Priority.HIGH
        assert updated["description"] == "draft"
        assert [t["name"] for t in store.get_tags(updated["tag_ids"])] == ["Ideas"]
        assert updated["updated_at"] >= created["updated_at"]

        assert store.update_todo("missing", TodoUpdate(title="x")) is None

    def test_tags_find_or_create(self, store, owner):
        store.create_todo(owner["id"], TodoCreate(title="a", tags=["Work"]))
        store.create_todo(owner["id"], TodoCreate(title="b", tags=["Work", "Home"]))
        assert [t["name"] for t in store.list_tags()] == ["Home", "Work"]

    def test_delete_cascades(self, store, owner, other):
        todo = store.create_todo(owner["id"], TodoCreate(title="gone"))
        store.create_note(other["id"], NoteCreate(todo_id=todo["id"], content="note"))
        store.replace_mentions(todo["id"], [other["id"]])

        assert store.delete_todo(todo["id"]) is True
        assert store.get_todo(todo["id"]) is None
        assert store.list_notes(todo["id"]) == []
        assert store.list_mentions(todo["id"]) == []
        assert store.delete_todo(todo["id"]) is False


class TestListing:
    @pytest.fixture
    def seeded(self, store, owner, other):
        store.create_todo(owner["id"], TodoCreate(title="beta", priority=Priority.LOW, tags=["Work"]))
        store.create_todo(owner["id"], TodoCreate(title="alpha", description="100% done", priority=Priority.HIGH))
        store.create_todo(owner["id"], TodoCreate(title="gamma", priority=Priority.MEDIUM, tags=["Home"]))
        store.create_todo(other["id"], TodoCreate(title="delta", tags=["Work"]))

    def test_owner_filter_and_default_sort(self, store, owner, seeded):
        items, total = store.list_todos(ListQuery(owner_id=owner["id"]))
        assert total == 3
        assert titles(items) == ["gamma", "alpha", "beta"]

    def test_pagination(self, store, owner, seeded):
        items, total = store.list_todos(ListQuery(owner_id=owner["id"], page=2, limit=2))
        assert total == 3
        assert titles(items) == ["beta"]

    def test_no_limit_returns_everything(self, store, owner, seeded):
        items, total = store.list_todos(ListQuery(owner_id=owner["id"], page=3, limit=None))
        assert total == 3
        assert titles(items) == ["gamma", "alpha", "beta"]

    def test_priority_sort(self, store, owner, seeded):
        items, _ = store.list_todos(ListQuery(owner_id=owner["id"], sort_by="priority", sort_order="asc"))
        assert titles(items) == ["alpha", "gamma", "beta"]
        items, _ = store.list_todos(ListQuery(owner_id=owner["id"], sort_by="priority", sort_order="desc"))
        assert titles(items) == ["beta", "gamma", "alpha"]

    def test_title_sort(self, store, owner, seeded):
        items, _ = store.list_todos(ListQuery(owner_id=owner["id"], sort_by="title", sort_order="asc"))
        assert titles(items) == ["alpha", "beta", "gamma"]

    def test_tag_and_priority_filters(self, store, seeded):
        items, total = store.list_todos(ListQuery(tag="Work", limit=10))
        assert total == 2
        assert sorted(titles(items)) == ["beta", "delta"]
        items, _ = store.list_todos(ListQuery(priority=Priority.HIGH))
        assert titles(items) == ["alpha"]

    def test_search(self, store, seeded):
        assert titles(store.list_todos(ListQuery(search="ALPHA"))[0]) == ["alpha"]
        assert titles(store.list_todos(ListQuery(search="hom"))[0]) == ["gamma"]
        # LIKE wildcards are matched literally
        assert titles(store.list_todos(ListQuery(search="0%"))[0]) == ["alpha"]
        assert store.list_todos(ListQuery(search="_eta"))[1] == 0

    def test_mentioned_user_filter(self, store, owner, other, seeded):
        items, _ = store.list_todos(ListQuery(owner_id=owner["id"]))
        MentionSynchronizer(store).sync(items[0]["id"], "cc @bob")
        found, total = store.list_todos(ListQuery(mentioned_user="bob@example.com"))
        assert total == 1
        assert found[0]["id"] == items[0]["id"]


class TestMentionsAndNotes:
    def test_sync_replaces_whole_set(self, store, owner, other):
        todo = store.create_todo(owner["id"], TodoCreate(title="t"))
        sync = MentionSynchronizer(store)

        assert [u["id"] for u in sync.sync(todo["id"], "@bob @alice @BOB")] == [owner["id"], other["id"]]
        assert {m["user_id"] for m in store.list_mentions(todo["id"])} == {owner["id"], other["id"]}

        sync.sync(todo["id"], "")
        assert store.list_mentions(todo["id"]) == []

    def test_failed_lookup_keeps_previous_mentions(self, store, owner, other, monkeypatch):
        todo = store.create_todo(owner["id"], TodoCreate(title="t"))
        sync = MentionSynchronizer(store)
        sync.sync(todo["id"], "@bob")

        def unavailable(names):
            raise RuntimeError("directory unavailable")

        monkeypatch.setattr(store, "find_users_by_names", unavailable)
        with pytest.raises(RuntimeError):
            sync.sync(todo["id"], "@alice")
        assert [m["user_id"] for m in store.list_mentions(todo["id"])] == [other["id"]]

    def test_notes_newest_first(self, store, owner):
        todo = store.create_todo(owner["id"], TodoCreate(title="t"))
        for content in ("one", "two", "three"):
            store.create_note(owner["id"], NoteCreate(todo_id=todo["id"], content=content))
        assert [n["content"] for n in store.list_notes(todo["id"])] == ["three", "two", "one"]
        assert store.create_note(owner["id"], NoteCreate(todo_id="missing", content="x")) is None

    def test_detail_todo(self, store, owner, other):
        todo = store.create_todo(owner["id"], TodoCreate(title="t", tags=["Work"]))
        store.create_note(other["id"], NoteCreate(todo_id=todo["id"], content="hi"))
        MentionSynchronizer(store).sync(todo["id"], "@bob")

        detailed = detail_todo(store, todo)
        assert [t["name"] for t in detailed["tags"]] == ["Work"]
        assert detailed["notes"][0]["user"]["username"] == "bob"
        assert "password_hash" not in detailed["notes"][0]["user"]
        assert detailed["mentions"][0]["user"]["id"] == other["id"]


def test_seed_demo_data_is_idempotent(store):
    seed_demo_data(store, "h")
    seed_demo_data(store, "h")
    assert len(store.list_users()) == 5
    assert len(store.list_tags()) == 6
