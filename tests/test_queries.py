import pytest

from taskboard.api.models import Priority
from taskboard.client.cache import CacheStore
from taskboard.client.queries import USERS_KEY, ListQueryEngine, TodoListParams, notes_key
from taskboard.errors import ValidationError


class CountingRemote:
    def __init__(self, total=23):
        self.total = total
        self.list_calls = []
        self.user_calls = 0
        self.notes = {}

    async def fetch_list(self, params):
        self.list_calls.append(params)
        start = (params.page - 1) * params.limit
        count = max(0, min(params.limit, self.total - start))
        return [{"id": f"t{start + i}"} for i in range(count)], self.total

    async def fetch_users(self):
        self.user_calls += 1
        return [{"id": "u1", "username": "alice"}]

    async def fetch_notes(self, todo_id):
        return list(self.notes.get(todo_id, []))

    async def fetch_todo(self, todo_id):
        return {"id": todo_id}

    async def submit(self, kind, payload):
        raise AssertionError("queries never mutate")


class TestTodoListParams:
    def test_equal_params_share_a_key(self):
        assert TodoListParams(tag="Work", priority="HIGH").cache_key() == TodoListParams(
            priority=Priority.HIGH, tag="Work"
        ).cache_key()
        assert TodoListParams(page=2).cache_key() != TodoListParams(page=1).cache_key()

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"page": 0},
            {"limit": 0},
            {"sort_by": "due_date"},
            {"sort_order": "up"},
            {"priority": "URGENT"},
        ],
    )
    def test_rejects_bad_values(self, kwargs):
        with pytest.raises(ValidationError):
            TodoListParams(**kwargs)

    def test_to_query_drops_unset_filters(self):
        query = TodoListParams(owner_id="u2", priority="LOW", search="milk").to_query()
        assert query == {
            "page": 1,
            "limit": 10,
            "sort_by": "created_at",
            "sort_order": "desc",
            "user_id": "u2",
            "priority": "LOW",
            "search": "milk",
        }


@pytest.mark.asyncio
class TestListQueryEngine:
    async def test_pagination_metadata(self):
        engine = ListQueryEngine(CacheStore(), CountingRemote(total=23))
        result = await engine.todos(TodoListParams(page=3, limit=10))
        assert len(result["items"]) == 3
        assert result["pagination"] == {"total": 23, "page": 3, "limit": 10, "totalPages": 3}

    async def test_fresh_entries_are_served_from_cache(self):
        remote = CountingRemote()
        engine = ListQueryEngine(CacheStore(), remote)
        params = TodoListParams()
        first = await engine.todos(params)
        second = await engine.todos(TodoListParams())
        assert first == second
        assert len(remote.list_calls) == 1

    async def test_invalidated_entries_are_refetched(self):
        store = CacheStore()
        remote = CountingRemote()
        engine = ListQueryEngine(store, remote)
        params = TodoListParams()
        await engine.todos(params)

        store.invalidate(params.cache_key())
        await engine.todos(params)
        assert len(remote.list_calls) == 2

    async def test_refetch_stale_refreshes_active_keys_only(self):
        store = CacheStore()
        remote = CountingRemote()
        engine = ListQueryEngine(store, remote)
        await engine.todos(TodoListParams())
        await engine.users()

        store.invalidate_kind("todos")
        store.invalidate(USERS_KEY)
        engine.release(USERS_KEY)

        refreshed = await engine.refetch_stale()
        assert refreshed == [TodoListParams().cache_key()]
        assert engine.active_keys == [TodoListParams().cache_key()]
        assert len(remote.list_calls) == 2
        assert remote.user_calls == 1
        assert not store.is_stale(TodoListParams().cache_key())
        assert store.is_stale(USERS_KEY)

    async def test_refetch_after_eviction(self):
        store = CacheStore()
        remote = CountingRemote()
        engine = ListQueryEngine(store, remote)
        remote.notes["t1"] = [{"id": "n1"}]
        await engine.notes("t1")

        store.invalidate(notes_key("t1"))
        store.evict(notes_key("t1"))
        remote.notes["t1"] = [{"id": "n2"}, {"id": "n1"}]

        assert await engine.refetch_stale() == [notes_key("t1")]
        assert store.read(notes_key("t1")) == [{"id": "n2"}, {"id": "n1"}]
