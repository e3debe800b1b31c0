import pytest

from taskboard.client.cache import NOTES, TODOS, CacheKey, CacheStore
from taskboard.errors import SnapshotMissingError

LIST = CacheKey.for_query(TODOS, {"page": 1, "limit": 10})
NOTES_T1 = CacheKey.for_entity(NOTES, "t1")


@pytest.fixture
def store():
    return CacheStore()


class TestCacheKey:
    def test_query_params_order_does_not_matter(self):
        assert CacheKey.for_query(TODOS, {"a": 1, "b": None}) == CacheKey.for_query(TODOS, {"b": None, "a": 1})

    def test_different_params_differ(self):
        assert CacheKey.for_query(TODOS, {"page": 1}) != CacheKey.for_query(TODOS, {"page": 2})


class TestReadWrite:
    def test_absent_reads_none(self, store):
        assert store.read(LIST) is None
        assert not store.contains(LIST)
        assert not store.is_stale(LIST)

    def test_values_are_copied(self, store):
        page = {"items": [{"id": "t1"}]}
        store.write(LIST, page)
        page["items"].append({"id": "t2"})
        assert store.read(LIST) == {"items": [{"id": "t1"}]}

        read = store.read(LIST)
        read["items"].clear()
        assert store.read(LIST) == {"items": [{"id": "t1"}]}

    def test_keys_by_kind(self, store):
        store.write(LIST, {"items": []})
        store.write(NOTES_T1, [])
        assert store.keys(TODOS) == [LIST]
        assert set(store.keys()) == {LIST, NOTES_T1}


class TestInvalidation:
    def test_invalidate_marks_stale_and_notifies(self, store):
        seen = []
        unsubscribe = store.subscribe(seen.append)
        store.write(LIST, {"items": []})
        store.invalidate(LIST)
        assert store.is_stale(LIST)
        assert seen == [LIST]

        # absent keys are not reported
        store.invalidate(NOTES_T1)
        assert seen == [LIST]

        unsubscribe()
        store.invalidate(LIST)
        assert seen == [LIST]

    def test_write_clears_stale(self, store):
        store.write(LIST, {"items": []})
        store.invalidate(LIST)
        store.write(LIST, {"items": [{"id": "t1"}]})
        assert not store.is_stale(LIST)


class TestSnapshots:
    def test_restore_value(self, store):
        store.write(LIST, {"items": [{"id": "t1"}]})
        token = store.snapshot(LIST)
        store.write(LIST, {"items": []})
        store.restore(LIST, token)
        assert store.read(LIST) == {"items": [{"id": "t1"}]}

    def test_restore_absence(self, store):
        token = store.snapshot(NOTES_T1)
        store.write(NOTES_T1, [{"id": "n1"}])
        store.restore(NOTES_T1, token)
        assert not store.contains(NOTES_T1)

    def test_restore_keeps_stale_flag(self, store):
        store.write(LIST, {"items": []})
        store.invalidate(LIST)
        token = store.snapshot(LIST)
        store.write(LIST, {"items": [{"id": "x"}]})
        store.restore(LIST, token)
        assert store.is_stale(LIST)

    def test_token_is_single_use(self, store):
        store.write(LIST, {"items": []})
        token = store.snapshot(LIST)
        store.restore(LIST, token)
        with pytest.raises(SnapshotMissingError):
            store.restore(LIST, token)

    def test_token_for_other_key(self, store):
        token = store.snapshot(LIST)
        with pytest.raises(SnapshotMissingError):
            store.restore(NOTES_T1, token)

    def test_discard_keeps_snapshot(self, store):
        store.write(LIST, {"items": [{"id": "t1"}]})
        token = store.snapshot(LIST)
        store.discard(LIST)
        assert store.has_snapshot(token)
        store.restore(LIST, token)
        assert store.read(LIST) == {"items": [{"id": "t1"}]}

    def test_evict_drops_snapshots(self, store):
        store.write(LIST, {"items": []})
        token = store.snapshot(LIST)
        store.evict(LIST)
        assert not store.has_snapshot(token)
        with pytest.raises(SnapshotMissingError):
            store.restore(LIST, token)

    def test_release(self, store):
        token = store.snapshot(LIST)
        store.release(token)
        assert not store.has_snapshot(token)

    def test_clear_drops_values_and_snapshots(self, store):
        store.write(LIST, {"items": []})
        token = store.snapshot(LIST)
        store.clear()
        assert len(store) == 0
        assert not store.has_snapshot(token)

    def test_snapshot_value_does_not_consume(self, store):
        store.write(LIST, {"items": [{"id": "t1"}]})
        token = store.snapshot(LIST)
        assert store.snapshot_value(token) == {"items": [{"id": "t1"}]}
        assert store.has_snapshot(token)
        assert store.snapshot_value(store.snapshot(NOTES_T1)) is None
        store.release(token)
        with pytest.raises(SnapshotMissingError):
            store.snapshot_value(token)
