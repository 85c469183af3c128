import pytest

from rides.store import DocumentNotFound, InMemoryDocumentStore, StoreError, WriteConflict


@pytest.fixture
def store():
    s = InMemoryDocumentStore()
    s.create("rides", {"status": "requested", "n": 1}, "r1")
    return s


def test_reads_are_copies(store):
    doc = store.get("rides", "r1").data
    doc["status"] = "tampered"
    assert store.get("rides", "r1").data["status"] == "requested"


def test_conditional_mutate(store):
    store.mutate("rides", "r1", {"status": "assigned"}, expected={"status": "requested"})

    with pytest.raises(WriteConflict):
        store.mutate("rides", "r1", {"status": "assigned"}, expected={"status": "requested"})

    with pytest.raises(DocumentNotFound):
        store.mutate("rides", "missing", {"status": "assigned"})

    # 1. Both are StoreErrors for callers that only care about I/O
    assert issubclass(WriteConflict, StoreError) and issubclass(DocumentNotFound, StoreError)


def test_batch_is_all_or_nothing(store):
    batch = store.batch()
    batch.create("rides", {"status": "requested"}, "r2")
    batch.update("rides", "r1", {"n": 2}, expected={"status": "cancelled"})

    with pytest.raises(WriteConflict):
        batch.commit()

    assert store.get("rides", "r1").data["n"] == 1
    with pytest.raises(DocumentNotFound):
        store.get("rides", "r2")


def test_batch_commits_once(store):
    batch = store.batch()
    batch.update("rides", "r1", {"n": 2})
    batch.commit()

    with pytest.raises(StoreError):
        batch.commit()


def test_create_rejects_existing_id(store):
    with pytest.raises(WriteConflict):
        store.create("rides", {}, "r1")


def test_subscribe_delivers_initial_and_changed_snapshots(store):
    seen = []
    store.subscribe("rides", lambda doc: doc["status"] == "requested", lambda snap: seen.append([d.id for d in snap]))

    store.create("rides", {"status": "requested"}, "r2")
    # 1. A write outside the result set does not re-fire
    store.create("rides", {"status": "completed"}, "r3")
    store.mutate("rides", "r1", {"status": "assigned"})

    assert seen == [["r1"], ["r1", "r2"], ["r2"]]


def test_unsubscribe_stops_delivery(store):
    seen = []
    subscription = store.subscribe("rides", lambda doc: True, seen.append)
    subscription.unsubscribe()

    store.create("rides", {"status": "requested"}, "r2")

    assert len(seen) == 1


def test_transaction_defers_notifications_until_exit(store):
    seen = []
    store.subscribe("rides", lambda doc: True, lambda snap: seen.append(len(snap)))

    with store.transaction():
        store.create("rides", {"status": "requested"}, "r2")
        store.create("rides", {"status": "requested"}, "r3")
        assert seen == [1]

    assert seen == [1, 3]


def test_failing_callback_does_not_break_writes(store):
    def explode(snapshot):
        raise RuntimeError("listener bug")

    store.subscribe("rides", lambda doc: True, explode)
    store.mutate("rides", "r1", {"n": 5})

    assert store.get("rides", "r1").data["n"] == 5


def test_delete(store):
    store.delete("rides", "r1")
    assert store.query("rides") == []
    with pytest.raises(DocumentNotFound):
        store.delete("rides", "r1")
