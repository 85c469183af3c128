"""
Purpose: Document store contract + in-memory implementation with live queries.
What it does:
- DocumentStore: the abstract subscribe/get/query/create/mutate/delete contract
  every dispatch and lifecycle operation is written against.
- InMemoryDocumentStore: thread-safe reference implementation used by tests,
  scripts and embedding applications.
    - subscribe() delivers the full matching snapshot immediately, then again
      after every commit that changes the matching result set
    - mutate(..., expected=...) is a conditional write (WriteConflict on mismatch)
    - batch() commits several writes all-or-nothing
    - transaction() holds the store lock so read-check-write is atomic;
      notifications are deferred until the outermost transaction exits

Rule: Store knows documents (plain dicts), not domain models.
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

Document = Dict[str, Any]
Predicate = Callable[[Document], bool]


class StoreError(Exception):
    """Raised when a store read or write fails. Transient: callers may retry."""
    pass


class DocumentNotFound(StoreError):
    pass


class WriteConflict(StoreError):
    """Raised when a conditional write's expected fields no longer match."""
    pass


@dataclass(frozen=True)
class DocumentSnapshot:
    collection: str
    id: str
    data: Document


SnapshotCallback = Callable[[List[DocumentSnapshot]], None]


class Subscription(Protocol):
    def unsubscribe(self) -> None: ...


class WriteBatch(Protocol):
    def create(self, collection: str, data: Document, doc_id: Optional[str] = None) -> str: ...
    def update(self, collection: str, doc_id: str, patch: Document, expected: Optional[Document] = None) -> None: ...
    def delete(self, collection: str, doc_id: str) -> None: ...
    def commit(self) -> None: ...


class DocumentStore(Protocol):
    def subscribe(self, collection: str, predicate: Predicate, callback: SnapshotCallback) -> Subscription: ...
    def get(self, collection: str, doc_id: str) -> DocumentSnapshot: ...
    def query(self, collection: str, predicate: Optional[Predicate] = None) -> List[DocumentSnapshot]: ...
    def create(self, collection: str, data: Document, doc_id: Optional[str] = None) -> DocumentSnapshot: ...
    def mutate(self, collection: str, doc_id: str, patch: Document, expected: Optional[Document] = None) -> DocumentSnapshot: ...
    def delete(self, collection: str, doc_id: str) -> None: ...
    def batch(self) -> WriteBatch: ...
    def transaction(self) -> Any: ...


def _check_expected(collection: str, doc_id: str, current: Document, expected: Optional[Document]) -> None:
    if not expected:
        return
    for key, value in expected.items():
        if current.get(key) != value:
            raise WriteConflict(
                f"{collection}/{doc_id}: expected {key}={value!r}, found {current.get(key)!r}"
            )


@dataclass
class _LiveQuery:
    store: "InMemoryDocumentStore"
    collection: str
    predicate: Predicate
    callback: SnapshotCallback
    last_delivered: Optional[List[Tuple[str, Document]]] = None
    generation: int = 0
    active: bool = True

    def unsubscribe(self) -> None:
        self.store._remove_subscription(self)


@dataclass
class _PendingWrite:
    op: str
    collection: str
    doc_id: str
    data: Optional[Document] = None
    expected: Optional[Document] = None


@dataclass
class InMemoryWriteBatch:
    """
    Collects writes and applies them in one commit. Every precondition
    (existence, expected fields) is checked before the first write lands.
    """
    store: "InMemoryDocumentStore"
    _writes: List[_PendingWrite] = field(default_factory=list)
    _committed: bool = False

    def create(self, collection: str, data: Document, doc_id: Optional[str] = None) -> str:
        doc_id = doc_id or str(uuid.uuid4())
        self._writes.append(_PendingWrite("create", collection, doc_id, copy.deepcopy(data)))
        return doc_id

    def update(self, collection: str, doc_id: str, patch: Document, expected: Optional[Document] = None) -> None:
        self._writes.append(_PendingWrite("update", collection, doc_id, copy.deepcopy(patch), expected))

    def delete(self, collection: str, doc_id: str) -> None:
        self._writes.append(_PendingWrite("delete", collection, doc_id))

    def __len__(self) -> int:
        return len(self._writes)

    def commit(self) -> None:
        if self._committed:
            raise StoreError("Batch already committed")
        self.store._apply_batch(self._writes)
        self._committed = True


class InMemoryDocumentStore:
    """
    Dict-of-dicts document store. Every read returns a deep copy so callers
    never alias stored state.
    """

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, Document]] = {}
        self._subscriptions: List[_LiveQuery] = []
        self._lock = threading.RLock()
        self._transaction_depth = 0
        self._dirty_collections: set = set()

    # --- Reads ---

    def get(self, collection: str, doc_id: str) -> DocumentSnapshot:
        with self._lock:
            doc = self._collections.get(collection, {}).get(doc_id)
            if doc is None:
                raise DocumentNotFound(f"{collection}/{doc_id} not found")
            return DocumentSnapshot(collection, doc_id, copy.deepcopy(doc))

    def query(self, collection: str, predicate: Optional[Predicate] = None) -> List[DocumentSnapshot]:
        with self._lock:
            return [
                DocumentSnapshot(collection, doc_id, copy.deepcopy(doc))
                for doc_id, doc in self._collections.get(collection, {}).items()
                if predicate is None or predicate(doc)
            ]

    # --- Writes ---

    def create(self, collection: str, data: Document, doc_id: Optional[str] = None) -> DocumentSnapshot:
        batch = self.batch()
        doc_id = batch.create(collection, data, doc_id)
        batch.commit()
        return self.get(collection, doc_id)

    def mutate(self, collection: str, doc_id: str, patch: Document, expected: Optional[Document] = None) -> DocumentSnapshot:
        batch = self.batch()
        batch.update(collection, doc_id, patch, expected)
        batch.commit()
        return self.get(collection, doc_id)

    def delete(self, collection: str, doc_id: str) -> None:
        batch = self.batch()
        batch.delete(collection, doc_id)
        batch.commit()

    def batch(self) -> InMemoryWriteBatch:
        return InMemoryWriteBatch(self)

    @contextmanager
    def transaction(self) -> Iterator["InMemoryDocumentStore"]:
        outermost = False
        try:
            with self._lock:
                self._transaction_depth += 1
                try:
                    yield self
                finally:
                    self._transaction_depth -= 1
                    outermost = self._transaction_depth == 0
        finally:
            # Writes are not rolled back on error, so subscribers still hear about them.
            if outermost:
                self._notify()

    def _apply_batch(self, writes: List[_PendingWrite]) -> None:
        with self._lock:
            # Preconditions first, against the state as it will be when each write lands.
            staged: Dict[Tuple[str, str], Optional[Document]] = {}

            def current(collection: str, doc_id: str) -> Optional[Document]:
                if (collection, doc_id) in staged:
                    return staged[(collection, doc_id)]
                return self._collections.get(collection, {}).get(doc_id)

            for write in writes:
                existing = current(write.collection, write.doc_id)
                if write.op == "create":
                    if existing is not None:
                        raise WriteConflict(f"{write.collection}/{write.doc_id} already exists")
                    staged[(write.collection, write.doc_id)] = copy.deepcopy(write.data)
                elif write.op == "update":
                    if existing is None:
                        raise DocumentNotFound(f"{write.collection}/{write.doc_id} not found")
                    _check_expected(write.collection, write.doc_id, existing, write.expected)
                    merged = copy.deepcopy(existing)
                    merged.update(copy.deepcopy(write.data))
                    staged[(write.collection, write.doc_id)] = merged
                elif write.op == "delete":
                    if existing is None:
                        raise DocumentNotFound(f"{write.collection}/{write.doc_id} not found")
                    staged[(write.collection, write.doc_id)] = None

            for (collection, doc_id), doc in staged.items():
                documents = self._collections.setdefault(collection, {})
                if doc is None:
                    documents.pop(doc_id, None)
                else:
                    documents[doc_id] = doc
                self._dirty_collections.add(collection)

            deferred = self._transaction_depth > 0

        if not deferred:
            self._notify()

    # --- Live queries ---

    def subscribe(self, collection: str, predicate: Predicate, callback: SnapshotCallback) -> _LiveQuery:
        live_query = _LiveQuery(self, collection, predicate, callback)
        with self._lock:
            self._subscriptions.append(live_query)
            snapshot = self._evaluate(live_query)
            live_query.last_delivered = [(doc.id, doc.data) for doc in snapshot]
            generation = live_query.generation
        self._deliver(live_query, snapshot, generation)
        return live_query

    def _remove_subscription(self, live_query: _LiveQuery) -> None:
        with self._lock:
            live_query.active = False
            if live_query in self._subscriptions:
                self._subscriptions.remove(live_query)

    def _evaluate(self, live_query: _LiveQuery) -> List[DocumentSnapshot]:
        return self.query(live_query.collection, live_query.predicate)

    def _notify(self) -> None:
        pending: List[Tuple[_LiveQuery, List[DocumentSnapshot], int]] = []

        with self._lock:
            dirty, self._dirty_collections = self._dirty_collections, set()
            for live_query in list(self._subscriptions):
                if live_query.collection not in dirty:
                    continue
                snapshot = self._evaluate(live_query)
                fingerprint = [(doc.id, doc.data) for doc in snapshot]
                if fingerprint == live_query.last_delivered:
                    continue
                live_query.last_delivered = fingerprint
                live_query.generation += 1
                pending.append((live_query, snapshot, live_query.generation))

        # Callbacks run outside the lock; they are free to read and write the store.
        for live_query, snapshot, generation in pending:
            self._deliver(live_query, snapshot, generation)

    def _deliver(self, live_query: _LiveQuery, snapshot: List[DocumentSnapshot], generation: int) -> None:
        # A nested write inside an earlier callback may already have delivered a newer snapshot.
        if not live_query.active or live_query.generation != generation:
            return
        try:
            live_query.callback(snapshot)
        except Exception:
            logger.exception("Live query callback on %s failed", live_query.collection)
