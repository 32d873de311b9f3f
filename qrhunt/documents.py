"""
Document store abstraction for Firestore and an in-memory realtime test store.

Both implementations expose per-document and per-collection listeners that
fire with the initial snapshot and on every later change, and return a
`Subscription` that detaches the listener.
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol

import firebase_admin
from firebase_admin import firestore
from google.api_core import exceptions as google_exceptions

logger = logging.getLogger(__name__)


class DocumentNotFoundError(LookupError):
    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"{collection}/{doc_id} does not exist")
        self.collection = collection
        self.doc_id = doc_id


@dataclass(frozen=True)
class DocumentSnapshot:
    id: str
    data: dict


DocumentCallback = Callable[[Optional[DocumentSnapshot]], None]
CollectionCallback = Callable[[list[DocumentSnapshot]], None]


class Subscription:
    """
    Disposer for a live listener.

    Calling it (or `unsubscribe()`) detaches the listener; further calls are
    no-ops so teardown paths may invoke it unconditionally.
    """

    def __init__(self, detach: Callable[[], None], description: str = ""):
        self._detach = detach
        self._description = description
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def unsubscribe(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._detach()
        logger.debug("Unsubscribed %s", self._description)

    __call__ = unsubscribe

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.unsubscribe()


class DocumentStore(Protocol):
    """Operations the hunt service needs from the document database."""

    def add(self, collection: str, data: dict) -> str:
        ...

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        ...

    def update(self, collection: str, doc_id: str, fields: dict) -> None:
        ...

    def delete(self, collection: str, doc_id: str) -> None:
        ...

    def list_documents(self, collection: str) -> list[DocumentSnapshot]:
        ...

    def watch_document(
        self, collection: str, doc_id: str, callback: DocumentCallback
    ) -> Subscription:
        ...

    def watch_collection(
        self, collection: str, callback: CollectionCallback
    ) -> Subscription:
        ...


class InMemoryDocumentStore:
    """
    Schemaless in-memory document store with synchronous listeners.

    Listeners run on the writing thread while the store lock is held, so every
    listener sees snapshots in write order.
    """

    def __init__(self):
        self.collections: Dict[str, Dict[str, dict]] = {}
        self._doc_watchers: Dict[tuple[str, str], Dict[int, DocumentCallback]] = {}
        self._col_watchers: Dict[str, Dict[int, CollectionCallback]] = {}
        self._next_token = 0
        self._lock = threading.RLock()

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.collections.clear()

    def add(self, collection: str, data: dict) -> str:
        doc_id = uuid.uuid4().hex[:20]
        self.set(collection, doc_id, data)
        return doc_id

    def set(self, collection: str, doc_id: str, data: dict) -> None:
        with self._lock:
            self.collections.setdefault(collection, {})[doc_id] = copy.deepcopy(data)
            self._notify(collection, doc_id)

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        with self._lock:
            data = self.collections.get(collection, {}).get(doc_id)
            return copy.deepcopy(data) if data is not None else None

    def update(self, collection: str, doc_id: str, fields: dict) -> None:
        with self._lock:
            docs = self.collections.get(collection, {})
            if doc_id not in docs:
                raise DocumentNotFoundError(collection, doc_id)
            docs[doc_id].update(copy.deepcopy(fields))
            self._notify(collection, doc_id)

    def delete(self, collection: str, doc_id: str) -> None:
        with self._lock:
            docs = self.collections.get(collection, {})
            if docs.pop(doc_id, None) is not None:
                self._notify(collection, doc_id)

    def list_documents(self, collection: str) -> list[DocumentSnapshot]:
        with self._lock:
            return self._snapshot_collection(collection)

    def watch_document(
        self, collection: str, doc_id: str, callback: DocumentCallback
    ) -> Subscription:
        with self._lock:
            token = self._register(
                self._doc_watchers.setdefault((collection, doc_id), {}), callback
            )
            callback(self._snapshot_document(collection, doc_id))

        def detach():
            with self._lock:
                self._doc_watchers.get((collection, doc_id), {}).pop(token, None)

        return Subscription(detach, f"{collection}/{doc_id}")

    def watch_collection(
        self, collection: str, callback: CollectionCallback
    ) -> Subscription:
        with self._lock:
            token = self._register(
                self._col_watchers.setdefault(collection, {}), callback
            )
            callback(self._snapshot_collection(collection))

        def detach():
            with self._lock:
                self._col_watchers.get(collection, {}).pop(token, None)

        return Subscription(detach, collection)

    def listener_count(self) -> int:
        with self._lock:
            return sum(len(w) for w in self._doc_watchers.values()) + sum(
                len(w) for w in self._col_watchers.values()
            )

    def _register(self, watchers: dict, callback) -> int:
        self._next_token += 1
        watchers[self._next_token] = callback
        return self._next_token

    def _snapshot_document(
        self, collection: str, doc_id: str
    ) -> Optional[DocumentSnapshot]:
        data = self.collections.get(collection, {}).get(doc_id)
        if data is None:
            return None
        return DocumentSnapshot(id=doc_id, data=copy.deepcopy(data))

    def _snapshot_collection(self, collection: str) -> list[DocumentSnapshot]:
        return [
            DocumentSnapshot(id=doc_id, data=copy.deepcopy(data))
            for doc_id, data in self.collections.get(collection, {}).items()
        ]

    def _notify(self, collection: str, doc_id: str) -> None:
        doc_watchers = list(self._doc_watchers.get((collection, doc_id), {}).values())
        col_watchers = list(self._col_watchers.get(collection, {}).values())
        if doc_watchers:
            snapshot = self._snapshot_document(collection, doc_id)
            for callback in doc_watchers:
                callback(snapshot)
        for callback in col_watchers:
            callback(self._snapshot_collection(collection))


class FirestoreDocumentStore:
    """
    Firestore-backed implementation using firebase-admin.

    Snapshot listeners run on the Firestore client's watch threads.
    """

    def __init__(self, project_id: Optional[str] = None):
        try:
            app = firebase_admin.get_app()
        except ValueError:
            options = {"projectId": project_id} if project_id else None
            app = firebase_admin.initialize_app(options=options)
        self._client = firestore.client(app)

    def add(self, collection: str, data: dict) -> str:
        _, ref = self._client.collection(collection).add(data)
        return ref.id

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        snapshot = self._client.collection(collection).document(doc_id).get()
        return snapshot.to_dict() if snapshot.exists else None

    def update(self, collection: str, doc_id: str, fields: dict) -> None:
        try:
            self._client.collection(collection).document(doc_id).update(fields)
        except google_exceptions.NotFound as exc:
            raise DocumentNotFoundError(collection, doc_id) from exc

    def delete(self, collection: str, doc_id: str) -> None:
        self._client.collection(collection).document(doc_id).delete()

    def list_documents(self, collection: str) -> list[DocumentSnapshot]:
        return [
            DocumentSnapshot(id=snap.id, data=snap.to_dict() or {})
            for snap in self._client.collection(collection).stream()
        ]

    def watch_document(
        self, collection: str, doc_id: str, callback: DocumentCallback
    ) -> Subscription:
        ref = self._client.collection(collection).document(doc_id)

        def on_snapshot(snapshots, changes, read_time):
            current = next((s for s in snapshots if s.exists), None)
            if current is None:
                callback(None)
                return
            callback(DocumentSnapshot(id=current.id, data=current.to_dict() or {}))

        watch = ref.on_snapshot(on_snapshot)
        return Subscription(watch.unsubscribe, f"{collection}/{doc_id}")

    def watch_collection(
        self, collection: str, callback: CollectionCallback
    ) -> Subscription:
        ref = self._client.collection(collection)

        def on_snapshot(snapshots, changes, read_time):
            callback(
                [
                    DocumentSnapshot(id=snap.id, data=snap.to_dict() or {})
                    for snap in snapshots
                ]
            )

        watch = ref.on_snapshot(on_snapshot)
        return Subscription(watch.unsubscribe, collection)
