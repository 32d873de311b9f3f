"""
Hunt and clue domain service.

Every hunt/clue mutation and subscription goes through `HuntService`, which
hides the document layout: one document per hunt in the `hunts` collection
with its clues embedded as an ordered array. Array position is the only
ordering source; each clue's `order` field is rewritten to its index
whenever the sequence changes.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from typing import Callable, Optional, Sequence, Union

from qrhunt import media
from qrhunt.documents import DocumentNotFoundError, DocumentStore, Subscription
from qrhunt.domain import Clue, Hunt, MediaType, clues_to_documents, is_external_url
from qrhunt.errors import ClueNotFoundError, HuntNotFoundError
from qrhunt.local_store import KnownHuntStore
from qrhunt.media_cache import MediaCache
from qrhunt.storage import StorageClient
from qrhunt.tasks import BackgroundTasks

logger = logging.getLogger(__name__)

HUNTS_COLLECTION = "hunts"

CLUE_FIELDS = ("text", "hint", "media_url", "media_type")


class HuntService:
    def __init__(
        self,
        documents: DocumentStore,
        storage: StorageClient,
        known_hunts: KnownHuntStore,
        tasks: BackgroundTasks,
        media_cache: Optional[MediaCache] = None,
        max_upload_bytes: int = media.MAX_UPLOAD_BYTES,
    ):
        self.documents = documents
        self.storage = storage
        self.known_hunts = known_hunts
        self.tasks = tasks
        self.media_cache = media_cache
        self.max_upload_bytes = max_upload_bytes

    # Hunts

    def create_hunt(self, display_name: str = "") -> str:
        hunt_id = self.documents.add(
            HUNTS_COLLECTION, {"displayName": display_name, "clues": []}
        )
        self.known_hunts.add(hunt_id)
        logger.info("Created hunt %s", hunt_id)
        return hunt_id

    def get_hunt(self, hunt_id: str) -> Optional[Hunt]:
        data = self.documents.get(HUNTS_COLLECTION, hunt_id)
        if data is None:
            return None
        return Hunt.from_document(hunt_id, data)

    def update_hunt_name(self, hunt_id: str, display_name: str) -> None:
        try:
            self.documents.update(
                HUNTS_COLLECTION, hunt_id, {"displayName": display_name}
            )
        except DocumentNotFoundError as exc:
            raise HuntNotFoundError(hunt_id) from exc

    def delete_hunt(self, hunt_id: str) -> None:
        """
        Delete a hunt and, best-effort, every stored media blob of its clues.
        """
        hunt = self.get_hunt(hunt_id)
        if hunt is not None:
            for path in hunt.media_paths():
                self._discard_blob(path)
        self.documents.delete(HUNTS_COLLECTION, hunt_id)
        logger.info("Deleted hunt %s", hunt_id)

    # Clues

    def create_clue(self, hunt_id: str, text: str = "", hint: str = "") -> str:
        hunt = self._require_hunt(hunt_id)
        clue = Clue(
            id=str(uuid.uuid4()), text=text, hint=hint, order=len(hunt.clues)
        )
        self._save_clues(hunt_id, hunt.clues + [clue])
        return clue.id

    def update_clue(self, hunt_id: str, clue_id: str, **fields) -> None:
        """
        Merge the supplied fields into a clue, leaving the others untouched.

        The hunt is re-read right before writing so that sibling fields saved
        in between are kept; a concurrent write may still win.
        """
        unknown = set(fields) - set(CLUE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown clue fields: {sorted(unknown)}")
        if fields.get("media_type") is not None:
            fields["media_type"] = MediaType(fields["media_type"])
        hunt = self._require_hunt(hunt_id)
        self._require_clue(hunt, clue_id)
        self._save_clues(
            hunt_id,
            [replace(c, **fields) if c.id == clue_id else c for c in hunt.clues],
        )

    def delete_clue_media(self, hunt_id: str, clue_id: str) -> None:
        """Clear the media fields of a clue (the blob itself is untouched)."""
        self.update_clue(hunt_id, clue_id, media_url=None, media_type=None)

    def delete_clue(self, hunt_id: str, clue_id: str) -> None:
        hunt = self._require_hunt(hunt_id)
        clue = self._require_clue(hunt, clue_id)
        if clue.media_url and not is_external_url(clue.media_url):
            self._discard_blob(clue.media_url)
        self._save_clues(hunt_id, [c for c in hunt.clues if c.id != clue_id])

    def update_clue_order(
        self, hunt_id: str, new_order: Sequence[Union[str, Clue]]
    ) -> None:
        """
        Persist a new clue sequence given as clue IDs or clue objects.

        The sequence must be a permutation of the hunt's current clues.
        """
        ordered_ids = [c.id if isinstance(c, Clue) else c for c in new_order]
        hunt = self._require_hunt(hunt_id)
        by_id = {clue.id: clue for clue in hunt.clues}
        if len(ordered_ids) != len(by_id) or set(ordered_ids) != set(by_id):
            raise ValueError("New order must contain exactly the hunt's clues")
        self._save_clues(hunt_id, [by_id[clue_id] for clue_id in ordered_ids])

    # Media

    def attach_media(
        self,
        hunt_id: str,
        clue_id: str,
        filename: str,
        content_type: str,
        data: bytes,
    ) -> str:
        """
        Upload a photo or video for a clue, replacing any previous one.

        Validation happens before any network call. Returns the blob path.
        """
        media_type = media.validate_upload(
            content_type, len(data), max_bytes=self.max_upload_bytes
        )
        hunt = self._require_hunt(hunt_id)
        previous = self._require_clue(hunt, clue_id).media_url

        path = media.media_path(hunt_id, clue_id, filename, content_type)
        self.storage.upload_bytes(path, data, content_type)
        self.update_clue(hunt_id, clue_id, media_url=path, media_type=media_type)

        if previous and previous != path and not is_external_url(previous):
            self._discard_blob(previous)
        return path

    def remove_media(self, hunt_id: str, clue_id: str) -> None:
        hunt = self._require_hunt(hunt_id)
        path = self._require_clue(hunt, clue_id).media_url
        if path and not is_external_url(path):
            self._discard_blob(path)
        self.delete_clue_media(hunt_id, clue_id)

    # Subscriptions

    def subscribe_to_hunt(
        self, hunt_id: str, callback: Callable[[Optional[Hunt]], None]
    ) -> Subscription:
        def on_snapshot(snapshot):
            hunt = Hunt.from_document(snapshot.id, snapshot.data) if snapshot else None
            callback(hunt)

        return self.documents.watch_document(HUNTS_COLLECTION, hunt_id, on_snapshot)

    def subscribe_to_clues(
        self, hunt_id: str, callback: Callable[[list[Clue]], None]
    ) -> Subscription:
        def on_snapshot(snapshot):
            if snapshot is None:
                callback([])
                return
            callback(Hunt.from_document(snapshot.id, snapshot.data).clues)

        return self.documents.watch_document(HUNTS_COLLECTION, hunt_id, on_snapshot)

    def subscribe_to_all_hunts(
        self, callback: Callable[[list[Hunt]], None]
    ) -> Subscription:
        def on_snapshot(snapshots):
            callback([Hunt.from_document(s.id, s.data) for s in snapshots])

        return self.documents.watch_collection(HUNTS_COLLECTION, on_snapshot)

    def subscribe_to_known_hunts(
        self, callback: Callable[[list[Hunt]], None]
    ) -> Subscription:
        """
        Listen to the hunts this device knows about.

        A known ID is pruned from the local index only once it is missing
        from two consecutive snapshots. The admin SDK has no latency
        compensation, so a snapshot taken before `create_hunt` wrote its
        document can still arrive after the ID was registered locally.
        """
        missing_before: set[str] = set()

        def on_snapshot(snapshots):
            nonlocal missing_before
            hunts = [Hunt.from_document(s.id, s.data) for s in snapshots]
            known, missing = self._match_known(hunts)
            self._prune(missing & missing_before)
            missing_before = missing
            callback(known)

        return self.documents.watch_collection(HUNTS_COLLECTION, on_snapshot)

    def get_known_hunts(self) -> list[Hunt]:
        snapshots = self.documents.list_documents(HUNTS_COLLECTION)
        known, missing = self._match_known(
            [Hunt.from_document(s.id, s.data) for s in snapshots]
        )
        self._prune(missing)
        return known

    def _match_known(self, hunts: list[Hunt]) -> tuple[list[Hunt], set[str]]:
        by_id = {hunt.id: hunt for hunt in hunts}
        known: list[Hunt] = []
        missing: set[str] = set()
        for hunt_id in self.known_hunts.list():
            hunt = by_id.get(hunt_id)
            if hunt is None:
                missing.add(hunt_id)
            else:
                known.append(hunt)
        return known, missing

    def _prune(self, hunt_ids: set[str]) -> None:
        for hunt_id in sorted(hunt_ids):
            logger.info("Pruning unknown hunt %s from known hunts", hunt_id)
            self.known_hunts.remove(hunt_id)

    # Helpers

    def _require_hunt(self, hunt_id: str) -> Hunt:
        hunt = self.get_hunt(hunt_id)
        if hunt is None:
            raise HuntNotFoundError(hunt_id)
        return hunt

    def _require_clue(self, hunt: Hunt, clue_id: str) -> Clue:
        clue = hunt.find_clue(clue_id)
        if clue is None:
            raise ClueNotFoundError(hunt.id, clue_id)
        return clue

    def _save_clues(self, hunt_id: str, clues: list[Clue]) -> None:
        try:
            self.documents.update(
                HUNTS_COLLECTION, hunt_id, {"clues": clues_to_documents(clues)}
            )
        except DocumentNotFoundError as exc:
            raise HuntNotFoundError(hunt_id) from exc

    def _discard_blob(self, path: str) -> None:
        if self.media_cache is not None:
            self.media_cache.invalidate(path)
        self.tasks.submit(f"delete blob {path}", self.storage.delete, path)
