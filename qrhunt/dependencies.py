"""
Dependency wiring for the FastAPI app.

Backends are built once by `build_services` at application start and kept on
`app.state`; request handlers receive them through the `get_*` providers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Header, Request

from qrhunt.config import Settings, get_settings
from qrhunt.documents import (
    DocumentStore,
    FirestoreDocumentStore,
    InMemoryDocumentStore,
)
from qrhunt.hunt_service import HuntService
from qrhunt.local_store import (
    FileSlotStore,
    InMemorySlotStore,
    KnownHuntStore,
    RedisSlotStore,
    SlotStore,
    device_slot_key,
)
from qrhunt.media_cache import MediaCache
from qrhunt.storage import CosStorageClient, InMemoryStorageClient, StorageClient
from qrhunt.tasks import BackgroundTasks

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    documents: DocumentStore
    storage: StorageClient
    slots: SlotStore
    tasks: BackgroundTasks
    media_cache: MediaCache

    def known_hunts(self, device_id: Optional[str] = None) -> KnownHuntStore:
        return KnownHuntStore(
            self.slots, device_slot_key(self.settings.known_hunts_key, device_id)
        )

    def hunt_service(self, device_id: Optional[str] = None) -> HuntService:
        return HuntService(
            documents=self.documents,
            storage=self.storage,
            known_hunts=self.known_hunts(device_id),
            tasks=self.tasks,
            media_cache=self.media_cache,
            max_upload_bytes=self.settings.max_upload_bytes,
        )

    def close(self) -> None:
        self.tasks.shutdown(wait_for_pending=True)
        self.media_cache.close()


def build_document_store(settings: Settings) -> DocumentStore:
    if settings.use_in_memory_backends or not settings.firebase_project_id:
        return InMemoryDocumentStore()
    return FirestoreDocumentStore(settings.firebase_project_id)


def build_storage_client(settings: Settings) -> StorageClient:
    if settings.use_in_memory_backends or not settings.cos_bucket:
        return InMemoryStorageClient()
    return CosStorageClient(
        bucket=settings.cos_bucket,
        region=settings.cos_region or "",
        endpoint=settings.cos_endpoint or "",
        access_key_id=settings.aws_access_key_id or "",
        secret_access_key=settings.aws_secret_access_key or "",
    )


def build_slot_store(settings: Settings) -> SlotStore:
    if settings.use_in_memory_backends or settings.known_hunts_backend == "memory":
        return InMemorySlotStore()
    if settings.known_hunts_backend == "redis":
        if not settings.redis_url:
            logger.warning("REDIS_URL not set; keeping known hunts in memory")
            return InMemorySlotStore()
        return RedisSlotStore(url=settings.redis_url)
    return FileSlotStore(settings.known_hunts_dir)


def build_services(settings: Optional[Settings] = None) -> Services:
    settings = settings or get_settings()
    storage = build_storage_client(settings)
    tasks = BackgroundTasks(max_workers=settings.background_workers)
    media_cache_url = (
        "sqlite+pysqlite:///:memory:"
        if settings.use_in_memory_backends
        else settings.media_cache_url
    )
    return Services(
        settings=settings,
        documents=build_document_store(settings),
        storage=storage,
        slots=build_slot_store(settings),
        tasks=tasks,
        media_cache=MediaCache(
            storage,
            database_url=media_cache_url,
            tasks=tasks,
            batch_size=settings.prefetch_batch_size,
        ),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_hunt_service(
    request: Request, x_device_id: Optional[str] = Header(default=None)
) -> HuntService:
    return get_services(request).hunt_service(x_device_id)


def get_media_cache(request: Request) -> MediaCache:
    return get_services(request).media_cache
