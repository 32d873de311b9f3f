"""
Media resolution and caching.

Stored media references are either legacy absolute URLs, which are served
as-is, or blob-store paths. Paths resolve through an in-memory handle map,
then a persistent SQLAlchemy-backed cache, then a fetch from the blob store.
The cache has no eviction policy and no size bound.
"""

from __future__ import annotations

import logging
import mimetypes
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Tuple

from sqlalchemy import Column, Float, LargeBinary, String, create_engine, delete, select
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from qrhunt.domain import is_external_url
from qrhunt.storage import StorageClient
from qrhunt.tasks import BackgroundTasks

logger = logging.getLogger(__name__)

DEFAULT_PREFETCH_BATCH_SIZE = 3


@dataclass
class MediaHandle:
    """
    Locally dereferenceable reference to one piece of media.

    External handles wrap a legacy absolute URL and carry no bytes.
    """

    ref: str
    url: str
    data: Optional[bytes] = None
    content_type: str = "application/octet-stream"
    external: bool = False
    released: bool = False

    @classmethod
    def for_external(cls, url: str) -> "MediaHandle":
        return cls(ref=url, url=url, external=True)

    def release(self) -> None:
        self.data = None
        self.released = True


def guess_content_type(path: str) -> str:
    content_type, _ = mimetypes.guess_type(path)
    return content_type or "application/octet-stream"


def _create_engine(database_url: str):
    if database_url.startswith("sqlite") and (
        ":memory:" in database_url or database_url.endswith("://")
    ):
        # One shared connection so every thread sees the same in-memory DB.
        return create_engine(
            database_url,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            future=True,
            connect_args={"check_same_thread": False},
        )
    return create_engine(database_url, future=True, pool_pre_ping=True)


class MediaCache:
    def __init__(
        self,
        storage: StorageClient,
        database_url: str = "sqlite+pysqlite:///:memory:",
        tasks: Optional[BackgroundTasks] = None,
        batch_size: int = DEFAULT_PREFETCH_BATCH_SIZE,
        clock: Callable[[], float] = time.time,
    ):
        self.storage = storage
        self.tasks = tasks or BackgroundTasks(max_workers=1, name="qrhunt-prefetch")
        self.batch_size = max(1, batch_size)
        self.clock = clock
        self.engine = _create_engine(database_url)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)
        self._handles: Dict[str, MediaHandle] = {}
        self._inflight: Dict[str, Future] = {}
        # Bumped by invalidate/clear; fetches started under an older token
        # are neither persisted nor kept as handles.
        self._generations: Dict[str, int] = {}
        self._clears = 0
        self._lock = threading.Lock()
        self._db_lock = threading.RLock()

    # Persistent store

    @contextmanager
    def _session(self):
        with self._db_lock:
            with self.Session() as session:
                yield session

    def _token(self, path: str) -> Tuple[int, int]:
        with self._lock:
            return self._clears, self._generations.get(path, 0)

    def is_cached(self, path: str) -> bool:
        with self._session() as session:
            return session.get(CachedFileRow, path) is not None

    def cached_at(self, path: str) -> Optional[float]:
        with self._session() as session:
            row = session.get(CachedFileRow, path)
            return row.fetched_at if row else None

    def get_file(self, path: str) -> bytes:
        """Return the bytes for a blob-store path, fetching on a cache miss."""
        return self._load(path, self._token(path))

    def _load(self, path: str, token: Tuple[int, int]) -> bytes:
        with self._session() as session:
            row = session.get(CachedFileRow, path)
            if row:
                return row.data
        data = self.storage.get_bytes(path)
        self._store(path, data, token)
        logger.debug("Fetched %s (%d bytes)", path, len(data))
        return data

    def _store(self, path: str, data: bytes, token: Tuple[int, int]) -> None:
        with self._session() as session:
            if self._token(path) != token:
                logger.debug("Discarding fetch of %s invalidated in flight", path)
                return
            session.merge(
                CachedFileRow(path=path, data=data, fetched_at=self.clock())
            )
            session.commit()

    # Handles

    def resolve(self, ref: str) -> MediaHandle:
        """
        Turn a stored media reference into a displayable handle.

        Concurrent resolves of the same path share one in-flight fetch and
        return the same handle.
        """
        if is_external_url(ref):
            return MediaHandle.for_external(ref)

        with self._lock:
            handle = self._handles.get(ref)
            if handle is not None:
                return handle
            pending = self._inflight.get(ref)
            owner = pending is None
            if owner:
                pending = Future()
                self._inflight[ref] = pending
                token = (self._clears, self._generations.get(ref, 0))

        if not owner:
            return pending.result()

        try:
            data = self._load(ref, token)
            handle = MediaHandle(
                ref=ref,
                url=f"blob:{uuid.uuid4()}",
                data=data,
                content_type=guess_content_type(ref),
            )
            with self._lock:
                if (self._clears, self._generations.get(ref, 0)) == token:
                    self._handles[ref] = handle
            pending.set_result(handle)
            return handle
        except Exception as exc:
            pending.set_exception(exc)
            raise
        finally:
            with self._lock:
                self._inflight.pop(ref, None)

    def release(self, path: str) -> None:
        with self._lock:
            handle = self._handles.pop(path, None)
        if handle is not None:
            handle.release()

    def invalidate(self, path: str) -> None:
        """Drop a path everywhere so the next resolve fetches fresh bytes."""
        with self._session() as session:
            with self._lock:
                self._generations[path] = self._generations.get(path, 0) + 1
            session.execute(delete(CachedFileRow).where(CachedFileRow.path == path))
            session.commit()
        self.release(path)

    def clear(self) -> None:
        with self._session() as session:
            with self._lock:
                self._clears += 1
            session.execute(delete(CachedFileRow))
            session.commit()
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            handle.release()

    def cached_paths(self) -> list[str]:
        with self._session() as session:
            return list(session.execute(select(CachedFileRow.path)).scalars())

    # Prefetch

    def prefetch(self, paths: Iterable[str]) -> Future:
        """
        Warm the persistent cache in the background.

        Already cached paths are skipped; the rest are fetched in small
        concurrent batches. Per-path failures are logged and skipped.
        """
        requested = list(
            dict.fromkeys(p for p in paths if p and not is_external_url(p))
        )
        return self.tasks.submit("media prefetch", self._prefetch_all, requested)

    def _prefetch_all(self, paths: list[str]) -> int:
        uncached = [path for path in paths if not self.is_cached(path)]
        if not uncached:
            return 0
        fetched = 0
        with ThreadPoolExecutor(
            max_workers=self.batch_size, thread_name_prefix="qrhunt-fetch"
        ) as pool:
            for start in range(0, len(uncached), self.batch_size):
                batch = uncached[start : start + self.batch_size]
                fetched += sum(pool.map(self._prefetch_one, batch))
        logger.info("Prefetched %d/%d media files", fetched, len(uncached))
        return fetched

    def _prefetch_one(self, path: str) -> bool:
        try:
            self.get_file(path)
        except Exception as exc:
            logger.warning("Prefetch of %s failed: %s", path, exc)
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


Base = declarative_base()


class CachedFileRow(Base):
    __tablename__ = "cached_files"

    path = Column(String, primary_key=True)
    data = Column(LargeBinary, nullable=False)
    fetched_at = Column(Float, nullable=False)
