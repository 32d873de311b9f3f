"""
Device-local known-hunt index.

A device remembers which hunts it created or visited by keeping a JSON array
of hunt IDs in a single named slot. The index is a convenience only: the
document store stays authoritative for whether a hunt exists, so every
storage failure degrades to a logged no-op.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol
from urllib.parse import quote

import redis
from redis import exceptions as redis_exceptions

logger = logging.getLogger(__name__)

DEFAULT_SLOT_KEY = "qr-treasure-hunt-known-hunts"


class SlotStorageError(RuntimeError):
    """The backing slot storage is disabled, full or unreachable."""


class SlotStore(Protocol):
    """Minimal key/value slot interface (string values)."""

    def read(self, key: str) -> Optional[str]:
        ...

    def write(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


@dataclass
class InMemorySlotStore:
    """Dict-backed slots for tests/dev."""

    values: dict[str, str] = field(default_factory=dict)

    def read(self, key: str) -> Optional[str]:
        return self.values.get(key)

    def write(self, key: str, value: str) -> None:
        self.values[key] = value

    def remove(self, key: str) -> None:
        self.values.pop(key, None)


@dataclass
class FileSlotStore:
    """One JSON file per slot under a directory."""

    directory: str

    def _path(self, key: str) -> Path:
        # Percent-encoding keeps distinct keys in distinct files.
        return Path(self.directory) / f"{quote(key, safe='')}.json"

    def read(self, key: str) -> Optional[str]:
        try:
            return self._path(key).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise SlotStorageError(str(exc)) from exc

    def write(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp_path = path.with_suffix(".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(value, encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as exc:
            raise SlotStorageError(str(exc)) from exc

    def remove(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise SlotStorageError(str(exc)) from exc


@dataclass
class RedisSlotStore:
    """Redis-backed slots using plain GET/SET."""

    url: str

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def read(self, key: str) -> Optional[str]:
        try:
            value = self.client.get(key)
        except redis_exceptions.RedisError as exc:
            raise SlotStorageError(str(exc)) from exc
        return value.decode("utf-8") if value is not None else None

    def write(self, key: str, value: str) -> None:
        try:
            self.client.set(key, value)
        except redis_exceptions.RedisError as exc:
            raise SlotStorageError(str(exc)) from exc

    def remove(self, key: str) -> None:
        try:
            self.client.delete(key)
        except redis_exceptions.RedisError as exc:
            raise SlotStorageError(str(exc)) from exc


class KnownHuntStore:
    """Set of hunt IDs this device has created or visited."""

    def __init__(self, slots: SlotStore, key: str = DEFAULT_SLOT_KEY):
        self.slots = slots
        self.key = key

    def list(self) -> list[str]:
        try:
            stored = self.slots.read(self.key)
            ids = json.loads(stored) if stored else []
        except (SlotStorageError, ValueError) as exc:
            logger.warning("Could not read known hunts (%s): %s", self.key, exc)
            return []
        if not isinstance(ids, list):
            return []
        return [str(hunt_id) for hunt_id in ids]

    def add(self, hunt_id: str) -> None:
        known_ids = self.list()
        if hunt_id in known_ids:
            return
        self._write(known_ids + [hunt_id])

    def remove(self, hunt_id: str) -> None:
        known_ids = self.list()
        if hunt_id not in known_ids:
            return
        self._write([known for known in known_ids if known != hunt_id])

    def has(self, hunt_id: str) -> bool:
        return hunt_id in self.list()

    def clear(self) -> None:
        try:
            self.slots.remove(self.key)
        except SlotStorageError as exc:
            logger.warning("Could not clear known hunts (%s): %s", self.key, exc)

    def _write(self, ids: list[str]) -> None:
        try:
            self.slots.write(self.key, json.dumps(ids))
        except SlotStorageError as exc:
            logger.warning("Could not save known hunts (%s): %s", self.key, exc)


def device_slot_key(base_key: str, device_id: Optional[str]) -> str:
    """Scope the known-hunt slot to one device."""
    if not device_id:
        return base_key
    return f"{base_key}:{device_id}"
