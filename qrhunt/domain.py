"""
Domain types for hunts and clues, and their document-store encoding.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from typing import Any, Optional

UNNAMED_HUNT = "Unnamed hunt"


class MediaType(str, enum.Enum):
    IMAGE = "image"
    VIDEO = "video"


@dataclass(frozen=True)
class Clue:
    """One step of a hunt: prompt text, optional hint, optional media."""

    id: str
    text: str = ""
    hint: str = ""
    media_url: Optional[str] = None
    media_type: Optional[MediaType] = None
    # Mirror of the clue's position in its hunt; never read for ordering.
    order: int = 0

    @property
    def has_media(self) -> bool:
        return bool(self.media_url)

    def to_document(self) -> dict:
        doc: dict[str, Any] = {
            "id": self.id,
            "text": self.text,
            "hint": self.hint,
            "order": self.order,
        }
        if self.media_url:
            doc["mediaUrl"] = self.media_url
            if self.media_type is not None:
                doc["mediaType"] = self.media_type.value
        return doc

    @classmethod
    def from_document(cls, data: dict) -> "Clue":
        media_type = data.get("mediaType")
        return cls(
            id=data["id"],
            text=data.get("text") or "",
            hint=data.get("hint") or "",
            media_url=data.get("mediaUrl") or None,
            media_type=MediaType(media_type) if media_type else None,
            order=int(data.get("order") or 0),
        )


@dataclass(frozen=True)
class Hunt:
    """A named, ordered sequence of clues."""

    id: str
    display_name: str = ""
    clues: list[Clue] = field(default_factory=list)

    @property
    def title(self) -> str:
        return self.display_name or UNNAMED_HUNT

    def find_clue(self, clue_id: str) -> Optional[Clue]:
        for clue in self.clues:
            if clue.id == clue_id:
                return clue
        return None

    def index_of(self, clue_id: str) -> int:
        for index, clue in enumerate(self.clues):
            if clue.id == clue_id:
                return index
        return -1

    def media_paths(self) -> list[str]:
        """Blob-store paths referenced by this hunt (external URLs excluded)."""
        return [
            clue.media_url
            for clue in self.clues
            if clue.media_url and not is_external_url(clue.media_url)
        ]

    @classmethod
    def from_document(cls, hunt_id: str, data: dict) -> "Hunt":
        return cls(
            id=hunt_id,
            display_name=data.get("displayName") or "",
            clues=[Clue.from_document(item) for item in data.get("clues") or []],
        )


def renumber(clues: list[Clue]) -> list[Clue]:
    """Return the clues with `order` rewritten to match list position."""
    return [
        clue if clue.order == index else replace(clue, order=index)
        for index, clue in enumerate(clues)
    ]


def clues_to_documents(clues: list[Clue]) -> list[dict]:
    return [clue.to_document() for clue in renumber(clues)]


def is_external_url(ref: str) -> bool:
    """Legacy media references are absolute URLs rather than storage paths."""
    return ref.startswith("http://") or ref.startswith("https://")
