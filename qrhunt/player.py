"""
Play-through helpers for hunters following scanned QR links.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from qrhunt.domain import Clue, Hunt
from qrhunt.errors import ClueNotFoundError, HuntNotFoundError
from qrhunt.hunt_service import HuntService


@dataclass(frozen=True)
class ClueView:
    hunt: Hunt
    clue: Clue
    position: int
    total: int

    @property
    def is_last(self) -> bool:
        return self.position == self.total

    @property
    def next_clue(self) -> Optional[Clue]:
        if self.is_last:
            return None
        return self.hunt.clues[self.position]


def open_clue(service: HuntService, hunt_id: str, clue_id: str) -> ClueView:
    """
    Load the clue a hunter just scanned.

    Visiting a hunt remembers it on this device; a hunt that no longer exists
    is forgotten again before HuntNotFoundError is raised.
    """
    service.known_hunts.add(hunt_id)
    hunt = service.get_hunt(hunt_id)
    if hunt is None:
        service.known_hunts.remove(hunt_id)
        raise HuntNotFoundError(hunt_id)
    index = hunt.index_of(clue_id)
    if index < 0:
        raise ClueNotFoundError(hunt_id, clue_id)
    return ClueView(
        hunt=hunt, clue=hunt.clues[index], position=index + 1, total=len(hunt.clues)
    )
