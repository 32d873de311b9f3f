"""
Error taxonomy shared by the hunt services and the HTTP layer.
"""

from __future__ import annotations


class NotFoundError(LookupError):
    """A hunt or clue vanished, usually through a concurrent delete."""


class HuntNotFoundError(NotFoundError):
    def __init__(self, hunt_id: str):
        super().__init__(f"Hunt not found: {hunt_id}")
        self.hunt_id = hunt_id


class ClueNotFoundError(NotFoundError):
    def __init__(self, hunt_id: str, clue_id: str):
        super().__init__(f"Clue not found: {clue_id} (hunt {hunt_id})")
        self.hunt_id = hunt_id
        self.clue_id = clue_id


class MediaValidationError(ValueError):
    """An upload was rejected client-side, before any network call."""
