"""
Deep links encoded into printed QR codes.
"""

from __future__ import annotations


def _base(base_url: str) -> str:
    return base_url.rstrip("/")


def hunt_link(base_url: str, hunt_id: str) -> str:
    return f"{_base(base_url)}/hunt/{hunt_id}"


def clue_link(base_url: str, hunt_id: str, clue_id: str) -> str:
    return f"{_base(base_url)}/hunt/{hunt_id}/clue/{clue_id}"


def completion_link(base_url: str, hunt_id: str) -> str:
    return f"{_base(base_url)}/hunt/{hunt_id}/complete"
