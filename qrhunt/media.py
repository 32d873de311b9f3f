"""
Media upload validation and blob-store path layout.
"""

from __future__ import annotations

import re
import time
from typing import Optional

from qrhunt.domain import MediaType
from qrhunt.errors import MediaValidationError

MEDIA_ROOT = "hunt-media"
MAX_UPLOAD_BYTES = 50 * 1024 * 1024

ACCEPTED_CONTENT_TYPES = {
    "image/jpeg": MediaType.IMAGE,
    "image/png": MediaType.IMAGE,
    "image/gif": MediaType.IMAGE,
    "video/mp4": MediaType.VIDEO,
    "video/quicktime": MediaType.VIDEO,
}


def media_type_for(content_type: Optional[str]) -> Optional[MediaType]:
    normalized = (content_type or "").split(";")[0].strip().lower()
    return ACCEPTED_CONTENT_TYPES.get(normalized)


def validate_upload(
    content_type: Optional[str], size: int, max_bytes: int = MAX_UPLOAD_BYTES
) -> MediaType:
    """
    Check an upload before anything touches the network.

    Returns the clue media type for the file.

    Raises:
        MediaValidationError: unsupported type or file too large.
    """
    media_type = media_type_for(content_type)
    if media_type is None:
        raise MediaValidationError("Please select a valid image or video file")
    if size > max_bytes:
        raise MediaValidationError(
            f"File size must be less than {max_bytes // (1024 * 1024)}MB"
        )
    return media_type


def _extension(filename: str, content_type: str) -> str:
    _, dot, ext = (filename or "").rpartition(".")
    ext = re.sub(r"[^a-z0-9]", "", ext.lower()) if dot else ""
    if not ext:
        ext = content_type.split("/")[-1].lower()
    if ext == "quicktime":
        ext = "mov"
    return ext


def media_path(
    hunt_id: str,
    clue_id: str,
    filename: str,
    content_type: str,
    now_ms: Optional[int] = None,
) -> str:
    timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return (
        f"{MEDIA_ROOT}/{hunt_id}/{clue_id}-{timestamp}."
        f"{_extension(filename, content_type)}"
    )
