"""
Pydantic schemas for the treasure hunt API.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field

from qrhunt.domain import Clue, Hunt


class CreateHuntRequest(BaseModel):
    display_name: str = Field(default="", max_length=200)


class CreateHuntResponse(BaseModel):
    id: str
    link: str


class RenameHuntRequest(BaseModel):
    display_name: str = Field(..., max_length=200)


class CreateClueRequest(BaseModel):
    text: str = ""
    hint: str = ""


class CreateClueResponse(BaseModel):
    id: str


class UpdateClueRequest(BaseModel):
    text: Optional[str] = None
    hint: Optional[str] = None


class ClueOrderRequest(BaseModel):
    clue_ids: list[str]


class ClueResponse(BaseModel):
    id: str
    text: str
    hint: str
    media_url: Optional[str] = None
    media_type: Optional[Literal["image", "video"]] = None
    order: int

    @classmethod
    def from_clue(cls, clue: Clue) -> "ClueResponse":
        return cls(
            id=clue.id,
            text=clue.text,
            hint=clue.hint,
            media_url=clue.media_url,
            media_type=clue.media_type.value if clue.media_type else None,
            order=clue.order,
        )


class HuntResponse(BaseModel):
    id: str
    display_name: str
    clues: list[ClueResponse]

    @classmethod
    def from_hunt(cls, hunt: Hunt) -> "HuntResponse":
        return cls(
            id=hunt.id,
            display_name=hunt.display_name,
            clues=[ClueResponse.from_clue(c) for c in hunt.clues],
        )


class ListHuntsResponse(BaseModel):
    hunts: list[HuntResponse]


class MediaUploadResponse(BaseModel):
    media_url: str
    media_type: Literal["image", "video"]


class ClueViewResponse(BaseModel):
    hunt_id: str
    hunt_name: str
    clue: ClueResponse
    position: int
    total: int
    is_last: bool
    media_link: Optional[str] = None


class StatusResponse(BaseModel):
    status: Literal["ok"]
