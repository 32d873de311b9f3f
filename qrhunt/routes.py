"""
HTTP routes for the treasure hunt API.
"""

from __future__ import annotations

import logging
from email.utils import formatdate
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import HTMLResponse, RedirectResponse, Response

from qrhunt import media
from qrhunt.dependencies import (
    Services,
    get_hunt_service,
    get_media_cache,
    get_services,
)
from qrhunt.domain import is_external_url
from qrhunt.hunt_service import HuntService
from qrhunt.links import hunt_link
from qrhunt.media_cache import MediaCache, guess_content_type
from qrhunt.player import open_clue
from qrhunt.printing import render_print_sheet
from qrhunt.schemas import (
    ClueOrderRequest,
    ClueResponse,
    ClueViewResponse,
    CreateClueRequest,
    CreateClueResponse,
    CreateHuntRequest,
    CreateHuntResponse,
    HuntResponse,
    ListHuntsResponse,
    MediaUploadResponse,
    RenameHuntRequest,
    StatusResponse,
    UpdateClueRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _media_link(services: Services, ref: str | None) -> str | None:
    if not ref:
        return None
    if is_external_url(ref):
        return ref
    return f"{services.settings.api_prefix}/media?ref={quote(ref, safe='')}"


@router.get("/hunts", response_model=ListHuntsResponse)
def list_known_hunts(service: HuntService = Depends(get_hunt_service)):
    hunts = service.get_known_hunts()
    return ListHuntsResponse(hunts=[HuntResponse.from_hunt(h) for h in hunts])


@router.post("/hunts", response_model=CreateHuntResponse, status_code=201)
def create_hunt(
    payload: CreateHuntRequest,
    service: HuntService = Depends(get_hunt_service),
    services: Services = Depends(get_services),
):
    hunt_id = service.create_hunt(payload.display_name)
    return CreateHuntResponse(
        id=hunt_id, link=hunt_link(services.settings.public_base_url, hunt_id)
    )


@router.get("/hunts/{hunt_id}", response_model=HuntResponse)
def get_hunt(hunt_id: str, service: HuntService = Depends(get_hunt_service)):
    hunt = service.get_hunt(hunt_id)
    if hunt is None:
        raise HTTPException(status_code=404, detail="Hunt not found")
    return HuntResponse.from_hunt(hunt)


@router.patch("/hunts/{hunt_id}", response_model=StatusResponse)
def rename_hunt(
    hunt_id: str,
    payload: RenameHuntRequest,
    service: HuntService = Depends(get_hunt_service),
):
    service.update_hunt_name(hunt_id, payload.display_name)
    return StatusResponse(status="ok")


@router.delete("/hunts/{hunt_id}", response_model=StatusResponse)
def delete_hunt(hunt_id: str, service: HuntService = Depends(get_hunt_service)):
    service.delete_hunt(hunt_id)
    service.known_hunts.remove(hunt_id)
    return StatusResponse(status="ok")


@router.post(
    "/hunts/{hunt_id}/clues", response_model=CreateClueResponse, status_code=201
)
def create_clue(
    hunt_id: str,
    payload: CreateClueRequest,
    service: HuntService = Depends(get_hunt_service),
):
    clue_id = service.create_clue(hunt_id, payload.text, payload.hint)
    return CreateClueResponse(id=clue_id)


@router.patch("/hunts/{hunt_id}/clues/{clue_id}", response_model=StatusResponse)
def update_clue(
    hunt_id: str,
    clue_id: str,
    payload: UpdateClueRequest,
    service: HuntService = Depends(get_hunt_service),
):
    fields = payload.model_dump(exclude_none=True)
    if fields:
        service.update_clue(hunt_id, clue_id, **fields)
    return StatusResponse(status="ok")


@router.delete("/hunts/{hunt_id}/clues/{clue_id}", response_model=StatusResponse)
def delete_clue(
    hunt_id: str, clue_id: str, service: HuntService = Depends(get_hunt_service)
):
    service.delete_clue(hunt_id, clue_id)
    return StatusResponse(status="ok")


@router.put("/hunts/{hunt_id}/clue-order", response_model=StatusResponse)
def update_clue_order(
    hunt_id: str,
    payload: ClueOrderRequest,
    service: HuntService = Depends(get_hunt_service),
):
    try:
        service.update_clue_order(hunt_id, payload.clue_ids)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return StatusResponse(status="ok")


@router.post(
    "/hunts/{hunt_id}/clues/{clue_id}/media", response_model=MediaUploadResponse
)
async def upload_clue_media(
    hunt_id: str,
    clue_id: str,
    file: UploadFile = File(...),
    service: HuntService = Depends(get_hunt_service),
):
    data = await file.read()
    path = service.attach_media(
        hunt_id,
        clue_id,
        filename=file.filename or "upload",
        content_type=file.content_type or "",
        data=data,
    )
    media_type = media.media_type_for(file.content_type)
    return MediaUploadResponse(media_url=path, media_type=media_type.value)


@router.delete(
    "/hunts/{hunt_id}/clues/{clue_id}/media", response_model=StatusResponse
)
def delete_clue_media(
    hunt_id: str, clue_id: str, service: HuntService = Depends(get_hunt_service)
):
    service.remove_media(hunt_id, clue_id)
    return StatusResponse(status="ok")


@router.get("/hunts/{hunt_id}/clues/{clue_id}", response_model=ClueViewResponse)
def view_clue(
    hunt_id: str,
    clue_id: str,
    service: HuntService = Depends(get_hunt_service),
    services: Services = Depends(get_services),
):
    """
    Clue page opened from a scanned QR code.

    Warms the media cache for the whole hunt so later steps load offline.
    """
    view = open_clue(service, hunt_id, clue_id)
    services.media_cache.prefetch(view.hunt.media_paths())
    return ClueViewResponse(
        hunt_id=view.hunt.id,
        hunt_name=view.hunt.title,
        clue=ClueResponse.from_clue(view.clue),
        position=view.position,
        total=view.total,
        is_last=view.is_last,
        media_link=_media_link(services, view.clue.media_url),
    )


@router.get("/hunts/{hunt_id}/print", response_class=HTMLResponse)
def print_hunt(
    hunt_id: str,
    service: HuntService = Depends(get_hunt_service),
    services: Services = Depends(get_services),
):
    hunt = service.get_hunt(hunt_id)
    if hunt is None:
        raise HTTPException(status_code=404, detail="Hunt not found")
    return HTMLResponse(render_print_sheet(hunt, services.settings.public_base_url))


@router.get("/media")
def get_media(
    ref: str = Query(..., description="Stored media reference"),
    cache: MediaCache = Depends(get_media_cache),
):
    """Serve media bytes from the persistent cache without pinning a handle."""
    if is_external_url(ref):
        return RedirectResponse(ref)
    try:
        data = cache.get_file(ref)
    except FileNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Media not found") from exc
    headers = {}
    fetched_at = cache.cached_at(ref)
    if fetched_at is not None:
        headers["Last-Modified"] = formatdate(fetched_at, usegmt=True)
    return Response(
        content=data, media_type=guess_content_type(ref), headers=headers
    )
