"""Card creator routes: editing sessions, previews, export and the image proxy."""

from __future__ import annotations

import logging
from typing import Literal

from fastapi import Depends, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from .auth import optional_member
from .card.compositor import CardRenderError, CardState, encode_png
from .card.images import ImageLoadError, fetch_remote_image
from .card.overlays import (
    BADGE_LABELS,
    CARD_OVERLAYS,
    DEFAULT_BADGE,
    DEFAULT_OVERLAY_ID,
    get_overlay,
    normalize_badge,
)
from .card.service import card_sessions, image_loader, new_editor
from .config import settings
from .database import get_db
from .models import Member, Sponsor

logger = logging.getLogger("uvicorn.error")

PROXY_CACHE_SECONDS = 86400


class CardCreatePayload(BaseModel):
    photo_url: str | None = None
    overlay_id: str = DEFAULT_OVERLAY_ID
    name: str | None = None
    title: str | None = None
    badge: str = DEFAULT_BADGE


class CardUpdatePayload(BaseModel):
    photo_url: str | None = None
    overlay_id: str | None = None
    name: str | None = None
    title: str | None = None
    badge: str | None = None


class StickerCreatePayload(BaseModel):
    sponsor_id: str | None = None
    url: str | None = None
    name: str | None = None


class PointerPayload(BaseModel):
    type: Literal["down", "move", "up"]
    x: float = 0.0
    y: float = 0.0


def _ensure_card(card_id: str):
    session = card_sessions.get(card_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Card session not found")
    return session


def _card_payload(card) -> dict:
    editor = card.editor
    payload = editor.as_dict()
    payload["id"] = card.id
    payload["notifications"] = [n.as_dict() for n in editor.drain_notifications()]
    return payload


def list_overlays():
    return {
        "overlays": [overlay.as_dict() for overlay in CARD_OVERLAYS],
        "badges": list(BADGE_LABELS),
        "default_overlay": DEFAULT_OVERLAY_ID,
        "default_badge": DEFAULT_BADGE,
    }


def create_card(
    payload: CardCreatePayload,
    member: Member | None = Depends(optional_member),
):
    if get_overlay(payload.overlay_id) is None:
        raise HTTPException(status_code=400, detail="Unknown overlay")
    try:
        badge = normalize_badge(payload.badge)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    name = payload.name
    title = payload.title
    if member is not None:
        name = name if name is not None else member.display_name
        title = title if title is not None else (member.job_title or "")
    state = CardState(
        photo_url=payload.photo_url or None,
        overlay_id=payload.overlay_id,
        name=name or "",
        title=title or "",
        badge=badge,
    )
    card = card_sessions.create(
        new_editor(state), member_id=member.id if member else None
    )
    logger.info("Card session %s created", card.id)
    return JSONResponse({"card": _card_payload(card)}, status_code=201)


def get_card(card_id: str):
    card = _ensure_card(card_id)
    with card.editor.lock:
        return {"card": _card_payload(card)}


def update_card(card_id: str, payload: CardUpdatePayload):
    card = _ensure_card(card_id)
    data = payload.model_dump(exclude_unset=True)
    with card.editor.lock:
        try:
            card.editor.update(**data)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"card": _card_payload(card)}


def add_card_sticker(
    card_id: str,
    payload: StickerCreatePayload,
    db: Session = Depends(get_db),
):
    card = _ensure_card(card_id)
    if payload.sponsor_id:
        sponsor = db.get(Sponsor, payload.sponsor_id)
        if not sponsor:
            raise HTTPException(status_code=404, detail="Sponsor not found")
        url, name = sponsor.logo_url, sponsor.name
    elif payload.url:
        url, name = payload.url, (payload.name or "logo")
    else:
        raise HTTPException(status_code=400, detail="Provide sponsor_id or url")
    logo = card.editor.load_logo(url, name=name)
    with card.editor.lock:
        sticker = card.editor.add_sticker(url=url, name=name, logo=logo)
        body = {"card": _card_payload(card)}
    if sticker is None:
        body["detail"] = f"Failed to load logo for {name}"
        return JSONResponse(body, status_code=422)
    body["sticker"] = sticker.as_dict()
    return JSONResponse(body, status_code=201)


def delete_card_sticker(card_id: str, sticker_id: str):
    card = _ensure_card(card_id)
    with card.editor.lock:
        if not card.editor.remove_sticker(sticker_id):
            raise HTTPException(status_code=404, detail="Sticker not found")
        return {"card": _card_payload(card)}


def card_pointer(card_id: str, payload: PointerPayload):
    """Feed one pointer event (canvas coordinates) into the editor."""
    card = _ensure_card(card_id)
    editor = card.editor
    with editor.lock:
        hit = None
        if payload.type == "down":
            result = editor.pointer_down(payload.x, payload.y)
            hit = result.action.value if result.action else None
        elif payload.type == "move":
            editor.pointer_move(payload.x, payload.y)
        else:
            editor.pointer_up()
        body = {"card": _card_payload(card), "hit": hit}
        body["redraw_pending"] = editor.throttle.pending
        return body


def reset_card(card_id: str):
    card = _ensure_card(card_id)
    with card.editor.lock:
        card.editor.reset()
        return {"card": _card_payload(card)}


def card_preview(card_id: str):
    card = _ensure_card(card_id)
    with card.editor.lock:
        image = card.editor.frame()
    return Response(
        content=encode_png(image),
        media_type="image/png",
        headers={"Cache-Control": "no-store"},
    )


def export_card(card_id: str):
    card = _ensure_card(card_id)
    with card.editor.lock:
        data, filename = card.editor.export(quality=settings.export_quality)
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return Response(content=data, media_type="image/jpeg", headers=headers)


def delete_card(card_id: str):
    if not card_sessions.discard(card_id):
        raise HTTPException(status_code=404, detail="Card session not found")
    return Response(status_code=204)


def image_proxy(url: str = Query(..., min_length=1)):
    """Relay a remote image so canvases can load it from this origin."""
    try:
        data, content_type = fetch_remote_image(
            image_loader.client, url, max_bytes=settings.image_max_bytes
        )
    except ImageLoadError as exc:
        logger.warning("Image proxy failed for %s: %s", url, exc.reason)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return Response(
        content=data,
        media_type=content_type,
        headers={"Cache-Control": f"public, max-age={PROXY_CACHE_SECONDS}"},
    )


async def card_render_error_handler(request: Request, exc: CardRenderError):
    return JSONResponse({"detail": str(exc)}, status_code=502)


def register_card_routes(app):
    """Register card creator routes on the FastAPI app."""
    app.add_exception_handler(CardRenderError, card_render_error_handler)
    app.get("/api/v1/overlays")(list_overlays)
    app.get("/api/v1/image-proxy")(image_proxy)
    app.post("/api/v1/cards", status_code=201)(create_card)
    app.get("/api/v1/cards/{card_id}")(get_card)
    app.patch("/api/v1/cards/{card_id}")(update_card)
    app.delete("/api/v1/cards/{card_id}", status_code=204)(delete_card)
    app.post("/api/v1/cards/{card_id}/stickers", status_code=201)(add_card_sticker)
    app.delete("/api/v1/cards/{card_id}/stickers/{sticker_id}")(delete_card_sticker)
    app.post("/api/v1/cards/{card_id}/pointer")(card_pointer)
    app.post("/api/v1/cards/{card_id}/reset")(reset_card)
    app.get("/api/v1/cards/{card_id}/preview.png")(card_preview)
    app.get("/api/v1/cards/{card_id}/export.jpg")(export_card)
