"""Process-wide card creator objects built from settings."""

from __future__ import annotations

from ..config import settings
from .compositor import CardLayout, CardState, Compositor
from .editor import CardEditor
from .images import ImageLoader
from .sessions import CardSessionStore

image_loader = ImageLoader(
    uploads_dir=settings.uploads_dir,
    timeout=settings.image_fetch_timeout,
    max_bytes=settings.image_max_bytes,
    max_pixels=settings.image_max_pixels,
)
compositor = Compositor(image_loader, CardLayout.from_settings(settings))
card_sessions = CardSessionStore(settings.card_session_ttl)


def new_editor(state: CardState | None = None) -> CardEditor:
    return CardEditor(
        compositor,
        state,
        sticker_default_width=settings.sticker_default_width,
        sticker_min_width=settings.sticker_min_width,
        frame_interval=settings.frame_interval,
    )


def purge_idle_sessions() -> int:
    return card_sessions.purge_idle()
