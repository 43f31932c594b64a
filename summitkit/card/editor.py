"""Interactive card editing: pointer handling, stickers and redraw pacing."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable

from PIL import Image

from .compositor import CardState, Compositor, card_filename, encode_jpeg
from .images import ImageLoadError, proxied_url
from .overlays import get_overlay, normalize_badge
from .stickers import (
    HitResult,
    Sticker,
    StickerAction,
    drag_to,
    grab_offset,
    hit_test,
    resize_to,
)

logger = logging.getLogger("uvicorn.error")

_UNSET = object()


@dataclass(frozen=True)
class Notification:
    level: str
    title: str
    message: str

    def as_dict(self) -> dict:
        return {"level": self.level, "title": self.title, "message": self.message}


class FrameThrottle:
    """Collapse redraw requests so at most one frame is drawn per interval."""

    def __init__(self, interval: float, clock: Callable[[], float] = time.monotonic):
        self.interval = interval
        self._clock = clock
        self._pending = False
        self._last_frame_at: float | None = None
        self.frames_drawn = 0

    @property
    def pending(self) -> bool:
        return self._pending

    def request(self) -> None:
        self._pending = True

    def due(self) -> bool:
        if not self._pending:
            return False
        if self._last_frame_at is None:
            return True
        return self._clock() - self._last_frame_at >= self.interval

    def mark_drawn(self) -> None:
        self._pending = False
        self._last_frame_at = self._clock()
        self.frames_drawn += 1


@dataclass
class _Interaction:
    sticker_id: str
    action: StickerAction
    offset: tuple[float, float] = (0.0, 0.0)


class CardEditor:
    """Editing session for one card.

    State is held in memory only. Pointer events mutate stickers and mark the
    canvas dirty; frames are produced on request through ``frame()``.
    """

    def __init__(
        self,
        compositor: Compositor,
        state: CardState | None = None,
        *,
        sticker_default_width: float = 200,
        sticker_min_width: float = 60,
        frame_interval: float = 1 / 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.compositor = compositor
        self.state = state or CardState()
        self.sticker_default_width = sticker_default_width
        self.sticker_min_width = sticker_min_width
        self.selected_id: str | None = None
        self.sticker_images: dict[str, Image.Image] = {}
        self.notifications: list[Notification] = []
        self.throttle = FrameThrottle(frame_interval, clock)
        self.lock = threading.RLock()
        self._interaction: _Interaction | None = None
        self._frame: Image.Image | None = None
        self.throttle.request()

    @property
    def layout(self):
        return self.compositor.layout

    @property
    def stickers(self) -> list[Sticker]:
        return self.state.stickers

    def _sticker(self, sticker_id: str | None) -> Sticker | None:
        return next((s for s in self.state.stickers if s.id == sticker_id), None)

    def notify(self, level: str, title: str, message: str) -> Notification:
        notification = Notification(level=level, title=title, message=message)
        self.notifications.append(notification)
        return notification

    def drain_notifications(self) -> list[Notification]:
        drained, self.notifications = self.notifications, []
        return drained

    def update(
        self,
        *,
        photo_url=_UNSET,
        overlay_id=_UNSET,
        name=_UNSET,
        title=_UNSET,
        badge=_UNSET,
    ) -> None:
        if overlay_id is not _UNSET:
            if get_overlay(overlay_id) is None:
                raise ValueError(f"Unknown overlay {overlay_id!r}")
            self.state.overlay_id = overlay_id
        if badge is not _UNSET:
            self.state.badge = normalize_badge(badge)
        if photo_url is not _UNSET:
            self.state.photo_url = photo_url or None
        if name is not _UNSET:
            self.state.name = name or ""
        if title is not _UNSET:
            self.state.title = title or ""
        self.throttle.request()

    def load_logo(self, url: str, *, name: str) -> Image.Image | None:
        """Fetch a logo without touching editor state; ``None`` on failure."""
        try:
            return self.compositor.loader.load(url, label=name)
        except ImageLoadError as exc:
            logger.warning("Sticker %s not added: %s", name, exc.reason)
            return None

    def add_sticker(self, *, url: str, name: str, logo=_UNSET) -> Sticker | None:
        """Place a logo at the canvas centre.

        ``logo`` may be preloaded with ``load_logo`` so the fetch happens
        outside ``self.lock``. A logo that fails to load leaves the card
        untouched and queues one error notification naming the asset.
        """
        if logo is _UNSET:
            logo = self.load_logo(url, name=name)
        if logo is None:
            self.notify("error", "Error", f"Failed to load logo for {name}")
            return None
        aspect_ratio = logo.width / logo.height
        width = float(self.sticker_default_width)
        height = width / aspect_ratio
        center = self.layout.canvas_size / 2
        sticker = Sticker(
            id=uuid.uuid4().hex,
            url=url,
            proxied_url=proxied_url(url),
            x=center - width / 2,
            y=center - height / 2,
            width=width,
            height=height,
            aspect_ratio=aspect_ratio,
            name=name,
        )
        self.state.stickers.append(sticker)
        self.sticker_images[sticker.id] = logo
        self.selected_id = sticker.id
        self.throttle.request()
        return sticker

    def remove_sticker(self, sticker_id: str) -> bool:
        sticker = self._sticker(sticker_id)
        if sticker is None:
            return False
        self.state.stickers.remove(sticker)
        self.sticker_images.pop(sticker_id, None)
        if self.selected_id == sticker_id:
            self.selected_id = None
        if self._interaction and self._interaction.sticker_id == sticker_id:
            self._interaction = None
        self.throttle.request()
        return True

    def reset(self) -> None:
        self.state.stickers.clear()
        self.sticker_images.clear()
        self.selected_id = None
        self._interaction = None
        self.throttle.request()

    def pointer_down(self, x: float, y: float) -> HitResult:
        hit = hit_test(
            self.state.stickers,
            x,
            y,
            selected_id=self.selected_id,
            padding=self.layout.sticker_padding,
            handle_radius=self.layout.handle_radius,
        )
        self._interaction = None
        if hit.sticker is None:
            self.selected_id = None
        elif hit.action is StickerAction.DELETE:
            self.remove_sticker(hit.sticker.id)
        else:
            self.selected_id = hit.sticker.id
            offset = (
                grab_offset(hit.sticker, x, y)
                if hit.action is StickerAction.DRAG
                else (0.0, 0.0)
            )
            self._interaction = _Interaction(hit.sticker.id, hit.action, offset)
        self.throttle.request()
        return hit

    def pointer_move(self, x: float, y: float) -> bool:
        if self._interaction is None:
            return False
        sticker = self._sticker(self._interaction.sticker_id)
        if sticker is None:
            self._interaction = None
            return False
        if self._interaction.action is StickerAction.DRAG:
            drag_to(sticker, x, y, self._interaction.offset)
        else:
            resize_to(
                sticker,
                x,
                padding=self.layout.sticker_padding,
                min_width=self.sticker_min_width,
            )
        self.throttle.request()
        return True

    def pointer_up(self) -> None:
        self._interaction = None

    @property
    def interaction(self) -> str | None:
        return self._interaction.action.value if self._interaction else None

    def frame(self) -> Image.Image:
        """Return the current preview, redrawing at most once per interval."""
        if self._frame is None or self.throttle.due():
            self._frame = self.compositor.render(
                self.state,
                sticker_images=self.sticker_images,
                selected_id=self.selected_id,
            )
            self.throttle.mark_drawn()
        return self._frame

    def export(self, *, quality: int = 95) -> tuple[bytes, str]:
        """Render without editing affordances and encode as JPEG."""
        image = self.compositor.render(
            self.state,
            sticker_images=self.sticker_images,
            selected_id=self.selected_id,
            export=True,
        )
        self.throttle.request()
        return encode_jpeg(image, quality=quality), card_filename(
            self.state.name, self.state.badge
        )

    def as_dict(self) -> dict:
        payload = self.state.as_dict()
        payload["selected_id"] = self.selected_id
        payload["interaction"] = self.interaction
        return payload
