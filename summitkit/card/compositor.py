"""Pillow compositor for promotional cards.

A card is a fixed square canvas built in layers: black background, the
member photo cover-fitted and clipped into a centred square, the decorative
overlay at full size, burned-in text, and finally the sponsor stickers in
z-order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from io import BytesIO
from typing import Mapping

from PIL import Image, ImageDraw, ImageFilter, ImageFont

from ..utils import slugify
from .images import ImageLoader, ImageLoadError
from .overlays import DEFAULT_BADGE, DEFAULT_OVERLAY_ID, default_overlay, get_overlay
from .stickers import Sticker

logger = logging.getLogger("uvicorn.error")

TEXT_COLOR = (26, 26, 26, 255)
NAME_FONT_SIZE = 56
TITLE_FONT_SIZE = 36
BADGE_FONT_SIZE = 72
TITLE_OFFSET = 65
STICKER_CORNER_RADIUS = 12
SELECTION_COLOR = (59, 130, 246, 255)
DELETE_COLOR = (239, 68, 68, 255)
RENDER_ERROR_MESSAGE = "Failed to generate card. Please try again."


class CardRenderError(Exception):
    """The photo or overlay could not be loaded; nothing was rendered."""

    def __init__(self, cause: ImageLoadError | None = None):
        self.cause = cause
        super().__init__(RENDER_ERROR_MESSAGE)


@dataclass
class CardState:
    photo_url: str | None = None
    overlay_id: str = DEFAULT_OVERLAY_ID
    name: str = ""
    title: str = ""
    badge: str = DEFAULT_BADGE
    stickers: list[Sticker] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "photo_url": self.photo_url,
            "overlay_id": self.overlay_id,
            "name": self.name,
            "title": self.title,
            "badge": self.badge,
            "stickers": [s.as_dict() for s in self.stickers],
        }


@dataclass(frozen=True)
class CardLayout:
    canvas_size: int = 1080
    photo_fraction: float = 0.6
    text_padding: int = 60
    sticker_padding: int = 12
    handle_radius: int = 16
    font_path: str = "DejaVuSans-Bold.ttf"
    regular_font_path: str = "DejaVuSans.ttf"
    serif_italic_font_path: str = "DejaVuSerif-BoldItalic.ttf"

    @classmethod
    def from_settings(cls, settings) -> "CardLayout":
        return cls(
            canvas_size=settings.canvas_size,
            photo_fraction=settings.photo_fraction,
            text_padding=settings.text_padding,
            sticker_padding=settings.sticker_padding,
            handle_radius=settings.handle_radius,
            font_path=settings.font_path,
            regular_font_path=settings.regular_font_path,
            serif_italic_font_path=settings.serif_italic_font_path,
        )

    @property
    def photo_size(self) -> float:
        return self.canvas_size * self.photo_fraction

    @property
    def photo_offset(self) -> float:
        return (self.canvas_size - self.photo_size) / 2

    @property
    def photo_box(self) -> tuple[int, int, int, int]:
        left = round(self.photo_offset)
        size = round(self.photo_size)
        return left, left, left + size, left + size


def cover_fit(
    image_size: tuple[int, int], layout: CardLayout
) -> tuple[float, float, float, float]:
    """Return ``(offset_x, offset_y, width, height)`` covering the photo region.

    Landscape images fill the region height and overflow horizontally;
    square and portrait images fill the width and overflow vertically. The
    overflow is split evenly on both sides.
    """
    width, height = image_size
    size = layout.photo_size
    offset = layout.photo_offset
    aspect_ratio = width / height
    if aspect_ratio > 1:
        draw_height = size
        draw_width = size * aspect_ratio
        return offset - (draw_width - size) / 2, offset, draw_width, draw_height
    draw_width = size
    draw_height = size / aspect_ratio
    return offset, offset - (draw_height - size) / 2, draw_width, draw_height


@lru_cache(maxsize=32)
def _load_font(path: str, size: int) -> ImageFont.FreeTypeFont:
    try:
        return ImageFont.truetype(path, size=size)
    except OSError:
        logger.debug("Font %s unavailable, using the bundled default", path)
        return ImageFont.load_default(size=size)


def _draw_photo(canvas: Image.Image, photo: Image.Image, layout: CardLayout) -> None:
    offset_x, offset_y, draw_width, draw_height = cover_fit(photo.size, layout)
    left, top, right, bottom = layout.photo_box
    scaled = photo.resize(
        (max(1, round(draw_width)), max(1, round(draw_height))), Image.LANCZOS
    )
    # Crop to the region so nothing spills outside it.
    crop_left = round(left - offset_x)
    crop_top = round(top - offset_y)
    clipped = scaled.crop(
        (crop_left, crop_top, crop_left + (right - left), crop_top + (bottom - top))
    )
    canvas.alpha_composite(clipped, (left, top))


def _draw_shadowed_text(
    canvas: Image.Image,
    position: tuple[int, int],
    text: str,
    font: ImageFont.FreeTypeFont,
    *,
    anchor: str,
    shadow_alpha: int,
    blur: float,
) -> None:
    if not text:
        return
    shadow = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
    ImageDraw.Draw(shadow).text(
        (position[0] + 1, position[1] + 1),
        text,
        font=font,
        fill=(255, 255, 255, shadow_alpha),
        anchor=anchor,
    )
    canvas.alpha_composite(shadow.filter(ImageFilter.GaussianBlur(blur)))
    ImageDraw.Draw(canvas).text(
        position, text, font=font, fill=TEXT_COLOR, anchor=anchor
    )


def _draw_text(canvas: Image.Image, state: CardState, layout: CardLayout) -> None:
    padding = layout.text_padding
    name_font = _load_font(layout.font_path, NAME_FONT_SIZE)
    title_font = _load_font(layout.regular_font_path, TITLE_FONT_SIZE)
    badge_font = _load_font(layout.serif_italic_font_path, BADGE_FONT_SIZE)

    _draw_shadowed_text(
        canvas, (padding, padding), state.name, name_font,
        anchor="la", shadow_alpha=128, blur=2,
    )
    _draw_shadowed_text(
        canvas, (padding, padding + TITLE_OFFSET), state.title, title_font,
        anchor="la", shadow_alpha=128, blur=2,
    )
    edge = layout.canvas_size - padding
    _draw_shadowed_text(
        canvas, (edge, edge), state.badge, badge_font,
        anchor="rd", shadow_alpha=77, blur=1,
    )


def _draw_handle(draw: ImageDraw.ImageDraw, center: tuple[float, float], radius: int, fill) -> None:
    cx, cy = center
    draw.ellipse(
        (cx - radius, cy - radius, cx + radius, cy + radius),
        fill=fill,
        outline=(255, 255, 255, 255),
        width=3,
    )


def _draw_sticker(
    canvas: Image.Image,
    sticker: Sticker,
    logo: Image.Image | None,
    layout: CardLayout,
    *,
    selected: bool,
    export: bool,
) -> None:
    padding = layout.sticker_padding
    draw = ImageDraw.Draw(canvas)
    draw.rounded_rectangle(
        sticker.backing_box(padding),
        radius=STICKER_CORNER_RADIUS,
        fill=(255, 255, 255, 255),
        outline=SELECTION_COLOR if selected and not export else None,
        width=4,
    )
    if logo is not None:
        size = (max(1, round(sticker.width)), max(1, round(sticker.height)))
        resized = logo.resize(size, Image.LANCZOS)
        canvas.paste(resized, (round(sticker.x), round(sticker.y)), resized)
    if selected and not export:
        radius = layout.handle_radius
        _draw_handle(draw, sticker.resize_anchor(padding), radius, SELECTION_COLOR)
        cx, cy = sticker.delete_anchor(padding)
        _draw_handle(draw, (cx, cy), radius, DELETE_COLOR)
        arm = radius // 2
        draw.line((cx - arm, cy - arm, cx + arm, cy + arm), fill=(255, 255, 255, 255), width=3)
        draw.line((cx - arm, cy + arm, cx + arm, cy - arm), fill=(255, 255, 255, 255), width=3)


def compose(
    state: CardState,
    *,
    photo: Image.Image | None,
    overlay: Image.Image,
    sticker_images: Mapping[str, Image.Image],
    layout: CardLayout,
    selected_id: str | None = None,
    export: bool = False,
) -> Image.Image:
    """Draw every layer of a card from already-loaded images."""
    size = layout.canvas_size
    canvas = Image.new("RGBA", (size, size), (0, 0, 0, 255))
    if photo is not None:
        _draw_photo(canvas, photo, layout)
    overlay_layer = overlay if overlay.size == (size, size) else overlay.resize((size, size), Image.LANCZOS)
    canvas.alpha_composite(overlay_layer)
    _draw_text(canvas, state, layout)
    for sticker in state.stickers:
        _draw_sticker(
            canvas,
            sticker,
            sticker_images.get(sticker.id),
            layout,
            selected=sticker.id == selected_id,
            export=export,
        )
    return canvas.convert("RGB")


class Compositor:
    """Loads the photo and overlay for a card state and renders it."""

    def __init__(self, loader: ImageLoader, layout: CardLayout | None = None):
        self.loader = loader
        self.layout = layout or CardLayout()

    def overlay_url(self, overlay_id: str) -> str:
        overlay = get_overlay(overlay_id) or default_overlay()
        return overlay.url

    def render(
        self,
        state: CardState,
        *,
        sticker_images: Mapping[str, Image.Image] | None = None,
        selected_id: str | None = None,
        export: bool = False,
    ) -> Image.Image:
        try:
            photo = (
                self.loader.load(state.photo_url, label="photo")
                if state.photo_url
                else None
            )
            overlay = self.loader.load(self.overlay_url(state.overlay_id), label="overlay")
        except ImageLoadError as exc:
            logger.error("Card render aborted: %s", exc)
            raise CardRenderError(exc) from exc
        return compose(
            state,
            photo=photo,
            overlay=overlay,
            sticker_images=sticker_images or {},
            layout=self.layout,
            selected_id=selected_id,
            export=export,
        )


def encode_jpeg(image: Image.Image, *, quality: int = 95) -> bytes:
    buffer = BytesIO()
    image.convert("RGB").save(buffer, format="JPEG", quality=quality)
    return buffer.getvalue()


def encode_png(image: Image.Image) -> bytes:
    buffer = BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def card_filename(name: str | None, badge: str | None = None) -> str:
    """Download name derived from the displayed name."""
    slug = slugify(name or "")
    if not slug:
        return "promo-card.jpg"
    suffix = slugify(badge or DEFAULT_BADGE) or "promo"
    return f"{slug}-{suffix}-card.jpg"
