"""Sticker geometry: hit-testing, dragging and aspect-locked resizing."""

from __future__ import annotations

import enum
import math
from dataclasses import asdict, dataclass
from typing import Sequence


class StickerAction(str, enum.Enum):
    DRAG = "drag"
    RESIZE = "resize"
    DELETE = "delete"


@dataclass
class Sticker:
    """A sponsor logo placed on the card.

    ``x``/``y``/``width``/``height`` describe the logo itself; the white
    backing extends ``padding`` pixels beyond it on every side.
    """

    id: str
    url: str
    proxied_url: str
    x: float
    y: float
    width: float
    height: float
    aspect_ratio: float
    name: str

    def backing_box(self, padding: float) -> tuple[float, float, float, float]:
        return (
            self.x - padding,
            self.y - padding,
            self.x + self.width + padding,
            self.y + self.height + padding,
        )

    def contains(self, px: float, py: float, padding: float) -> bool:
        left, top, right, bottom = self.backing_box(padding)
        return left <= px <= right and top <= py <= bottom

    def delete_anchor(self, padding: float) -> tuple[float, float]:
        return self.x + self.width + padding, self.y - padding

    def resize_anchor(self, padding: float) -> tuple[float, float]:
        return self.x + self.width + padding, self.y + self.height + padding

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class HitResult:
    sticker: Sticker | None = None
    action: StickerAction | None = None


MISS = HitResult()


def _within(px: float, py: float, anchor: tuple[float, float], radius: float) -> bool:
    return math.hypot(px - anchor[0], py - anchor[1]) <= radius


def hit_test(
    stickers: Sequence[Sticker],
    px: float,
    py: float,
    *,
    selected_id: str | None,
    padding: float,
    handle_radius: float,
) -> HitResult:
    """Resolve what a pointer-down at ``(px, py)`` grabs.

    Delete and resize targets belong to the selected sticker only. Otherwise
    the topmost sticker whose backing contains the point is dragged.
    """
    selected = next((s for s in stickers if s.id == selected_id), None)
    if selected is not None:
        if _within(px, py, selected.delete_anchor(padding), handle_radius):
            return HitResult(selected, StickerAction.DELETE)
        if _within(px, py, selected.resize_anchor(padding), handle_radius):
            return HitResult(selected, StickerAction.RESIZE)
    for sticker in reversed(stickers):
        if sticker.contains(px, py, padding):
            return HitResult(sticker, StickerAction.DRAG)
    return MISS


def grab_offset(sticker: Sticker, px: float, py: float) -> tuple[float, float]:
    return px - sticker.x, py - sticker.y


def drag_to(
    sticker: Sticker, px: float, py: float, offset: tuple[float, float]
) -> None:
    sticker.x = px - offset[0]
    sticker.y = py - offset[1]


def resize_to(sticker: Sticker, px: float, *, padding: float, min_width: float) -> None:
    """Resize from the bottom-right handle; height always follows the width."""
    sticker.width = max(min_width, px - (sticker.x + padding))
    sticker.height = sticker.width / sticker.aspect_ratio
