from __future__ import annotations

import pytest

from summitkit.card.stickers import (
    MISS,
    Sticker,
    StickerAction,
    drag_to,
    grab_offset,
    hit_test,
    resize_to,
)

PADDING = 12
RADIUS = 16


def _sticker(sticker_id: str = "a", *, x=100.0, y=100.0, width=200.0, ratio=2.0) -> Sticker:
    return Sticker(
        id=sticker_id,
        url=f"https://cdn.example.com/{sticker_id}.png",
        proxied_url=f"/api/v1/image-proxy?url={sticker_id}",
        x=x,
        y=y,
        width=width,
        height=width / ratio,
        aspect_ratio=ratio,
        name=sticker_id.upper(),
    )


def _hit(stickers, px, py, selected_id=None):
    return hit_test(
        stickers, px, py, selected_id=selected_id, padding=PADDING, handle_radius=RADIUS
    )


def test_backing_and_anchors_include_padding():
    sticker = _sticker()
    assert sticker.backing_box(PADDING) == (88, 88, 312, 212)
    assert sticker.delete_anchor(PADDING) == (312, 88)
    assert sticker.resize_anchor(PADDING) == (312, 212)


def test_hit_test_selected_sticker_handles():
    sticker = _sticker()
    delete = _hit([sticker], 312, 88, selected_id="a")
    resize = _hit([sticker], 315, 210, selected_id="a")
    assert delete.action is StickerAction.DELETE
    assert resize.action is StickerAction.RESIZE
    assert delete.sticker is sticker


def test_hit_test_never_offers_handles_for_unselected_sticker():
    sticker = _sticker()
    for point in [(312, 88), (312, 212), (320, 220), (305, 95)]:
        result = _hit([sticker], *point, selected_id=None)
        assert result.action in (None, StickerAction.DRAG)
    other = _sticker("b", x=600, y=600)
    result = _hit([sticker, other], 312, 88, selected_id="b")
    assert result.action is not StickerAction.DELETE


def test_hit_test_prefers_topmost_sticker():
    bottom = _sticker("bottom", x=100, y=100)
    top = _sticker("top", x=150, y=120)
    result = _hit([bottom, top], 200, 150)
    assert result.sticker is top
    assert result.action is StickerAction.DRAG


def test_hit_test_backing_padding_counts_as_sticker():
    sticker = _sticker()
    assert _hit([sticker], 90, 90).action is StickerAction.DRAG
    assert _hit([sticker], 80, 80) == MISS


def test_drag_keeps_grab_offset():
    sticker = _sticker()
    offset = grab_offset(sticker, 150, 130)
    assert offset == (50, 30)
    drag_to(sticker, 400, 500, offset)
    assert (sticker.x, sticker.y) == (350, 470)
    assert (sticker.width, sticker.height) == (200, 100)


@pytest.mark.parametrize("pointer_x", [-500, 0, 120, 150, 312, 500, 1079, 4000])
def test_resize_keeps_aspect_ratio(pointer_x):
    sticker = _sticker(ratio=1.6)
    resize_to(sticker, pointer_x, padding=PADDING, min_width=60)
    assert sticker.width >= 60
    assert sticker.width / sticker.height == pytest.approx(1.6)


def test_resize_tracks_pointer_from_handle():
    sticker = _sticker()
    # Grabbing the handle where it sits leaves the size unchanged.
    resize_to(sticker, 312, padding=PADDING, min_width=60)
    assert sticker.width == pytest.approx(200)
    resize_to(sticker, 412, padding=PADDING, min_width=60)
    assert sticker.width == pytest.approx(300)
    assert sticker.height == pytest.approx(150)


def test_resize_clamps_to_min_width():
    sticker = _sticker()
    resize_to(sticker, 0, padding=PADDING, min_width=60)
    assert sticker.width == 60
    assert sticker.height == pytest.approx(30)
