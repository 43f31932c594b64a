"""Decorative overlays and badge labels available to the card creator."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CardOverlay:
    id: str
    label: str
    url: str
    color: str | None = None
    description: str | None = None

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "url": self.url,
            "color": self.color,
            "description": self.description,
        }


CARD_OVERLAYS: tuple[CardOverlay, ...] = (
    CardOverlay(
        id="yellow",
        label="Yellow",
        url="https://file-upload.replit.app/api/storage/images%2F1767194323312-Speaker-card-overlay5.png",
        color="#F59E0B",
        description="Classic yellow summit overlay",
    ),
    CardOverlay(
        id="blue",
        label="Blue",
        url="https://file-upload.replit.app/api/storage/images%2F1767297702156-Speaker-card-overlay-blue.png",
        color="#3B82F6",
        description="Blue tinted overlay",
    ),
)

DEFAULT_OVERLAY_ID = "yellow"

BADGE_LABELS: tuple[str, ...] = ("Speaker", "Sponsor", "Attendee", "Volunteer")
DEFAULT_BADGE = "Speaker"


def get_overlay(overlay_id: str | None) -> CardOverlay | None:
    for overlay in CARD_OVERLAYS:
        if overlay.id == overlay_id:
            return overlay
    return None


def default_overlay() -> CardOverlay:
    return get_overlay(DEFAULT_OVERLAY_ID) or CARD_OVERLAYS[0]


def normalize_badge(label: str | None) -> str:
    """Match a badge label case-insensitively against the fixed set."""
    if not label:
        return DEFAULT_BADGE
    for badge in BADGE_LABELS:
        if badge.lower() == label.strip().lower():
            return badge
    raise ValueError(f"Unknown badge label {label!r}")
