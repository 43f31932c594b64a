"""iCalendar (.ics) export for events."""

from __future__ import annotations

import html
import re
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from summitkit.models import Event


_tag_pattern = re.compile(r"<[^>]+>")


def _format_utc(dt: datetime) -> str:
    """Format a datetime as an RFC5545 UTC timestamp."""

    aware = dt.replace(tzinfo=UTC) if dt.tzinfo is None else dt.astimezone(UTC)
    return aware.replace(microsecond=0).strftime("%Y%m%dT%H%M%SZ")


def _escape_text(value: str | None) -> str:
    """Strip HTML from rich-text fields and escape ICS reserved characters."""

    if not value:
        return ""
    stripped = _tag_pattern.sub("", html.unescape(value))
    normalized = stripped.replace("\r\n", "\n").replace("\r", "\n").strip()
    return (
        normalized.replace("\\", "\\\\")
        .replace(";", r"\;")
        .replace(",", r"\,")
        .replace("\n", "\\n")
    )


def _fold(line: str) -> str:
    """Fold content lines longer than 75 octets."""

    encoded = line.encode("utf-8")
    if len(encoded) <= 75:
        return line
    parts: list[str] = []
    current = ""
    for char in line:
        limit = 75 if not parts else 74
        if len((current + char).encode("utf-8")) > limit:
            parts.append(current)
            current = char
        else:
            current += char
    parts.append(current)
    return "\r\n ".join(parts)


def generate_ics(event: Event, *, now: datetime | None = None) -> str:
    """Return ICS text for an event."""

    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//SummitKit//EN",
        "BEGIN:VEVENT",
        f"UID:{event.id}@summitkit",
        f"DTSTAMP:{_format_utc(now or datetime.now(UTC))}",
        f"DTSTART:{_format_utc(event.start_time)}",
        f"DTEND:{_format_utc(event.end_time)}",
        f"SUMMARY:{_escape_text(event.title)}",
        f"DESCRIPTION:{_escape_text(event.description)}",
        f"LOCATION:{_escape_text(event.location)}",
    ]
    if event.url:
        lines.append(f"URL:{event.url}")
    lines.extend(["END:VEVENT", "END:VCALENDAR"])
    return "\r\n".join(_fold(line) for line in lines) + "\r\n"
