"""Small helpers shared across SummitKit: time, slugs and post formatting."""

from __future__ import annotations

from datetime import UTC, datetime
import html
import re
import unicodedata

from markupsafe import Markup

_slug_invalid = re.compile(r"[^a-z0-9]+")

_INLINE_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"`([^`]+)`"), r"<code>\1</code>"),
    (re.compile(r"\*\*(.+?)\*\*"), r"<strong>\1</strong>"),
    (re.compile(r"(?<!\*)\*(?!\*)([^*]+?)(?<!\*)\*(?!\*)"), r"<em>\1</em>"),
)
_link_pattern = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")

# Lines are matched after HTML escaping, so a quote marker arrives as "&gt;".
_heading_line = re.compile(r"^(#{1,6})#*\s*(.*)$")
_quote_line = re.compile(r"^&gt;\s?(.*)$")
_bullet_line = re.compile(r"^[-*]\s+(.*)$")
_numbered_line = re.compile(r"^\d+[.)]\s+(.*)$")

_SAFE_SCHEMES = ("http://", "https://", "mailto:")


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Convert aware datetimes to naive UTC; naive values are assumed UTC."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def slugify(value: str) -> str:
    """Lowercase ASCII slug for URLs and download filenames."""
    ascii_value = (
        unicodedata.normalize("NFKD", value or "").encode("ascii", "ignore").decode("ascii")
    )
    return _slug_invalid.sub("-", ascii_value.strip().lower()).strip("-")


def _safe_href(raw: str) -> str | None:
    target = raw.strip()
    if not target:
        return None
    if target.lower().startswith(_SAFE_SCHEMES) or target.startswith(("/", "#")):
        return html.escape(target, quote=True)
    return None


def _inline(text: str) -> str:
    for pattern, replacement in _INLINE_RULES:
        text = pattern.sub(replacement, text)

    def link(match: re.Match[str]) -> str:
        href = _safe_href(html.unescape(match.group(2)))
        if href is None:
            return match.group(0)
        return f'<a href="{href}" rel="nofollow noopener noreferrer">{_inline(match.group(1))}</a>'

    return _link_pattern.sub(link, text)


class _BlockWriter:
    """Accumulates rendered blocks, closing open paragraphs and lists."""

    def __init__(self):
        self.blocks: list[str] = []
        self._paragraph: list[str] = []
        self._list_tag: str | None = None
        self._items: list[str] = []

    def close(self) -> None:
        if self._paragraph:
            self.blocks.append(f"<p>{_inline(' '.join(self._paragraph))}</p>")
            self._paragraph = []
        if self._list_tag:
            items = "".join(f"<li>{_inline(item)}</li>" for item in self._items)
            self.blocks.append(f"<{self._list_tag}>{items}</{self._list_tag}>")
            self._list_tag, self._items = None, []

    def block(self, markup: str) -> None:
        self.close()
        self.blocks.append(markup)

    def item(self, tag: str, text: str) -> None:
        if self._paragraph or (self._list_tag and self._list_tag != tag):
            self.close()
        self._list_tag = tag
        self._items.append(text)

    def text(self, line: str) -> None:
        if self._list_tag:
            self.close()
        self._paragraph.append(line)


def render_markdown(value: str | None) -> Markup:
    """Render the Markdown subset used by posts and event descriptions.

    Raw HTML is escaped first; headings, quotes, bullet and numbered lists,
    emphasis, inline code and http(s)/mailto links are supported.
    """
    source = html.escape((value or "").strip())
    if not source:
        return Markup("")

    writer = _BlockWriter()
    for raw_line in source.splitlines():
        line = raw_line.strip()
        if not line:
            writer.close()
        elif match := _heading_line.match(line):
            level = len(match.group(1))
            writer.block(f"<h{level}>{_inline(match.group(2).strip())}</h{level}>")
        elif match := _quote_line.match(line):
            writer.block(f"<blockquote>{_inline(match.group(1).strip())}</blockquote>")
        elif match := _bullet_line.match(line):
            writer.item("ul", match.group(1).strip())
        elif match := _numbered_line.match(line):
            writer.item("ol", match.group(1).strip())
        else:
            writer.text(line)
    writer.close()
    return Markup("\n".join(writer.blocks))


def excerpt(value: str | None, *, limit: int = 160) -> str:
    """Plain-text teaser for list views."""
    text = " ".join(re.sub(r"[#>*`\[\]]", "", value or "").split())
    if len(text) <= limit:
        return text
    return text[: limit - 1].rstrip() + "…"
