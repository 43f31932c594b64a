"""Image loading for the card compositor and the image proxy."""

from __future__ import annotations

import base64
import binascii
import hashlib
import ipaddress
import logging
import socket
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path
from urllib.parse import quote, unquote, urljoin, urlparse

import httpx
from PIL import Image, UnidentifiedImageError

logger = logging.getLogger("uvicorn.error")

PROXY_PATH = "/api/v1/image-proxy"
UPLOADS_PREFIX = "/uploads/"
USER_AGENT = "SummitKit image fetcher"
MAX_REDIRECTS = 5
DEFAULT_MAX_PIXELS = 40_000_000


class ImageLoadError(Exception):
    """Raised when a single image cannot be fetched or decoded."""

    def __init__(self, source: str, reason: str, *, label: str | None = None):
        self.source = source
        self.reason = reason
        self.label = label
        super().__init__(source, reason)

    def __str__(self) -> str:
        return f"Failed to load image {self.label or _short(self.source)}: {self.reason}"


def _short(source: str, limit: int = 100) -> str:
    return source if len(source) <= limit else source[:limit] + "..."


def proxied_url(url: str) -> str:
    """Return the same-origin URL used to load ``url``."""
    if url.startswith("data:") or url.startswith(UPLOADS_PREFIX):
        return url
    return f"{PROXY_PATH}?url={quote(url, safe='')}"


def cache_key(url: str) -> str:
    """Cache key for ``url``; data URLs are keyed by a digest of their payload."""
    if url.startswith("data:"):
        return "data:sha256:" + hashlib.sha256(url.encode("utf-8")).hexdigest()
    return proxied_url(url)


def resolve_host(host: str, port: int | None) -> list[str]:
    infos = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    return [info[4][0] for info in infos]


def _is_public_address(raw: str) -> bool:
    address = ipaddress.ip_address(raw.split("%", 1)[0])
    if address.version == 6 and address.ipv4_mapped is not None:
        address = address.ipv4_mapped
    return address.is_global and not address.is_multicast


def ensure_public_url(url: str, *, source: str | None = None) -> None:
    """Reject URLs that are not http(s) or point at a non-public address."""
    source = source or url
    parsed = urlparse(url)
    if parsed.scheme not in {"http", "https"} or not parsed.hostname:
        raise ImageLoadError(source, "only http and https URLs can be fetched")
    host = parsed.hostname
    try:
        addresses = [str(ipaddress.ip_address(host))]
    except ValueError:
        try:
            addresses = resolve_host(host, parsed.port)
        except (OSError, UnicodeError) as exc:
            raise ImageLoadError(source, f"could not resolve host {host}") from exc
    if not addresses or not all(_is_public_address(a) for a in addresses):
        raise ImageLoadError(source, f"host {host} is not a public address")


def fetch_remote_image(
    client: httpx.Client, url: str, *, max_bytes: int
) -> tuple[bytes, str]:
    """Download an image over HTTP(S), returning its bytes and content type.

    Redirects are followed by hand so every hop is checked against
    ``ensure_public_url``.
    """
    target = url
    try:
        for _ in range(MAX_REDIRECTS + 1):
            ensure_public_url(target, source=url)
            with client.stream("GET", target, follow_redirects=False) as response:
                if response.is_redirect:
                    target = urljoin(str(response.url), response.headers["location"])
                    continue
                response.raise_for_status()
                content_type = (
                    response.headers.get("content-type", "").split(";")[0].strip().lower()
                )
                if not content_type.startswith("image/"):
                    raise ImageLoadError(
                        url, f"unexpected content type {content_type or 'unknown'}"
                    )
                chunks: list[bytes] = []
                total = 0
                for chunk in response.iter_bytes():
                    total += len(chunk)
                    if total > max_bytes:
                        raise ImageLoadError(url, "image exceeds the size limit")
                    chunks.append(chunk)
                return b"".join(chunks), content_type
    except httpx.HTTPStatusError as exc:
        raise ImageLoadError(url, f"HTTP {exc.response.status_code}") from exc
    except httpx.HTTPError as exc:
        raise ImageLoadError(url, str(exc) or exc.__class__.__name__) from exc
    raise ImageLoadError(url, "too many redirects")


def decode_data_url(url: str) -> bytes:
    header, _, payload = url.partition(",")
    if not header.startswith("data:image/"):
        raise ImageLoadError(url, "data URL is not an image")
    try:
        if header.endswith(";base64"):
            return base64.b64decode(payload, validate=True)
        return unquote(payload).encode("latin-1")
    except (binascii.Error, ValueError) as exc:
        raise ImageLoadError(url, "malformed data URL") from exc


def decode_image(
    data: bytes, *, source: str, max_pixels: int = DEFAULT_MAX_PIXELS
) -> Image.Image:
    """Decode ``data`` to RGBA, refusing images larger than ``max_pixels``."""
    try:
        image = Image.open(BytesIO(data))
        width, height = image.size
        if width * height > max_pixels:
            raise ImageLoadError(
                source, f"image dimensions {width}x{height} exceed the pixel limit"
            )
        image.load()
    except Image.DecompressionBombError as exc:
        raise ImageLoadError(source, "image dimensions exceed the pixel limit") from exc
    except (UnidentifiedImageError, OSError) as exc:
        raise ImageLoadError(source, "not a decodable image") from exc
    return image.convert("RGBA")


@dataclass
class _KeyLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class ImageLoader:
    """Load images by URL with a per-URL cache.

    Concurrent loads of the same URL are collapsed into one fetch.
    Supported sources: ``data:`` URLs, files under ``/uploads/`` and remote
    http(s) URLs fetched through ``httpx``.
    """

    def __init__(
        self,
        client: httpx.Client | None = None,
        *,
        uploads_dir: Path | None = None,
        timeout: float = 10.0,
        max_bytes: int = 10 * 1024 * 1024,
        max_pixels: int = DEFAULT_MAX_PIXELS,
    ):
        self._owns_client = client is None
        self.client = client or httpx.Client(
            timeout=timeout, headers={"User-Agent": USER_AGENT}
        )
        self.uploads_dir = uploads_dir
        self.max_bytes = max_bytes
        self.max_pixels = max_pixels
        self._cache: dict[str, Image.Image] = {}
        self._guard = threading.Lock()
        self._key_locks: dict[str, _KeyLock] = {}

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def clear(self) -> None:
        with self._guard:
            self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)

    @contextmanager
    def _locked(self, key: str):
        # Entries live only while a load of that key is in flight.
        with self._guard:
            entry = self._key_locks.setdefault(key, _KeyLock())
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0 and self._key_locks.get(key) is entry:
                    del self._key_locks[key]

    def load(self, url: str, *, label: str | None = None) -> Image.Image:
        if not url:
            raise ImageLoadError("", "no image URL given", label=label)
        key = cache_key(url)
        with self._locked(key):
            cached = self._cache.get(key)
            if cached is not None:
                return cached
            try:
                image = decode_image(
                    self._read(url), source=url, max_pixels=self.max_pixels
                )
            except ImageLoadError as exc:
                exc.label = label
                logger.warning("Image load failed for %s: %s", _short(url), exc.reason)
                raise
            self._cache[key] = image
            return image

    def _read(self, url: str) -> bytes:
        if url.startswith("data:"):
            return decode_data_url(url)
        if url.startswith(UPLOADS_PREFIX):
            return self._read_upload(url)
        data, _ = fetch_remote_image(self.client, url, max_bytes=self.max_bytes)
        return data

    def _read_upload(self, url: str) -> bytes:
        if self.uploads_dir is None:
            raise ImageLoadError(url, "uploads are not available")
        root = self.uploads_dir.resolve()
        target = (root / url[len(UPLOADS_PREFIX):]).resolve()
        if root not in target.parents or not target.is_file():
            raise ImageLoadError(url, "upload not found")
        return target.read_bytes()
