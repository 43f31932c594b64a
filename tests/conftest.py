"""Shared pytest fixtures for SummitKit."""

from __future__ import annotations

import struct
import sys
import zlib
from io import BytesIO
from pathlib import Path

import httpx
import pytest
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from summitkit import database, storage
from summitkit.card import images, service
from summitkit.card.compositor import CardLayout, Compositor
from summitkit.card.images import ImageLoader
from summitkit.models import Base


@pytest.fixture(scope="session", autouse=True)
def configure_in_memory_db():
    """Reuse a single in-memory SQLite database for fast, isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    session_factory = scoped_session(
        sessionmaker(
            bind=engine,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )
    )
    database.engine = engine
    database.SessionLocal = session_factory
    storage.engine = engine
    Base.metadata.create_all(bind=engine)
    yield
    session_factory.remove()


@pytest.fixture(autouse=True)
def clean_database():
    """Reset all tables between tests to guarantee isolation."""

    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)
    yield


@pytest.fixture(autouse=True)
def clean_card_state():
    service.card_sessions.clear()
    service.image_loader.clear()
    yield
    service.card_sessions.clear()
    service.image_loader.clear()


@pytest.fixture(autouse=True)
def public_dns(monkeypatch):
    """Resolve every hostname to a public documentation address."""
    monkeypatch.setattr(images, "resolve_host", lambda host, port: ["93.184.216.34"])


@pytest.fixture()
def db_session():
    session = database.SessionLocal()
    try:
        yield session
        session.commit()
    finally:
        session.close()


def png_bytes(size: tuple[int, int], color=(0, 160, 0, 255)) -> bytes:
    buffer = BytesIO()
    Image.new("RGBA", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def oversized_png(width: int, height: int) -> bytes:
    """A 1-bit PNG whose header declares ``width`` x ``height`` with no pixel data."""

    def chunk(kind: bytes, payload: bytes) -> bytes:
        crc = zlib.crc32(kind + payload) & 0xFFFFFFFF
        return struct.pack(">I", len(payload)) + kind + payload + struct.pack(">I", crc)

    header = struct.pack(">IIBBBBB", width, height, 1, 0, 0, 0, 0)
    return (
        b"\x89PNG\r\n\x1a\n"
        + chunk(b"IHDR", header)
        + chunk(b"IDAT", zlib.compress(b""))
        + chunk(b"IEND", b"")
    )


class RemoteImages:
    """Serve fixture images over ``httpx.MockTransport`` keyed by URL."""

    def __init__(self):
        self.images: dict[str, bytes] = {}
        self.requests: list[str] = []
        self.redirects: dict[str, str] = {}

    def add(self, url: str, data: bytes) -> str:
        self.images[url] = data
        return url

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        if url in self.redirects:
            return httpx.Response(302, headers={"location": self.redirects[url]})
        data = self.images.get(url)
        if data is None:
            return httpx.Response(404, text="not found")
        return httpx.Response(200, content=data, headers={"content-type": "image/png"})

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))


@pytest.fixture()
def remote_images(monkeypatch):
    """Route the shared image loader through a mock transport.

    Both overlays resolve to a fully transparent 1080x1080 PNG.
    """
    remote = RemoteImages()
    transparent = png_bytes((1080, 1080), (0, 0, 0, 0))
    from summitkit.card.overlays import CARD_OVERLAYS

    for overlay in CARD_OVERLAYS:
        remote.add(overlay.url, transparent)
    client = remote.client()
    monkeypatch.setattr(service.image_loader, "client", client)
    yield remote
    client.close()


@pytest.fixture()
def loader(remote_images, tmp_path):
    return ImageLoader(remote_images.client(), uploads_dir=tmp_path)


@pytest.fixture()
def compositor(loader):
    return Compositor(loader, CardLayout())


@pytest.fixture()
def make_png():
    return png_bytes


@pytest.fixture()
def make_oversized_png():
    return oversized_png
