from __future__ import annotations

import base64
import threading

import httpx
import pytest
from fastapi.testclient import TestClient

from summitkit import api, database
from summitkit.card import service
from summitkit.card.overlays import get_overlay
from summitkit.crud import create_member
from summitkit.storage import fetch_root_token

LOGO_URL = "https://cdn.example.com/acme.png"


@pytest.fixture()
def client(monkeypatch, remote_images):
    monkeypatch.setattr(api, "start_scheduler", lambda: None)
    monkeypatch.setattr(api, "stop_scheduler", lambda: None)
    with TestClient(api.app) as test_client:
        yield test_client


@pytest.fixture()
def card_id(client):
    response = client.post("/api/v1/cards", json={"name": "Ada Lovelace", "title": "Engineer"})
    assert response.status_code == 201
    return response.json()["card"]["id"]


def _add_logo(client, card_id, remote_images, make_png, size=(400, 200)):
    remote_images.add(LOGO_URL, make_png(size, (200, 0, 0, 255)))
    response = client.post(
        f"/api/v1/cards/{card_id}/stickers", json={"url": LOGO_URL, "name": "Acme"}
    )
    assert response.status_code == 201
    return response.json()["sticker"]


def test_overlay_catalogue(client):
    data = client.get("/api/v1/overlays").json()
    assert [o["id"] for o in data["overlays"]] == ["yellow", "blue"]
    assert data["default_overlay"] == "yellow"
    assert data["default_badge"] == "Speaker"
    assert "Volunteer" in data["badges"]


def test_create_card_defaults(client):
    response = client.post("/api/v1/cards", json={})
    assert response.status_code == 201
    card = response.json()["card"]
    assert card["overlay_id"] == "yellow"
    assert card["badge"] == "Speaker"
    assert card["stickers"] == []
    assert card["notifications"] == []
    assert client.get(f"/api/v1/cards/{card['id']}").status_code == 200


def test_create_card_prefills_from_member(client):
    session = database.SessionLocal()
    member = create_member(
        session, email="grace@example.com", user_name="grace", full_name="Grace Hopper",
        job_title="Admiral",
    )
    session.commit()
    session.close()

    response = client.post(
        "/api/v1/cards",
        json={},
        headers={"Authorization": f"Bearer {member.access_token}"},
    )
    card = response.json()["card"]
    assert card["name"] == member.display_name
    assert card["title"] == "Admiral"


def test_create_card_rejects_unknown_overlay_and_badge(client):
    assert client.post("/api/v1/cards", json={"overlay_id": "green"}).status_code == 400
    assert client.post("/api/v1/cards", json={"badge": "Keynote"}).status_code == 400


def test_update_card(client, card_id):
    response = client.patch(
        f"/api/v1/cards/{card_id}", json={"overlay_id": "blue", "badge": "Sponsor"}
    )
    assert response.status_code == 200
    card = response.json()["card"]
    assert card["overlay_id"] == "blue"
    assert card["badge"] == "Sponsor"
    assert card["name"] == "Ada Lovelace"

    bad = client.patch(f"/api/v1/cards/{card_id}", json={"overlay_id": "green"})
    assert bad.status_code == 400
    assert client.get(f"/api/v1/cards/{card_id}").json()["card"]["overlay_id"] == "blue"


def test_unknown_card_is_404(client):
    assert client.get("/api/v1/cards/nope").status_code == 404
    assert client.patch("/api/v1/cards/nope", json={}).status_code == 404
    assert client.get("/api/v1/cards/nope/preview.png").status_code == 404


def test_add_sticker_by_url(client, card_id, remote_images, make_png):
    sticker = _add_logo(client, card_id, remote_images, make_png)
    assert sticker["name"] == "Acme"
    assert sticker["width"] == 200
    assert sticker["height"] == 100
    assert (sticker["x"], sticker["y"]) == (440, 490)
    assert sticker["proxied_url"].startswith("/api/v1/image-proxy?url=")

    card = client.get(f"/api/v1/cards/{card_id}").json()["card"]
    assert card["selected_id"] == sticker["id"]
    assert len(card["stickers"]) == 1


def test_add_sticker_failure_notifies_and_leaves_card(client, card_id):
    response = client.post(
        f"/api/v1/cards/{card_id}/stickers",
        json={"url": "https://cdn.example.com/missing.png", "name": "Globex"},
    )
    assert response.status_code == 422
    body = response.json()
    assert body["detail"] == "Failed to load logo for Globex"
    notifications = body["card"]["notifications"]
    assert len(notifications) == 1
    assert notifications[0]["level"] == "error"
    assert "Globex" in notifications[0]["message"]
    assert body["card"]["stickers"] == []

    # Notifications are delivered once.
    card = client.get(f"/api/v1/cards/{card_id}").json()["card"]
    assert card["notifications"] == []


def test_add_sticker_from_sponsor(client, card_id, remote_images, make_png):
    remote_images.add(LOGO_URL, make_png((300, 300)))
    headers = {"Authorization": f"Bearer {fetch_root_token()}"}
    created = client.post(
        "/api/v1/sponsors",
        json={"name": "Acme", "logo_url": LOGO_URL, "tier": "gold"},
        headers=headers,
    )
    sponsor_id = created.json()["sponsor"]["id"]

    response = client.post(
        f"/api/v1/cards/{card_id}/stickers", json={"sponsor_id": sponsor_id}
    )
    assert response.status_code == 201
    sticker = response.json()["sticker"]
    assert sticker["name"] == "Acme"
    assert sticker["url"] == LOGO_URL
    assert sticker["height"] == sticker["width"]

    missing = client.post(f"/api/v1/cards/{card_id}/stickers", json={"sponsor_id": "nope"})
    assert missing.status_code == 404
    empty = client.post(f"/api/v1/cards/{card_id}/stickers", json={})
    assert empty.status_code == 400


def test_pointer_drag_flow(client, card_id, remote_images, make_png):
    _add_logo(client, card_id, remote_images, make_png)
    url = f"/api/v1/cards/{card_id}/pointer"

    down = client.post(url, json={"type": "down", "x": 540, "y": 540}).json()
    assert down["hit"] == "drag"
    assert down["card"]["interaction"] == "drag"

    moved = client.post(url, json={"type": "move", "x": 600, "y": 600}).json()
    sticker = moved["card"]["stickers"][0]
    assert (sticker["x"], sticker["y"]) == (500, 550)
    assert moved["redraw_pending"]

    up = client.post(url, json={"type": "up"}).json()
    assert up["card"]["interaction"] is None

    # Releasing ends the drag; later moves do nothing.
    client.post(url, json={"type": "move", "x": 100, "y": 100})
    sticker = client.get(f"/api/v1/cards/{card_id}").json()["card"]["stickers"][0]
    assert (sticker["x"], sticker["y"]) == (500, 550)


def test_pointer_resize_and_delete(client, card_id, remote_images, make_png):
    sticker = _add_logo(client, card_id, remote_images, make_png)
    url = f"/api/v1/cards/{card_id}/pointer"
    # Resize handle sits at the bottom-right corner of the backing.
    handle_x = sticker["x"] + sticker["width"] + 12
    handle_y = sticker["y"] + sticker["height"] + 12

    down = client.post(url, json={"type": "down", "x": handle_x, "y": handle_y}).json()
    assert down["hit"] == "resize"
    moved = client.post(
        url, json={"type": "move", "x": handle_x + 100, "y": handle_y}
    ).json()
    resized = moved["card"]["stickers"][0]
    assert resized["width"] == 300
    assert resized["height"] == 150
    client.post(url, json={"type": "up"})

    delete_x = resized["x"] + resized["width"] + 12
    delete_y = resized["y"] - 12
    deleted = client.post(url, json={"type": "down", "x": delete_x, "y": delete_y}).json()
    assert deleted["hit"] == "delete"
    assert deleted["card"]["stickers"] == []


def test_pointer_miss_deselects(client, card_id, remote_images, make_png):
    _add_logo(client, card_id, remote_images, make_png)
    response = client.post(
        f"/api/v1/cards/{card_id}/pointer", json={"type": "down", "x": 5, "y": 5}
    ).json()
    assert response["hit"] is None
    assert response["card"]["selected_id"] is None


def test_pointer_rejects_unknown_event_type(client, card_id):
    response = client.post(f"/api/v1/cards/{card_id}/pointer", json={"type": "hover"})
    assert response.status_code == 422


def test_delete_sticker_and_reset(client, card_id, remote_images, make_png):
    sticker = _add_logo(client, card_id, remote_images, make_png)
    _add_logo(client, card_id, remote_images, make_png)

    removed = client.delete(f"/api/v1/cards/{card_id}/stickers/{sticker['id']}")
    assert removed.status_code == 200
    assert len(removed.json()["card"]["stickers"]) == 1
    again = client.delete(f"/api/v1/cards/{card_id}/stickers/{sticker['id']}")
    assert again.status_code == 404

    reset = client.post(f"/api/v1/cards/{card_id}/reset").json()["card"]
    assert reset["stickers"] == []
    assert reset["selected_id"] is None
    assert reset["name"] == "Ada Lovelace"


def test_preview_png(client, card_id):
    response = client.get(f"/api/v1/cards/{card_id}/preview.png")
    assert response.status_code == 200
    assert response.headers["content-type"] == "image/png"
    assert response.headers["cache-control"] == "no-store"
    assert response.content.startswith(b"\x89PNG")


def test_export_jpeg(client, card_id, remote_images, make_png):
    _add_logo(client, card_id, remote_images, make_png)
    response = client.get(f"/api/v1/cards/{card_id}/export.jpg")
    assert response.status_code == 200
    assert response.headers["content-type"] == "image/jpeg"
    assert (
        response.headers["content-disposition"]
        == 'attachment; filename="ada-lovelace-speaker-card.jpg"'
    )
    assert response.content.startswith(b"\xff\xd8")


def test_render_failure_is_502(client, card_id, remote_images):
    remote_images.images.pop(get_overlay("yellow").url)
    response = client.get(f"/api/v1/cards/{card_id}/export.jpg")
    assert response.status_code == 502
    assert response.json()["detail"] == "Failed to generate card. Please try again."


def test_delete_card(client, card_id):
    assert client.delete(f"/api/v1/cards/{card_id}").status_code == 204
    assert client.get(f"/api/v1/cards/{card_id}").status_code == 404
    assert client.delete(f"/api/v1/cards/{card_id}").status_code == 404


def test_image_proxy(client, remote_images, make_png):
    payload = make_png((10, 10))
    remote_images.add(LOGO_URL, payload)
    response = client.get("/api/v1/image-proxy", params={"url": LOGO_URL})
    assert response.status_code == 200
    assert response.content == payload
    assert response.headers["content-type"] == "image/png"
    assert "max-age=86400" in response.headers["cache-control"]


def test_image_proxy_upstream_failure(client):
    response = client.get(
        "/api/v1/image-proxy", params={"url": "https://cdn.example.com/gone.png"}
    )
    assert response.status_code == 502
    missing = client.get("/api/v1/image-proxy")
    assert missing.status_code == 422


def test_image_proxy_refuses_internal_hosts(client, remote_images):
    response = client.get(
        "/api/v1/image-proxy", params={"url": "http://127.0.0.1:8000/api/v1/admin/token"}
    )
    assert response.status_code == 502
    assert "not a public address" in response.json()["detail"]
    assert remote_images.requests == []


def _data_url(payload: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(payload).decode("ascii")


def test_oversized_sticker_is_rejected(
    client, card_id, remote_images, make_png, make_oversized_png
):
    _add_logo(client, card_id, remote_images, make_png)
    before = client.get(f"/api/v1/cards/{card_id}").json()["card"]["stickers"]

    response = client.post(
        f"/api/v1/cards/{card_id}/stickers",
        json={"url": _data_url(make_oversized_png(14000, 14000)), "name": "Bomb"},
    )

    assert response.status_code == 422
    body = response.json()
    assert body["detail"] == "Failed to load logo for Bomb"
    assert body["card"]["stickers"] == before
    assert len(body["card"]["notifications"]) == 1


def test_oversized_photo_fails_render(client, card_id, make_oversized_png):
    response = client.patch(
        f"/api/v1/cards/{card_id}",
        json={"photo_url": _data_url(make_oversized_png(14000, 14000))},
    )
    assert response.status_code == 200
    export = client.get(f"/api/v1/cards/{card_id}/export.jpg")
    assert export.status_code == 502
    assert export.json()["detail"] == "Failed to generate card. Please try again."


def test_logo_is_fetched_without_holding_editor_lock(
    client, card_id, remote_images, make_png, monkeypatch
):
    remote_images.add(LOGO_URL, make_png((400, 200)))
    lock = service.card_sessions.get(card_id).editor.lock
    lock_free = []

    def handler(request):
        if str(request.url) == LOGO_URL:

            def try_lock():
                acquired = lock.acquire(blocking=False)
                lock_free.append(acquired)
                if acquired:
                    lock.release()

            other = threading.Thread(target=try_lock)
            other.start()
            other.join(timeout=5)
        return remote_images.handler(request)

    monkeypatch.setattr(
        service.image_loader, "client", httpx.Client(transport=httpx.MockTransport(handler))
    )
    response = client.post(
        f"/api/v1/cards/{card_id}/stickers", json={"url": LOGO_URL, "name": "Acme"}
    )
    assert response.status_code == 201
    assert lock_free == [True]
