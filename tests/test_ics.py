from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from summitkit import api, database
from summitkit.crud import create_event
from summitkit.ics import generate_ics


@pytest.fixture()
def client(monkeypatch):
    """FastAPI test client with the scheduler disabled."""

    monkeypatch.setattr(api, "start_scheduler", lambda: None)
    monkeypatch.setattr(api, "stop_scheduler", lambda: None)
    with TestClient(api.app) as test_client:
        yield test_client


def _make_event(*, start: datetime, end: datetime, url: str | None = None) -> str:
    session = database.SessionLocal()
    event = create_event(
        session,
        title="Calendar Test",
        description="Line one\nLine two",
        start_time=start,
        end_time=end,
        location="Test Venue, Hall B",
        url=url,
    )
    session.commit()
    session.close()
    return event.id


def test_ics_endpoint_serves_calendar_file(client):
    start = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    event_id = _make_event(start=start, end=start + timedelta(hours=1))

    response = client.get(f"/api/v1/events/{event_id}/event.ics")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/calendar")
    assert 'filename="calendar-test.ics"' in response.headers["content-disposition"]

    body = response.text
    assert "BEGIN:VCALENDAR" in body
    assert "BEGIN:VEVENT" in body
    assert f"UID:{event_id}@summitkit" in body
    assert "SUMMARY:Calendar Test" in body
    assert "DESCRIPTION:Line one\\nLine two" in body
    assert "LOCATION:Test Venue\\, Hall B" in body
    assert "DTSTART:20240101T120000Z" in body
    assert "DTEND:20240101T130000Z" in body


def test_ics_dates_are_normalized_to_utc(client):
    start = datetime(2024, 6, 1, 9, 0, tzinfo=timezone(timedelta(hours=-5)))
    event_id = _make_event(start=start, end=start + timedelta(hours=2))

    body = client.get(f"/api/v1/events/{event_id}/event.ics").text
    # 09:00 -05:00 should convert to 14:00Z
    assert "DTSTART:20240601T140000Z" in body
    assert "DTEND:20240601T160000Z" in body


def test_ics_missing_event_is_404(client):
    assert client.get("/api/v1/events/nope/event.ics").status_code == 404


def test_generate_ics_folds_long_lines_and_includes_url(db_session):
    start = datetime(2024, 1, 1, 12, 0)
    event = create_event(
        db_session,
        title="A" * 120,
        description=None,
        start_time=start,
        end_time=start + timedelta(hours=1),
        url="https://summit.example.com/agenda",
    )
    text = generate_ics(event, now=start)
    assert "URL:https://summit.example.com/agenda" in text
    assert "DTSTAMP:20240101T120000Z" in text
    for line in text.split("\r\n"):
        assert len(line.encode("utf-8")) <= 75
