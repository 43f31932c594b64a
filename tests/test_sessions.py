from __future__ import annotations

from datetime import timedelta

from summitkit.card import service
from summitkit.card.sessions import CardSessionStore
from summitkit.utils import utcnow


def test_store_creates_and_fetches_sessions(compositor):
    store = CardSessionStore(timedelta(minutes=30))
    session = store.create(service.new_editor(), member_id="m1")
    assert len(store) == 1
    assert store.get(session.id) is session
    assert session.member_id == "m1"
    assert store.get("missing") is None
    assert store.discard(session.id)
    assert not store.discard(session.id)
    assert len(store) == 0


def test_purge_idle_drops_only_stale_sessions():
    store = CardSessionStore(timedelta(minutes=30))
    stale = store.create(service.new_editor())
    fresh = store.create(service.new_editor())
    stale.last_used_at = utcnow() - timedelta(hours=1)

    assert store.purge_idle() == 1
    assert store.get(stale.id) is None
    assert store.get(fresh.id) is fresh


def test_get_refreshes_last_used():
    store = CardSessionStore(timedelta(minutes=30))
    session = store.create(service.new_editor())
    session.last_used_at = utcnow() - timedelta(minutes=29)
    store.get(session.id)
    assert store.purge_idle(now=utcnow() + timedelta(minutes=5)) == 0


def test_service_purge_uses_shared_store():
    card = service.card_sessions.create(service.new_editor())
    card.last_used_at = utcnow() - service.card_sessions.ttl - timedelta(minutes=1)
    assert service.purge_idle_sessions() == 1
    assert len(service.card_sessions) == 0
