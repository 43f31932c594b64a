from __future__ import annotations

from datetime import timedelta

import pytest

from summitkit import database
from summitkit.crud import (
    create_attendance,
    create_company,
    create_event,
    create_member,
    create_post,
    create_sponsor,
    get_member_by_token,
    get_post_by_slug,
    list_attendees,
    list_posts,
    list_sponsors,
    search_companies,
    update_company,
    update_event,
    update_member,
    update_post,
    update_sponsor,
)
from summitkit.utils import utcnow


@pytest.fixture()
def session():
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _event(session, **overrides):
    start = utcnow().replace(microsecond=0)
    fields = {
        "title": "Founders Summit",
        "description": "Desc",
        "start_time": start,
        "end_time": start + timedelta(hours=2),
        "location": "Main Hall",
    }
    fields.update(overrides)
    return create_event(session, **fields)


def test_create_and_update_event(session):
    event = _event(session)
    session.commit()
    assert event.slug == "founders-summit"
    updated = update_event(session, event, title="Demo Night", location="Loft")
    assert updated.title == "Demo Night"
    assert updated.slug == "demo-night"
    assert updated.location == "Loft"


def test_event_end_must_follow_start(session):
    start = utcnow()
    with pytest.raises(ValueError):
        _event(session, start_time=start, end_time=start)
    event = _event(session)
    with pytest.raises(ValueError):
        update_event(session, event, end_time=event.start_time - timedelta(minutes=5))


def test_create_member_validates_and_issues_token(session):
    member = create_member(session, email=" Ada@Example.com ", user_name="ada")
    session.commit()
    assert member.email == "ada@example.com"
    assert member.access_token
    assert get_member_by_token(session, member.access_token).id == member.id
    assert get_member_by_token(session, None) is None
    with pytest.raises(ValueError):
        create_member(session, email="not-an-email")
    with pytest.raises(ValueError):
        create_member(session, email="x@example.com", role="overlord")


def test_update_member_rejects_unknown_role(session):
    member = create_member(session, email="grace@example.com")
    updated = update_member(session, member, job_title="Admiral", role="speaker")
    assert updated.job_title == "Admiral"
    assert updated.role == "speaker"
    with pytest.raises(ValueError):
        update_member(session, member, role="overlord")


def test_list_attendees_filters_anonymous_and_unapproved(session):
    event = _event(session)
    named = create_member(session, email="named@example.com", user_name="named")
    anonymous = create_member(session, email="anon@example.com", user_name="Anonymous")
    nameless = create_member(session, email="nameless@example.com")
    pending = create_member(session, email="pending@example.com", user_name="pending")
    for member in (named, anonymous, nameless):
        create_attendance(session, event=event, member=member)
    create_attendance(session, event=event, member=pending, approval_status="pending")
    session.commit()

    attendees = list_attendees(session, event)
    assert [m.id for m in attendees] == [named.id]
    assert event.attendee_count == 3


def test_create_attendance_rejects_bad_status(session):
    event = _event(session)
    member = create_member(session, email="m@example.com")
    with pytest.raises(ValueError):
        create_attendance(session, event=event, member=member, approval_status="maybe")


def test_companies_get_unique_slugs_and_search(session):
    first = create_company(session, name="Acme", industry="Fintech", featured=True)
    second = create_company(session, name="Acme", industry="Climate")
    create_company(session, name="Globex", industry="Climate")
    session.commit()
    assert first.slug == "acme"
    assert second.slug == "acme-2"
    assert [c.name for c in search_companies(session, "glob")] == ["Globex"]
    assert len(search_companies(session, "climate")) == 2
    assert search_companies(session)[0].id == first.id
    assert len(search_companies(session, limit=1)) == 1
    with pytest.raises(ValueError):
        create_company(session, name="!!!")
    renamed = update_company(session, second, name="Initech")
    assert renamed.slug == "initech"


def test_sponsors_sorted_by_tier_then_position(session):
    create_sponsor(session, name="Zeta", logo_url="https://x/z.png", tier="gold", position=2)
    create_sponsor(session, name="Alpha", logo_url="https://x/a.png", tier="partner")
    create_sponsor(session, name="Beta", logo_url="https://x/b.png", tier="gold", position=1)
    create_sponsor(session, name="Omega", logo_url="https://x/o.png", tier="platinum")
    session.commit()
    assert [s.name for s in list_sponsors(session)] == ["Omega", "Beta", "Zeta", "Alpha"]
    with pytest.raises(ValueError):
        create_sponsor(session, name="Bad", logo_url="https://x/b.png", tier="bronze")


def test_update_sponsor_validates_tier(session):
    sponsor = create_sponsor(session, name="Acme", logo_url="https://x/a.png")
    assert update_sponsor(session, sponsor, tier="silver").tier == "silver"
    with pytest.raises(ValueError):
        update_sponsor(session, sponsor, tier="bronze")


def test_posts_pinned_first_and_members_only_hidden(session):
    author = create_member(session, email="author@example.com", user_name="author")
    create_post(session, title="Old News", content="a", author=author)
    pinned = create_post(session, title="Welcome", content="b", is_pinned=True)
    secret = create_post(session, title="Insider", content="c", members_only=True)
    session.commit()

    public = list_posts(session)
    assert public[0].id == pinned.id
    assert secret.id not in {p.id for p in public}
    assert secret.id in {p.id for p in list_posts(session, include_members_only=True)}
    assert get_post_by_slug(session, "WELCOME").id == pinned.id


def test_update_post_reslugs(session):
    post = create_post(session, title="Draft", content="x")
    create_post(session, title="Final", content="y")
    updated = update_post(session, post, title="Final")
    assert updated.slug == "final-2"
