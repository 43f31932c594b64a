"""Development helpers for populating fake members, events and sponsors."""

from __future__ import annotations

import random
from datetime import datetime, timedelta

from faker import Faker
from sqlalchemy.orm import Session

from .crud import (
    SPONSOR_TIERS,
    create_attendance,
    create_company,
    create_event,
    create_member,
    create_post,
    create_sponsor,
)
from .database import get_session
from .models import Company, Event, Member
from .storage import init_db
from .utils import utcnow

_event_types = [
    "Summit",
    "Founders Breakfast",
    "Demo Night",
    "Workshop",
    "Fireside Chat",
    "Panel",
    "Hackathon",
]
_industries = ["Fintech", "Climate", "Health", "AI", "Logistics", "Media", "Retail"]
_job_titles = [
    "Founder",
    "CTO",
    "Product Manager",
    "Designer",
    "Engineer",
    "Investor",
    "Community Lead",
]


def seed_fake_data(
    *,
    member_count: int = 20,
    event_count: int = 6,
    sponsor_count: int = 5,
    company_count: int = 8,
    post_count: int = 6,
) -> dict[str, int]:
    """Populate the database with a synthetic community."""
    for label, value in (
        ("member_count", member_count),
        ("event_count", event_count),
        ("sponsor_count", sponsor_count),
        ("company_count", company_count),
        ("post_count", post_count),
    ):
        if value < 0:
            raise ValueError(f"{label} must be >= 0")

    init_db()
    fake = Faker()
    stats = {
        "companies": 0,
        "members": 0,
        "events": 0,
        "attendances": 0,
        "sponsors": 0,
        "posts": 0,
    }

    with get_session() as session:
        companies = [_create_company(session, fake) for _ in range(company_count)]
        stats["companies"] = len(companies)
        members = [
            _create_member(session, fake, companies) for _ in range(member_count)
        ]
        stats["members"] = len(members)
        for _ in range(event_count):
            event = _create_event(session, fake)
            stats["events"] += 1
            stats["attendances"] += _create_attendances(session, event, members)
        for position in range(sponsor_count):
            _create_sponsor(session, fake, position)
            stats["sponsors"] += 1
        for index in range(post_count):
            _create_post(session, fake, members, pinned=index == 0)
            stats["posts"] += 1

    return stats


def _create_company(session: Session, fake: Faker) -> Company:
    return create_company(
        session,
        name=fake.unique.company(),
        description=fake.catch_phrase(),
        website=fake.url(),
        logo_url=f"https://picsum.photos/seed/{fake.uuid4()}/240/120",
        industry=random.choice(_industries),
        featured=random.random() < 0.25,
    )


def _create_member(session: Session, fake: Faker, companies: list[Company]) -> Member:
    first = fake.first_name()
    last = fake.last_name()
    # Roughly one in ten members stays anonymous.
    user_name = "anonymous" if random.random() < 0.1 else fake.unique.user_name()
    return create_member(
        session,
        email=fake.unique.email(),
        user_name=user_name,
        full_name=f"{first} {last}",
        avatar_url=f"https://i.pravatar.cc/300?u={fake.uuid4()}",
        role=random.choice(["member", "member", "member", "speaker", "sponsor"]),
        bio=fake.sentence(nb_words=12),
        job_title=random.choice(_job_titles),
        company=random.choice(companies) if companies and random.random() < 0.7 else None,
    )


def _random_start_time() -> datetime:
    day_offset = random.randint(-14, 45)
    minute_offset = random.randint(8 * 60, 19 * 60)
    base = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    return base + timedelta(days=day_offset, minutes=minute_offset)


def _create_event(session: Session, fake: Faker) -> Event:
    start_time = _random_start_time()
    return create_event(
        session,
        title=f"{fake.city()} {random.choice(_event_types)}",
        description="\n\n".join(fake.paragraphs(nb=2)),
        start_time=start_time,
        end_time=start_time + timedelta(hours=random.randint(1, 8)),
        location=fake.address().replace("\n", ", "),
        timezone="UTC",
        cover_url=f"https://picsum.photos/seed/{fake.uuid4()}/1200/630",
    )


def _create_attendances(session: Session, event: Event, members: list[Member]) -> int:
    if not members:
        return 0
    attendees = random.sample(members, k=random.randint(0, len(members)))
    for member in attendees:
        create_attendance(session, event=event, member=member)
    return len(attendees)


def _create_sponsor(session: Session, fake: Faker, position: int) -> None:
    create_sponsor(
        session,
        name=fake.unique.company(),
        logo_url=f"https://picsum.photos/seed/{fake.uuid4()}/400/200",
        website=fake.url(),
        tier=random.choice(SPONSOR_TIERS),
        position=position,
    )


def _create_post(
    session: Session, fake: Faker, members: list[Member], *, pinned: bool
) -> None:
    paragraphs = fake.paragraphs(nb=3)
    content = f"## {fake.catch_phrase()}\n\n" + "\n\n".join(paragraphs)
    create_post(
        session,
        title=fake.sentence(nb_words=6).rstrip("."),
        content=content,
        cover_url=f"https://picsum.photos/seed/{fake.uuid4()}/1200/630",
        is_pinned=pinned,
        members_only=random.random() < 0.2,
        author=random.choice(members) if members else None,
    )
