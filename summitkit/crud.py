"""CRUD helpers for members, events, attendances and the directory."""

from __future__ import annotations

import secrets
from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import Attendance, Company, Event, Member, Post, Sponsor
from .utils import slugify, to_naive_utc, utcnow

VALID_APPROVAL_STATUSES = {"pending", "approved", "rejected"}
VALID_MEMBER_ROLES = {"member", "admin", "speaker", "sponsor"}
SPONSOR_TIERS = ("platinum", "gold", "silver", "partner")
ANONYMOUS_USER_NAME = "anonymous"


def _now() -> datetime:
    return utcnow()


def _apply_fields(instance: Any, fields: dict[str, Any]) -> None:
    for key, value in fields.items():
        setattr(instance, key, value)


def _unique_slug(session: Session, model: type, base: str, *, exclude_id: str | None = None) -> str:
    base = base or "item"
    candidate = base
    counter = 2
    while True:
        stmt = select(model.id).where(model.slug == candidate)
        if exclude_id is not None:
            stmt = stmt.where(model.id != exclude_id)
        if session.scalar(stmt) is None:
            return candidate
        candidate = f"{base}-{counter}"
        counter += 1


# Members -----------------------------------------------------------------


def get_member_by_token(session: Session, token: str | None) -> Member | None:
    if not token:
        return None
    stmt = select(Member).where(Member.access_token == token)
    return session.scalars(stmt).first()


def create_member(
    session: Session,
    *,
    email: str,
    user_name: str | None = None,
    full_name: str | None = None,
    avatar_url: str | None = None,
    role: str = "member",
    bio: str | None = None,
    job_title: str | None = None,
    company: Company | None = None,
) -> Member:
    """Create a member with a fresh bearer access token."""
    normalized_email = (email or "").strip().lower()
    if not normalized_email or "@" not in normalized_email:
        raise ValueError("Invalid email address")
    if role not in VALID_MEMBER_ROLES:
        raise ValueError("Invalid member role")
    member = Member(
        access_token=secrets.token_urlsafe(32),
        email=normalized_email,
        user_name=user_name,
        full_name=full_name,
        avatar_url=avatar_url,
        role=role,
        bio=bio,
        job_title=job_title,
        company=company,
    )
    session.add(member)
    session.flush()
    return member


def update_member(session: Session, member: Member, **fields: Any) -> Member:
    if "role" in fields and fields["role"] not in VALID_MEMBER_ROLES:
        raise ValueError("Invalid member role")
    if "email" in fields:
        fields["email"] = (fields["email"] or "").strip().lower()
    _apply_fields(member, fields)
    member.last_modified = _now()
    session.add(member)
    session.flush()
    return member


# Events ------------------------------------------------------------------


def create_event(
    session: Session,
    *,
    title: str,
    description: str | None,
    start_time: datetime,
    end_time: datetime,
    location: str | None = None,
    timezone: str | None = None,
    cover_url: str | None = None,
    url: str | None = None,
) -> Event:
    """Create and persist a new event."""
    normalized_start = to_naive_utc(start_time)
    normalized_end = to_naive_utc(end_time)
    if normalized_end <= normalized_start:
        raise ValueError("End time must be after the start time")
    event = Event(
        title=title,
        slug=slugify(title),
        description=description,
        start_time=normalized_start,
        end_time=normalized_end,
        location=location,
        timezone=timezone,
        cover_url=cover_url,
        url=url,
    )
    session.add(event)
    session.flush()
    return event


def update_event(session: Session, event: Event, **fields: Any) -> Event:
    """Update an existing event, keeping start/end ordered."""
    for key in ("start_time", "end_time"):
        if key in fields:
            fields[key] = to_naive_utc(fields[key])
    start = fields.get("start_time", event.start_time)
    end = fields.get("end_time", event.end_time)
    if end <= start:
        raise ValueError("End time must be after the start time")
    if "title" in fields:
        fields["slug"] = slugify(fields["title"])
    _apply_fields(event, fields)
    event.last_modified = _now()
    session.add(event)
    session.flush()
    return event


def get_attendance(session: Session, *, event: Event, member: Member) -> Attendance | None:
    stmt = select(Attendance).where(
        Attendance.event_id == event.id, Attendance.member_id == member.id
    )
    return session.scalars(stmt).first()


def create_attendance(
    session: Session,
    *,
    event: Event,
    member: Member,
    approval_status: str = "approved",
) -> Attendance:
    if approval_status not in VALID_APPROVAL_STATUSES:
        raise ValueError("Invalid approval status")
    attendance = Attendance(event=event, member=member, approval_status=approval_status)
    session.add(attendance)
    session.flush()
    return attendance


def list_attendees(session: Session, event: Event) -> list[Member]:
    """Approved attendees with a public user name, in RSVP order."""
    stmt = (
        select(Member)
        .join(Attendance, Attendance.member_id == Member.id)
        .where(
            Attendance.event_id == event.id,
            Attendance.approval_status == "approved",
        )
        .order_by(Attendance.created_at.asc())
    )
    return [
        member
        for member in session.scalars(stmt).all()
        if member.user_name and member.user_name.lower() != ANONYMOUS_USER_NAME
    ]


# Directory ---------------------------------------------------------------


def create_company(
    session: Session,
    *,
    name: str,
    description: str | None = None,
    website: str | None = None,
    logo_url: str | None = None,
    industry: str | None = None,
    featured: bool = False,
) -> Company:
    slug = slugify(name)
    if not slug:
        raise ValueError("Invalid company name")
    company = Company(
        name=name,
        slug=_unique_slug(session, Company, slug),
        description=description,
        website=website,
        logo_url=logo_url,
        industry=industry,
        featured=featured,
    )
    session.add(company)
    session.flush()
    return company


def update_company(session: Session, company: Company, **fields: Any) -> Company:
    if "name" in fields:
        slug = slugify(fields["name"])
        if not slug:
            raise ValueError("Invalid company name")
        fields["slug"] = _unique_slug(session, Company, slug, exclude_id=company.id)
    _apply_fields(company, fields)
    company.last_modified = _now()
    session.add(company)
    session.flush()
    return company


def search_companies(
    session: Session, search_term: str | None = None, limit: int | None = None
) -> Sequence[Company]:
    stmt = select(Company).order_by(Company.featured.desc(), Company.name.asc())
    if search_term:
        stmt = stmt.where(
            Company.name.ilike(f"%{search_term}%")
            | Company.industry.ilike(f"%{search_term}%")
        )
    if limit and limit > 0:
        stmt = stmt.limit(limit)
    return session.scalars(stmt).all()


def create_sponsor(
    session: Session,
    *,
    name: str,
    logo_url: str,
    website: str | None = None,
    tier: str = "partner",
    position: int = 0,
) -> Sponsor:
    if tier not in SPONSOR_TIERS:
        raise ValueError("Invalid sponsor tier")
    sponsor = Sponsor(
        name=name, logo_url=logo_url, website=website, tier=tier, position=position
    )
    session.add(sponsor)
    session.flush()
    return sponsor


def update_sponsor(session: Session, sponsor: Sponsor, **fields: Any) -> Sponsor:
    if "tier" in fields and fields["tier"] not in SPONSOR_TIERS:
        raise ValueError("Invalid sponsor tier")
    _apply_fields(sponsor, fields)
    sponsor.last_modified = _now()
    session.add(sponsor)
    session.flush()
    return sponsor


def list_sponsors(session: Session) -> list[Sponsor]:
    """Sponsors ordered by tier rank, then manual position, then name."""
    rank = {tier: index for index, tier in enumerate(SPONSOR_TIERS)}
    sponsors = session.scalars(select(Sponsor)).all()
    return sorted(sponsors, key=lambda s: (rank.get(s.tier, len(rank)), s.position, s.name))


def create_post(
    session: Session,
    *,
    title: str,
    content: str,
    cover_url: str | None = None,
    is_pinned: bool = False,
    members_only: bool = False,
    author: Member | None = None,
) -> Post:
    slug = slugify(title)
    if not slug:
        raise ValueError("Invalid post title")
    post = Post(
        title=title,
        slug=_unique_slug(session, Post, slug),
        content=content,
        cover_url=cover_url,
        is_pinned=is_pinned,
        members_only=members_only,
        author=author,
    )
    session.add(post)
    session.flush()
    return post


def update_post(session: Session, post: Post, **fields: Any) -> Post:
    if "title" in fields:
        slug = slugify(fields["title"])
        if not slug:
            raise ValueError("Invalid post title")
        fields["slug"] = _unique_slug(session, Post, slug, exclude_id=post.id)
    _apply_fields(post, fields)
    post.last_modified = _now()
    session.add(post)
    session.flush()
    return post


def list_posts(session: Session, *, include_members_only: bool = False) -> Sequence[Post]:
    stmt = select(Post).order_by(Post.is_pinned.desc(), Post.created_at.desc())
    if not include_members_only:
        stmt = stmt.where(Post.members_only.is_(False))
    return session.scalars(stmt).all()


def get_post_by_slug(session: Session, slug: str) -> Post | None:
    stmt = select(Post).where(Post.slug == (slug or "").strip().lower())
    return session.scalars(stmt).first()
