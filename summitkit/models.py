"""SQLAlchemy models for SummitKit."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from .utils import utcnow

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return utcnow()


class Meta(Base):
    __tablename__ = "meta"

    key = Column(String(128), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)


class Member(Base):
    __tablename__ = "members"

    id = Column(String(36), primary_key=True, default=_uuid)
    access_token = Column(String(128), nullable=False, unique=True)
    email = Column(String(255), nullable=False, unique=True)
    user_name = Column(String(255), nullable=True)
    full_name = Column(String(255), nullable=True)
    avatar_url = Column(String(512), nullable=True)
    role = Column(String(50), nullable=False, default="member")
    bio = Column(Text, nullable=True)
    job_title = Column(String(255), nullable=True)
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    last_modified = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    company = relationship("Company", back_populates="members")
    attendances = relationship(
        "Attendance", back_populates="member", cascade="all, delete-orphan"
    )

    @property
    def display_name(self) -> str:
        return self.full_name or self.user_name or self.email


class Event(Base):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    timezone = Column(String(50), nullable=True)
    location = Column(String(255), nullable=True)
    cover_url = Column(String(512), nullable=True)
    url = Column(String(512), nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    last_modified = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    attendances = relationship(
        "Attendance",
        back_populates="event",
        cascade="all, delete-orphan",
        order_by="Attendance.created_at",
    )

    @property
    def attendee_count(self) -> int:
        return sum(1 for a in self.attendances if a.approval_status == "approved")


class Attendance(Base):
    __tablename__ = "attendances"
    __table_args__ = (
        UniqueConstraint("event_id", "member_id", name="uq_attendance_event_member"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    member_id = Column(
        String(36), ForeignKey("members.id", ondelete="CASCADE"), nullable=False
    )
    approval_status = Column(String(16), nullable=False, default="approved")
    created_at = Column(DateTime, default=_now, nullable=False)

    event = relationship("Event", back_populates="attendances")
    member = relationship("Member", back_populates="attendances")


class Company(Base):
    __tablename__ = "companies"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    website = Column(String(512), nullable=True)
    logo_url = Column(String(512), nullable=True)
    industry = Column(String(128), nullable=True)
    featured = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)
    last_modified = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    members = relationship("Member", back_populates="company")


class Sponsor(Base):
    __tablename__ = "sponsors"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    logo_url = Column(String(512), nullable=False)
    website = Column(String(512), nullable=True)
    tier = Column(String(32), nullable=False, default="partner")
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=_now, nullable=False)
    last_modified = Column(DateTime, default=_now, onupdate=_now, nullable=False)


class Post(Base):
    __tablename__ = "posts"

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True)
    content = Column(Text, nullable=False)
    cover_url = Column(String(512), nullable=True)
    is_pinned = Column(Boolean, default=False, nullable=False)
    members_only = Column(Boolean, default=False, nullable=False)
    author_id = Column(
        String(36), ForeignKey("members.id", ondelete="SET NULL"), nullable=True
    )
    created_at = Column(DateTime, default=_now, nullable=False)
    last_modified = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    author = relationship("Member")
