"""RSVP state for a viewer looking at an event."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .crud import create_attendance, get_attendance
from .models import Attendance, Event, Member
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")


class RSVPState(str, enum.Enum):
    NOT_AUTHENTICATED = "not_authenticated"
    NOT_RSVPD = "authenticated_not_rsvpd"
    RSVPD = "authenticated_rsvpd"
    EVENT_ENDED = "event_ended"


class RSVPError(Exception):
    """Base class for rejected RSVP submissions."""

    status_code = 400


class NotAuthenticatedError(RSVPError):
    status_code = 401

    def __init__(self) -> None:
        super().__init__("Sign in to RSVP for this event.")


class AlreadyRSVPdError(RSVPError):
    status_code = 409

    def __init__(self) -> None:
        super().__init__("You have already RSVP'd to this event.")


class EventEndedError(RSVPError):
    status_code = 403

    def __init__(self) -> None:
        super().__init__("This event has already ended.")


@dataclass(frozen=True)
class RSVPStatus:
    state: RSVPState
    event_ended: bool
    is_going: bool

    @property
    def can_rsvp(self) -> bool:
        return self.state is RSVPState.NOT_RSVPD

    def as_dict(self) -> dict:
        return {
            "state": self.state.value,
            "event_ended": self.event_ended,
            "is_going": self.is_going,
            "can_rsvp": self.can_rsvp,
        }


def event_has_ended(event: Event, *, now: datetime | None = None) -> bool:
    return event.end_time < (now or utcnow())


def resolve_state(
    event: Event,
    member: Member | None,
    attendance: Attendance | None,
    *,
    now: datetime | None = None,
) -> RSVPStatus:
    """Derive the viewer's RSVP state.

    An ended event wins over every other state; an existing RSVP is still
    reported through ``is_going``.
    """
    ended = event_has_ended(event, now=now)
    going = attendance is not None
    if ended:
        state = RSVPState.EVENT_ENDED
    elif member is None:
        state = RSVPState.NOT_AUTHENTICATED
    elif going:
        state = RSVPState.RSVPD
    else:
        state = RSVPState.NOT_RSVPD
    return RSVPStatus(state=state, event_ended=ended, is_going=going)


def rsvp_status(
    session: Session,
    event: Event,
    member: Member | None,
    *,
    now: datetime | None = None,
) -> RSVPStatus:
    attendance = get_attendance(session, event=event, member=member) if member else None
    return resolve_state(event, member, attendance, now=now)


def submit_rsvp(
    session: Session,
    event: Event,
    member: Member | None,
    *,
    now: datetime | None = None,
) -> Attendance:
    """Record a member's RSVP; only valid from ``authenticated_not_rsvpd``."""
    status = rsvp_status(session, event, member, now=now)
    if status.state is RSVPState.EVENT_ENDED:
        raise EventEndedError()
    if status.state is RSVPState.NOT_AUTHENTICATED:
        raise NotAuthenticatedError()
    if status.state is RSVPState.RSVPD:
        raise AlreadyRSVPdError()

    try:
        with session.begin_nested():
            attendance = create_attendance(session, event=event, member=member)
    except IntegrityError as exc:
        # A concurrent submit for the same member won the unique constraint.
        raise AlreadyRSVPdError() from exc
    logger.info("RSVP recorded for event %s by member %s", event.id, member.id)
    return attendance
