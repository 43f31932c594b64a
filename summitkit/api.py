"""FastAPI application for SummitKit."""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from importlib.metadata import PackageNotFoundError, version as pkg_version
from io import BytesIO
from pathlib import Path
import tomllib

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, Response, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel, Field
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth import (
    get_bearer_token,
    is_root_token,
    optional_member,
    require_member,
    require_root,
)
from .card_routes import register_card_routes
from .config import settings
from .crud import (
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
from .database import get_db
from .ics import generate_ics
from .models import Company, Event, Member, Post, Sponsor
from .rsvp import RSVPError, rsvp_status, submit_rsvp
from .scheduler import start_scheduler, stop_scheduler
from .storage import init_db
from .utils import excerpt, render_markdown, utcnow

# Use uvicorn's error logger so messages get the level prefix in the default log
# format.
logger = logging.getLogger("uvicorn.error")

UPLOAD_EXTENSIONS = {"JPEG": ".jpg", "PNG": ".png", "GIF": ".gif", "WEBP": ".webp"}


def _no_cache(response: Response) -> Response:
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
    response.headers["Pragma"] = "no-cache"
    response.headers["Expires"] = "0"
    return response


def _load_app_version() -> str:
    """Return the current package version, falling back to pyproject for dev runs."""
    try:
        return pkg_version("summitkit")
    except PackageNotFoundError:
        pyproject_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            data = tomllib.loads(pyproject_path.read_text())
            project = data.get("project") or {}
            return str(project.get("version") or "dev")
    return "dev"


APP_VERSION = _load_app_version()


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    start_scheduler()
    try:
        yield
    finally:
        stop_scheduler()


app = FastAPI(title="SummitKit", version=APP_VERSION, lifespan=lifespan)
app.mount(
    "/uploads",
    StaticFiles(directory=str(settings.uploads_dir), check_dir=False),
    name="uploads",
)

register_card_routes(app)

EVENTS_PER_PAGE = settings.events_per_page


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        {"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers
    )


@app.exception_handler(RSVPError)
async def rsvp_error_handler(request: Request, exc: RSVPError):
    return JSONResponse({"detail": str(exc)}, status_code=exc.status_code)


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    if "database is locked" in raw.lower():
        logger.error(
            "SQLite database is locked while handling %s %s",
            request.method,
            request.url.path,
        )
        detail = "The database is busy at the moment. Please wait a few seconds and try again."
        status = 503
    else:
        logger.error(
            "Operational database error on %s %s: %s",
            request.method,
            request.url.path,
            raw,
        )
        detail = "We hit a database issue. Please try again."
        status = 500
    return JSONResponse({"detail": detail}, status_code=status)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse({"detail": _jsonable_errors(exc)}, status_code=422)


def _jsonable_errors(exc: RequestValidationError) -> list[dict]:
    errors = []
    for error in exc.errors():
        errors.append(
            {
                "loc": list(error.get("loc", ())),
                "msg": str(error.get("msg", "")),
                "type": str(error.get("type", "")),
            }
        )
    return errors


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Gracefully handle unexpected errors."""
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    return JSONResponse({"detail": "Internal server error"}, status_code=500)


def _parse_datetime(name: str, raw: str) -> datetime:
    try:
        return datetime.fromisoformat(raw)
    except ValueError as exc:
        raise HTTPException(
            status_code=400, detail=f"Invalid {name}; use ISO8601 format"
        ) from exc


def _ensure(db: Session, model, object_id: str, label: str):
    instance = db.get(model, object_id)
    if not instance:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return instance


def _ensure_event(db: Session, event_id: str) -> Event:
    return _ensure(db, Event, event_id, "Event")


def _build_pagination(*, page: int, per_page: int, total: int) -> dict:
    total_pages = max(1, (total + per_page - 1) // per_page) if total else 1
    page = max(1, min(page, total_pages)) if total else 1
    return {
        "page": page,
        "per_page": per_page,
        "total_pages": total_pages,
        "total": total,
        "has_prev": page > 1,
        "has_next": page < total_pages and total > 0,
        "prev_page": page - 1 if page > 1 else None,
        "next_page": page + 1 if page < total_pages and total > 0 else None,
    }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _serialize_member(member: Member, *, private: bool = False) -> dict:
    data = {
        "id": member.id,
        "user_name": member.user_name,
        "full_name": member.full_name,
        "display_name": member.display_name,
        "avatar_url": member.avatar_url,
        "role": member.role,
        "bio": member.bio,
        "job_title": member.job_title,
        "company": (
            {"id": member.company.id, "name": member.company.name, "slug": member.company.slug}
            if member.company
            else None
        ),
    }
    if private:
        data["email"] = member.email
        data["created_at"] = _iso(member.created_at)
    return data


def _serialize_attendee(member: Member) -> dict:
    return {
        "id": member.id,
        "user_name": member.user_name,
        "full_name": member.full_name,
        "avatar_url": member.avatar_url,
        "job_title": member.job_title,
    }


def _serialize_event(event: Event, *, now: datetime | None = None) -> dict:
    now = now or utcnow()
    return {
        "id": event.id,
        "title": event.title,
        "slug": event.slug,
        "description": event.description,
        "description_html": str(render_markdown(event.description)),
        "start_time": _iso(event.start_time),
        "end_time": _iso(event.end_time),
        "timezone": event.timezone,
        "location": event.location,
        "cover_url": event.cover_url,
        "url": event.url,
        "attendee_count": event.attendee_count,
        "has_ended": event.end_time < now,
        "created_at": _iso(event.created_at),
        "last_modified": _iso(event.last_modified),
    }


def _serialize_sponsor(sponsor: Sponsor) -> dict:
    return {
        "id": sponsor.id,
        "name": sponsor.name,
        "logo_url": sponsor.logo_url,
        "website": sponsor.website,
        "tier": sponsor.tier,
        "position": sponsor.position,
    }


def _serialize_company(company: Company, *, include_members: bool = False) -> dict:
    data = {
        "id": company.id,
        "name": company.name,
        "slug": company.slug,
        "description": company.description,
        "website": company.website,
        "logo_url": company.logo_url,
        "industry": company.industry,
        "featured": company.featured,
    }
    if include_members:
        data["members"] = [_serialize_member(m) for m in company.members]
    return data


def _serialize_post(post: Post, *, include_content: bool = False) -> dict:
    data = {
        "id": post.id,
        "title": post.title,
        "slug": post.slug,
        "excerpt": excerpt(post.content),
        "cover_url": post.cover_url,
        "is_pinned": post.is_pinned,
        "members_only": post.members_only,
        "author": _serialize_attendee(post.author) if post.author else None,
        "created_at": _iso(post.created_at),
        "last_modified": _iso(post.last_modified),
    }
    if include_content:
        data["content"] = post.content
        data["content_html"] = str(render_markdown(post.content))
    return data


def _is_privileged(request: Request, db: Session) -> bool:
    """Whether the bearer token belongs to a member or the root admin."""
    token = get_bearer_token(request)
    if not token:
        return False
    return is_root_token(db, token) or get_member_by_token(db, token) is not None


class EventCreatePayload(BaseModel):
    title: str = Field(..., min_length=1)
    description: str | None = None
    start_time: str = Field(..., description="ISO datetime string")
    end_time: str = Field(..., description="ISO datetime string after start_time")
    timezone: str | None = None
    location: str | None = None
    cover_url: str | None = None
    url: str | None = None


class EventUpdatePayload(BaseModel):
    title: str | None = Field(None, min_length=1)
    description: str | None = None
    start_time: str | None = Field(None, description="ISO datetime string")
    end_time: str | None = Field(None, description="ISO datetime string")
    timezone: str | None = None
    location: str | None = None
    cover_url: str | None = None
    url: str | None = None


class MemberCreatePayload(BaseModel):
    email: str
    user_name: str | None = None
    full_name: str | None = None
    avatar_url: str | None = None
    role: str = "member"
    bio: str | None = None
    job_title: str | None = None
    company_id: str | None = None


class MemberSelfUpdatePayload(BaseModel):
    user_name: str | None = None
    full_name: str | None = None
    avatar_url: str | None = None
    bio: str | None = None
    job_title: str | None = None


class MemberUpdatePayload(MemberSelfUpdatePayload):
    email: str | None = None
    role: str | None = None
    company_id: str | None = None


class SponsorCreatePayload(BaseModel):
    name: str = Field(..., min_length=1)
    logo_url: str = Field(..., min_length=1)
    website: str | None = None
    tier: str = "partner"
    position: int = 0


class SponsorUpdatePayload(BaseModel):
    name: str | None = Field(None, min_length=1)
    logo_url: str | None = Field(None, min_length=1)
    website: str | None = None
    tier: str | None = None
    position: int | None = None


class CompanyCreatePayload(BaseModel):
    name: str = Field(..., min_length=1)
    description: str | None = None
    website: str | None = None
    logo_url: str | None = None
    industry: str | None = None
    featured: bool = False


class CompanyUpdatePayload(BaseModel):
    name: str | None = Field(None, min_length=1)
    description: str | None = None
    website: str | None = None
    logo_url: str | None = None
    industry: str | None = None
    featured: bool | None = None


class PostCreatePayload(BaseModel):
    title: str = Field(..., min_length=1)
    content: str
    cover_url: str | None = None
    is_pinned: bool = False
    members_only: bool = False
    author_id: str | None = None


class PostUpdatePayload(BaseModel):
    title: str | None = Field(None, min_length=1)
    content: str | None = None
    cover_url: str | None = None
    is_pinned: bool | None = None
    members_only: bool | None = None
    author_id: str | None = None


# -------- JSON API (v1) --------


@app.get("/api/v1/health")
def api_health():
    return {"status": "ok", "version": APP_VERSION}


@app.get("/api/v1/events")
def api_list_events(
    when: str = Query("upcoming"),
    page: int = Query(1, ge=1),
    per_page: int = Query(EVENTS_PER_PAGE, ge=1, le=50),
    db: Session = Depends(get_db),
):
    """List events; ``when`` is ``upcoming``, ``past`` or ``all``."""
    scope = (when or "upcoming").strip().lower()
    if scope not in {"upcoming", "past", "all"}:
        raise HTTPException(status_code=400, detail="when must be upcoming, past or all")
    now = utcnow()
    filters = []
    order_by = Event.start_time.asc()
    if scope == "upcoming":
        filters.append(Event.end_time >= now)
    elif scope == "past":
        filters.append(Event.end_time < now)
        order_by = Event.start_time.desc()

    count_stmt = select(func.count()).select_from(Event)
    stmt = select(Event)
    for condition in filters:
        count_stmt = count_stmt.where(condition)
        stmt = stmt.where(condition)
    total = db.scalar(count_stmt) or 0
    pagination = _build_pagination(page=page, per_page=per_page, total=total)
    offset = (pagination["page"] - 1) * per_page if total else 0
    events = db.scalars(stmt.order_by(order_by).offset(offset).limit(per_page)).all()
    return {
        "events": [_serialize_event(event, now=now) for event in events],
        "pagination": pagination,
    }


@app.post("/api/v1/events", status_code=201)
def api_create_event(
    payload: EventCreatePayload,
    _: str = Depends(require_root),
    db: Session = Depends(get_db),
):
    try:
        event = create_event(
            db,
            title=payload.title,
            description=payload.description,
            start_time=_parse_datetime("start_time", payload.start_time),
            end_time=_parse_datetime("end_time", payload.end_time),
            location=payload.location,
            timezone=payload.timezone,
            cover_url=payload.cover_url,
            url=payload.url,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"event": _serialize_event(event)}


@app.get("/api/v1/events/{event_id}")
def api_get_event(event_id: str, db: Session = Depends(get_db)):
    event = _ensure_event(db, event_id)
    return {"event": _serialize_event(event)}


@app.get("/api/v1/events/{event_id}/event.ics")
def api_get_event_ics(event_id: str, db: Session = Depends(get_db)):
    """Serve an event as a downloadable ICS file."""
    event = _ensure_event(db, event_id)
    headers = {"Content-Disposition": f'attachment; filename="{event.slug or "event"}.ics"'}
    return Response(
        content=generate_ics(event), media_type="text/calendar", headers=headers
    )


@app.patch("/api/v1/events/{event_id}")
def api_update_event(
    event_id: str,
    payload: EventUpdatePayload,
    _: str = Depends(require_root),
    db: Session = Depends(get_db),
):
    event = _ensure_event(db, event_id)
    data = payload.model_dump(exclude_unset=True)
    for key in ("start_time", "end_time"):
        if key in data:
            if not data[key]:
                raise HTTPException(status_code=400, detail=f"{key} is required")
            data[key] = _parse_datetime(key, data[key])
    if "title" in data and not data["title"]:
        raise HTTPException(status_code=400, detail="title is required")
    try:
        event = update_event(db, event, **data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"event": _serialize_event(event)}


@app.delete("/api/v1/events/{event_id}", status_code=204)
def api_delete_event(
    event_id: str, _: str = Depends(require_root), db: Session = Depends(get_db)
):
    event = _ensure_event(db, event_id)
    db.delete(event)
    return Response(status_code=204)


@app.get("/api/v1/events/{event_id}/attendees")
def api_list_attendees(event_id: str, db: Session = Depends(get_db)):
    event = _ensure_event(db, event_id)
    attendees = list_attendees(db, event)
    return {
        "attendees": [_serialize_attendee(member) for member in attendees],
        "total": len(attendees),
    }


@app.get("/api/v1/events/{event_id}/rsvp")
def api_get_rsvp_status(
    event_id: str,
    response: Response,
    member: Member | None = Depends(optional_member),
    db: Session = Depends(get_db),
):
    event = _ensure_event(db, event_id)
    _no_cache(response)
    return {"rsvp": rsvp_status(db, event, member).as_dict()}


@app.post("/api/v1/events/{event_id}/rsvp", status_code=201)
def api_submit_rsvp(
    event_id: str,
    member: Member | None = Depends(optional_member),
    db: Session = Depends(get_db),
):
    event = _ensure_event(db, event_id)
    submit_rsvp(db, event, member)
    attendees = list_attendees(db, event)
    return {
        "rsvp": rsvp_status(db, event, member).as_dict(),
        "attendee_count": event.attendee_count,
        "attendees": [_serialize_attendee(m) for m in attendees],
        "total": len(attendees),
    }


@app.get("/api/v1/members")
def api_list_members(_: str = Depends(require_root), db: Session = Depends(get_db)):
    members = db.scalars(select(Member).order_by(Member.created_at.asc())).all()
    return {"members": [_serialize_member(m, private=True) for m in members]}


@app.post("/api/v1/members", status_code=201)
def api_create_member(
    payload: MemberCreatePayload,
    _: str = Depends(require_root),
    db: Session = Depends(get_db),
):
    company = _ensure(db, Company, payload.company_id, "Company") if payload.company_id else None
    try:
        member = create_member(
            db,
            email=payload.email,
            user_name=payload.user_name,
            full_name=payload.full_name,
            avatar_url=payload.avatar_url,
            role=payload.role,
            bio=payload.bio,
            job_title=payload.job_title,
            company=company,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except IntegrityError as exc:
        raise HTTPException(status_code=409, detail="Email is already registered") from exc
    return {
        "member": _serialize_member(member, private=True),
        "access_token": member.access_token,
    }


@app.get("/api/v1/members/me")
def api_get_me(member: Member = Depends(require_member)):
    return {"member": _serialize_member(member, private=True)}


@app.patch("/api/v1/members/me")
def api_update_me(
    payload: MemberSelfUpdatePayload,
    member: Member = Depends(require_member),
    db: Session = Depends(get_db),
):
    member = update_member(db, member, **payload.model_dump(exclude_unset=True))
    return {"member": _serialize_member(member, private=True)}


@app.get("/api/v1/members/{member_id}")
def api_get_member(member_id: str, db: Session = Depends(get_db)):
    member = _ensure(db, Member, member_id, "Member")
    return {"member": _serialize_member(member)}


@app.patch("/api/v1/members/{member_id}")
def api_update_member(
    member_id: str,
    payload: MemberUpdatePayload,
    _: str = Depends(require_root),
    db: Session = Depends(get_db),
):
    member = _ensure(db, Member, member_id, "Member")
    data = payload.model_dump(exclude_unset=True)
    if data.get("company_id"):
        _ensure(db, Company, data["company_id"], "Company")
    try:
        member = update_member(db, member, **data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except IntegrityError as exc:
        raise HTTPException(status_code=409, detail="Email is already registered") from exc
    return {"member": _serialize_member(member, private=True)}


@app.delete("/api/v1/members/{member_id}", status_code=204)
def api_delete_member(
    member_id: str, _: str = Depends(require_root), db: Session = Depends(get_db)
):
    member = _ensure(db, Member, member_id, "Member")
    db.execute(update(Post).where(Post.author_id == member.id).values(author_id=None))
    db.delete(member)
    return Response(status_code=204)


@app.get("/api/v1/sponsors")
def api_list_sponsors(db: Session = Depends(get_db)):
    return {"sponsors": [_serialize_sponsor(s) for s in list_sponsors(db)]}


@app.get("/api/v1/sponsors/{sponsor_id}")
def api_get_sponsor(sponsor_id: str, db: Session = Depends(get_db)):
    return {"sponsor": _serialize_sponsor(_ensure(db, Sponsor, sponsor_id, "Sponsor"))}


@app.post("/api/v1/sponsors", status_code=201)
def api_create_sponsor(
    payload: SponsorCreatePayload,
    _: str = Depends(require_root),
    db: Session = Depends(get_db),
):
    try:
        sponsor = create_sponsor(db, **payload.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"sponsor": _serialize_sponsor(sponsor)}


@app.patch("/api/v1/sponsors/{sponsor_id}")
def api_update_sponsor(
    sponsor_id: str,
    payload: SponsorUpdatePayload,
    _: str = Depends(require_root),
    db: Session = Depends(get_db),
):
    sponsor = _ensure(db, Sponsor, sponsor_id, "Sponsor")
    try:
        sponsor = update_sponsor(db, sponsor, **payload.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"sponsor": _serialize_sponsor(sponsor)}


@app.delete("/api/v1/sponsors/{sponsor_id}", status_code=204)
def api_delete_sponsor(
    sponsor_id: str, _: str = Depends(require_root), db: Session = Depends(get_db)
):
    db.delete(_ensure(db, Sponsor, sponsor_id, "Sponsor"))
    return Response(status_code=204)


@app.get("/api/v1/companies")
def api_list_companies(
    q: str | None = Query(None),
    limit: int | None = Query(None, ge=1, le=200),
    db: Session = Depends(get_db),
):
    companies = search_companies(db, q, limit)
    return {"companies": [_serialize_company(c) for c in companies]}


@app.get("/api/v1/companies/{company_id}")
def api_get_company(company_id: str, db: Session = Depends(get_db)):
    company = _ensure(db, Company, company_id, "Company")
    return {"company": _serialize_company(company, include_members=True)}


@app.post("/api/v1/companies", status_code=201)
def api_create_company(
    payload: CompanyCreatePayload,
    _: str = Depends(require_root),
    db: Session = Depends(get_db),
):
    try:
        company = create_company(db, **payload.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"company": _serialize_company(company)}


@app.patch("/api/v1/companies/{company_id}")
def api_update_company(
    company_id: str,
    payload: CompanyUpdatePayload,
    _: str = Depends(require_root),
    db: Session = Depends(get_db),
):
    company = _ensure(db, Company, company_id, "Company")
    try:
        company = update_company(db, company, **payload.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"company": _serialize_company(company)}


@app.delete("/api/v1/companies/{company_id}", status_code=204)
def api_delete_company(
    company_id: str, _: str = Depends(require_root), db: Session = Depends(get_db)
):
    company = _ensure(db, Company, company_id, "Company")
    db.execute(
        update(Member).where(Member.company_id == company.id).values(company_id=None)
    )
    db.delete(company)
    return Response(status_code=204)


@app.get("/api/v1/posts")
def api_list_posts(request: Request, db: Session = Depends(get_db)):
    posts = list_posts(db, include_members_only=_is_privileged(request, db))
    return {"posts": [_serialize_post(p) for p in posts]}


@app.get("/api/v1/posts/{slug}")
def api_get_post(slug: str, request: Request, db: Session = Depends(get_db)):
    post = get_post_by_slug(db, slug)
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    if post.members_only and not _is_privileged(request, db):
        raise HTTPException(status_code=401, detail="Sign in to read this post")
    return {"post": _serialize_post(post, include_content=True)}


@app.post("/api/v1/posts", status_code=201)
def api_create_post(
    payload: PostCreatePayload,
    _: str = Depends(require_root),
    db: Session = Depends(get_db),
):
    data = payload.model_dump()
    author_id = data.pop("author_id")
    author = _ensure(db, Member, author_id, "Member") if author_id else None
    try:
        post = create_post(db, author=author, **data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"post": _serialize_post(post, include_content=True)}


@app.patch("/api/v1/posts/{post_id}")
def api_update_post(
    post_id: str,
    payload: PostUpdatePayload,
    _: str = Depends(require_root),
    db: Session = Depends(get_db),
):
    post = _ensure(db, Post, post_id, "Post")
    data = payload.model_dump(exclude_unset=True)
    if data.get("author_id"):
        _ensure(db, Member, data["author_id"], "Member")
    try:
        post = update_post(db, post, **data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"post": _serialize_post(post, include_content=True)}


@app.delete("/api/v1/posts/{post_id}", status_code=204)
def api_delete_post(
    post_id: str, _: str = Depends(require_root), db: Session = Depends(get_db)
):
    db.delete(_ensure(db, Post, post_id, "Post"))
    return Response(status_code=204)


@app.post("/api/v1/uploads", status_code=201)
def api_upload_image(
    request: Request,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
):
    """Store an uploaded image and return the URL it is served from."""
    if not _is_privileged(request, db):
        raise HTTPException(status_code=401, detail="Missing or invalid bearer token")
    data = file.file.read(settings.upload_max_bytes + 1)
    if len(data) > settings.upload_max_bytes:
        raise HTTPException(status_code=413, detail="Upload exceeds the size limit")
    try:
        with Image.open(BytesIO(data)) as image:
            image_format = image.format
            width, height = image.size
            image.verify()
    except Image.DecompressionBombError as exc:
        raise HTTPException(status_code=400, detail="Upload is too large to decode") from exc
    except (UnidentifiedImageError, OSError) as exc:
        raise HTTPException(status_code=400, detail="Upload is not a valid image") from exc
    if width * height > settings.image_max_pixels:
        raise HTTPException(status_code=400, detail="Upload is too large to decode")
    extension = UPLOAD_EXTENSIONS.get(image_format or "")
    if extension is None:
        raise HTTPException(status_code=400, detail="Unsupported image format")
    filename = f"{uuid.uuid4().hex}{extension}"
    settings.uploads_dir.mkdir(parents=True, exist_ok=True)
    (settings.uploads_dir / filename).write_bytes(data)
    logger.info("Stored upload %s (%d bytes)", filename, len(data))
    return {
        "url": f"/uploads/{filename}",
        "content_type": Image.MIME.get(image_format, "application/octet-stream"),
        "size": len(data),
    }
