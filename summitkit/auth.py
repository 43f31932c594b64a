"""Bearer token helpers shared by the API routes."""

from __future__ import annotations

import secrets

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from .config import settings
from .crud import get_member_by_token
from .database import get_db
from .models import Member, Meta


def get_bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("authorization") or ""
    if not auth_header.lower().startswith("bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def fetch_root_token_in_session(db: Session) -> str | None:
    meta = db.get(Meta, settings.root_token_key)
    return meta.value if meta else None


def is_root_token(db: Session, token: str | None) -> bool:
    if not token:
        return False
    stored = fetch_root_token_in_session(db)
    return bool(stored) and secrets.compare_digest(token, stored)


def optional_member(
    request: Request, db: Session = Depends(get_db)
) -> Member | None:
    """The member owning the bearer token, or None for anonymous viewers."""
    return get_member_by_token(db, get_bearer_token(request))


def require_member(member: Member | None = Depends(optional_member)) -> Member:
    if member is None:
        raise HTTPException(status_code=401, detail="Missing or invalid bearer token")
    return member


def require_root(request: Request, db: Session = Depends(get_db)) -> str:
    token = get_bearer_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    if not is_root_token(db, token):
        raise HTTPException(status_code=403, detail="Forbidden")
    return token
