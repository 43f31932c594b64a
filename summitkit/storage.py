"""Schema migrations and the root admin token."""

from __future__ import annotations

import logging
import secrets
import shutil
from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import inspect
from sqlalchemy.orm import Session

from .config import settings
from .database import engine, get_session
from .models import Meta
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")

ALEMBIC_DIR = Path(__file__).resolve().parent / "alembic"


def init_db() -> None:
    """Bring the schema to head and make sure a root token exists."""
    upgrade_database(make_backup=False)
    ensure_root_token()


def _alembic_config() -> Config:
    ini_path = ALEMBIC_DIR.parent / "alembic.ini"
    config = Config(str(ini_path)) if ini_path.exists() else Config()
    config.set_main_option("script_location", str(ALEMBIC_DIR))
    url = engine.url.render_as_string(hide_password=False)
    # ConfigParser interpolation treats % specially.
    config.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
    return config


def head_revision() -> str | None:
    return ScriptDirectory.from_config(_alembic_config()).get_current_head()


def current_revision() -> str | None:
    with engine.connect() as connection:
        return MigrationContext.configure(connection).get_current_revision()


def _backup_sqlite_file() -> Path | None:
    db_path = Path(settings.database_path)
    if engine.dialect.name != "sqlite" or not db_path.exists():
        return None
    backup_path = db_path.with_suffix(db_path.suffix + ".bak")
    shutil.copy(db_path, backup_path)
    return backup_path


def upgrade_database(*, make_backup: bool = True) -> list[str]:
    """Upgrade the schema in place and describe what happened.

    Databases that already hold the tables but were never tracked by Alembic
    are stamped at head rather than migrated.
    """
    actions: list[str] = []
    if make_backup:
        backup_path = _backup_sqlite_file()
        if backup_path is not None:
            actions.append(f"Backup created at {backup_path}")

    inspector = inspect(engine)
    tracked = inspector.has_table("alembic_version")
    populated = inspector.has_table("events")
    before = current_revision() if tracked else None
    config = _alembic_config()

    with engine.begin() as connection:
        config.attributes["connection"] = connection
        if tracked:
            command.upgrade(config, "head")
            actions.append("Applied Alembic migrations to head")
        elif populated:
            command.stamp(config, "head")
            actions.append("Stamped existing database to Alembic head")
        else:
            command.upgrade(config, "head")
            actions.append("Ran Alembic upgrade to head (fresh database)")

    head = head_revision()
    if tracked and before != head:
        actions.append(f"Revision {before or 'base'} -> {head}")
    logger.info("Database upgrade finished: %s", "; ".join(actions))
    return actions


def _store_token(session: Session, token: str) -> str:
    session.merge(Meta(key=settings.root_token_key, value=token, updated_at=utcnow()))
    return token


def ensure_root_token() -> str:
    with get_session() as session:
        existing = session.get(Meta, settings.root_token_key)
        if existing:
            return existing.value
        return _store_token(session, secrets.token_urlsafe(32))


def rotate_root_token() -> str:
    with get_session() as session:
        token = _store_token(session, secrets.token_urlsafe(32))
    logger.info("Root admin token rotated")
    return token


def fetch_root_token() -> str:
    with get_session() as session:
        meta = session.get(Meta, settings.root_token_key)
        if meta:
            return meta.value
    return ensure_root_token()
