"""Typer CLI for SummitKit."""

from __future__ import annotations

import base64
import json
import mimetypes
from pathlib import Path

from sqlalchemy.exc import OperationalError
import typer
import uvicorn

from .card.compositor import CardRenderError, CardState
from .card.overlays import BADGE_LABELS, CARD_OVERLAYS, DEFAULT_BADGE, DEFAULT_OVERLAY_ID
from .card.service import new_editor
from .config import (
    load_settings,
    settings,
    settings_as_dict,
    update_config_file,
)
from .scheduler import start_scheduler, stop_scheduler
from .seed import seed_fake_data
from .storage import (
    current_revision,
    ensure_root_token,
    fetch_root_token,
    head_revision,
    init_db,
    rotate_root_token,
    upgrade_database,
)

app = typer.Typer(help="SummitKit command-line interface")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def _exit_if_readonly(exc: OperationalError, action: str) -> None:
    message = str(getattr(exc, "orig", exc)).lower()
    if "readonly" in message or "read-only" in message:
        typer.secho(
            f"Unable to {action} because the database is read-only. "
            f"Ensure the process can write to {settings.database_path} "
            "(run with sudo or adjust file ownership/permissions).",
            err=True,
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)


@app.command("admin-token")
def admin_token() -> None:
    """Print the current root admin token."""
    init_db()
    typer.echo(fetch_root_token())


@app.command("rotate-admin-token")
def rotate_admin_token() -> None:
    """Rotate the root admin token."""
    try:
        init_db()
        token = rotate_root_token()
    except OperationalError as exc:
        _exit_if_readonly(exc, "rotate the root admin token")
        raise
    typer.echo(token)


@app.command("upgrade-db")
def upgrade_db(
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Skip creating a .bak copy of the SQLite file before upgrading",
    ),
    check: bool = typer.Option(
        False, "--check", help="Only report the current and head schema revisions"
    ),
) -> None:
    """Bring the schema to the latest Alembic revision."""
    if check:
        current, head = current_revision(), head_revision()
        typer.echo(f"Current revision: {current or 'none'}")
        typer.echo(f"Head revision: {head}")
        if current != head:
            raise typer.Exit(code=1)
        return
    try:
        actions = upgrade_database(make_backup=not no_backup)
        ensure_root_token()
    except OperationalError as exc:
        _exit_if_readonly(exc, "upgrade the database")
        raise
    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("runserver")
def runserver(
    host: str = typer.Option(settings.app_host, "--host", help="Host to bind"),
    port: int = typer.Option(settings.app_port, "--port", help="Port to bind"),
):
    """Start FastAPI with APScheduler."""
    init_db()
    start_scheduler()
    config = uvicorn.Config(
        "summitkit.api:app",
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)
    try:
        typer.echo(f"Starting SummitKit on {host}:{port}")
        server.run()
    finally:
        stop_scheduler()


@app.command("seed-data")
def seed_data(
    members: int = typer.Option(
        settings.seed_members, "--members", min=0, help="Number of members to create"
    ),
    events: int = typer.Option(
        settings.seed_events, "--events", min=0, help="Number of events to create"
    ),
    sponsors: int = typer.Option(
        settings.seed_sponsors, "--sponsors", min=0, help="Number of sponsors to create"
    ),
    companies: int = typer.Option(
        settings.seed_companies,
        "--companies",
        min=0,
        help="Number of directory companies to create",
    ),
    posts: int = typer.Option(
        settings.seed_posts, "--posts", min=0, help="Number of posts to create"
    ),
):
    """Populate the database with a fake community for testing."""
    stats = seed_fake_data(
        member_count=members,
        event_count=events,
        sponsor_count=sponsors,
        company_count=companies,
        post_count=posts,
    )
    typer.echo(
        f"Seed complete: {stats['members']} members, {stats['events']} events, "
        f"{stats['attendances']} RSVPs, {stats['sponsors']} sponsors, "
        f"{stats['companies']} companies, {stats['posts']} posts created."
    )


def _image_source(value: str) -> str:
    """Turn a local file path into a data URL; URLs pass through."""
    if value.startswith(("http://", "https://", "data:", "/uploads/")):
        return value
    path = Path(value).expanduser()
    if not path.is_file():
        raise typer.BadParameter(f"Image file not found: {value}")
    content_type = mimetypes.guess_type(path.name)[0] or "image/png"
    encoded = base64.b64encode(path.read_bytes()).decode("ascii")
    return f"data:{content_type};base64,{encoded}"


@app.command("render-card")
def render_card(
    photo: str | None = typer.Option(
        None, "--photo", help="Photo file path or URL for the centre region"
    ),
    overlay: str = typer.Option(
        DEFAULT_OVERLAY_ID, "--overlay", help="Overlay id (see the overlays command)"
    ),
    name: str = typer.Option("", "--name", help="Name printed at the top left"),
    title: str = typer.Option("", "--title", help="Title printed under the name"),
    badge: str = typer.Option(DEFAULT_BADGE, "--badge", help="Badge label"),
    sponsor: list[str] = typer.Option(
        [], "--sponsor", help="Sponsor logo file path or URL (repeatable)"
    ),
    output: Path | None = typer.Option(
        None, "--output", "-o", help="Output JPEG path (default: derived from the name)"
    ),
) -> None:
    """Render a promo card without starting the server."""
    editor = new_editor(CardState())
    try:
        editor.update(
            photo_url=_image_source(photo) if photo else None,
            overlay_id=overlay,
            name=name,
            title=title,
            badge=badge,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    for index, logo in enumerate(sponsor, start=1):
        editor.add_sticker(url=_image_source(logo), name=Path(logo).stem or f"logo {index}")
    for notification in editor.drain_notifications():
        typer.secho(notification.message, err=True, fg=typer.colors.YELLOW)
    try:
        data, filename = editor.export(quality=settings.export_quality)
    except CardRenderError as exc:
        typer.secho(str(exc), err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    target = output or Path(filename)
    target.write_bytes(data)
    typer.echo(f"Wrote {target} ({len(data)} bytes)")


@app.command("overlays")
def overlays() -> None:
    """List the available card overlays and badge labels."""
    for overlay in CARD_OVERLAYS:
        marker = " (default)" if overlay.id == DEFAULT_OVERLAY_ID else ""
        typer.echo(f"{overlay.id}{marker}: {overlay.label} - {overlay.url}")
    typer.echo("Badges: " + ", ".join(BADGE_LABELS))


@app.command("config")
def configure(
    show: bool = typer.Option(
        False, "--show", help="Show the current effective configuration"
    ),
    host: str | None = typer.Option(None, "--host", help="Default host for runserver"),
    port: int | None = typer.Option(None, "--port", help="Default port for runserver"),
    config_path: Path | None = typer.Option(
        None, "--config-path", help="Path to summitkit.toml (default: ./summitkit.toml)"
    ),
    database_url: str | None = typer.Option(
        None, "--database-url", help="SQLAlchemy database URL"
    ),
    events_per_page: int | None = typer.Option(
        None, "--events-per-page", min=1, help="Public pagination size"
    ),
    export_quality: int | None = typer.Option(
        None, "--export-quality", min=1, max=100, help="JPEG quality for card exports"
    ),
    canvas_size: int | None = typer.Option(
        None, "--canvas-size", min=100, help="Card canvas edge length in pixels"
    ),
    card_session_ttl_minutes: int | None = typer.Option(
        None,
        "--card-session-ttl-minutes",
        min=1,
        help="Idle minutes before a card session is discarded",
    ),
    image_fetch_timeout: float | None = typer.Option(
        None, "--image-fetch-timeout", min=0.1, help="Seconds to wait for remote images"
    ),
    upload_max_bytes: int | None = typer.Option(
        None, "--upload-max-bytes", min=1, help="Largest accepted upload"
    ),
    font_path: str | None = typer.Option(
        None, "--font-path", help="TrueType font for the name"
    ),
    enable_scheduler: bool | None = typer.Option(
        None,
        "--enable-scheduler/--disable-scheduler",
        help="Toggle the background scheduler (session purge, image cache refresh)",
    ),
):
    """View or update the persistent configuration file."""

    updates = {
        "app_host": host,
        "app_port": port,
        "database_url": database_url,
        "events_per_page": events_per_page,
        "export_quality": export_quality,
        "canvas_size": canvas_size,
        "card_session_ttl_minutes": card_session_ttl_minutes,
        "image_fetch_timeout": image_fetch_timeout,
        "upload_max_bytes": upload_max_bytes,
        "font_path": font_path,
        "enable_scheduler": enable_scheduler,
    }
    clean_updates = {k: v for k, v in updates.items() if v is not None}

    settings_ref = settings
    target_path = config_path or settings.config_path
    if clean_updates:
        settings_ref = update_config_file(clean_updates, path=target_path)
        typer.echo(f"Updated configuration in {target_path}")
    else:
        settings_ref = load_settings(target_path)
    if show or not clean_updates:
        effective = settings_as_dict(settings_ref)
        effective["config_path"] = str(target_path)
        typer.echo(json.dumps(effective, indent=2))


if __name__ == "__main__":
    app()
