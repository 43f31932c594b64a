from __future__ import annotations

from PIL import Image
from typer.testing import CliRunner

from summitkit import storage
from summitkit.card.overlays import get_overlay
from summitkit.cli import app

runner = CliRunner()


def test_overlays_lists_catalogue():
    result = runner.invoke(app, ["overlays"])
    assert result.exit_code == 0
    assert "yellow (default): Yellow" in result.output
    assert "Badges: Speaker, Sponsor, Attendee, Volunteer" in result.output


def test_render_card_writes_jpeg(tmp_path, remote_images, make_png):
    photo = tmp_path / "portrait.png"
    photo.write_bytes(make_png((400, 800)))
    logo = tmp_path / "acme.png"
    logo.write_bytes(make_png((300, 100), (255, 0, 0, 255)))
    output = tmp_path / "card.jpg"

    result = runner.invoke(
        app,
        [
            "render-card",
            "--photo", str(photo),
            "--name", "Ada Lovelace",
            "--badge", "sponsor",
            "--sponsor", str(logo),
            "--output", str(output),
        ],
    )

    assert result.exit_code == 0, result.output
    assert f"Wrote {output}" in result.output
    with Image.open(output) as image:
        assert image.format == "JPEG"
        assert image.size == (1080, 1080)


def test_render_card_rejects_unknown_overlay(tmp_path, remote_images):
    result = runner.invoke(
        app, ["render-card", "--overlay", "green", "--output", str(tmp_path / "x.jpg")]
    )
    assert result.exit_code != 0
    assert not (tmp_path / "x.jpg").exists()


def test_render_card_fails_when_overlay_is_unavailable(tmp_path, remote_images):
    remote_images.images.pop(get_overlay("yellow").url)
    output = tmp_path / "card.jpg"
    result = runner.invoke(app, ["render-card", "--name", "Ada", "--output", str(output)])
    assert result.exit_code == 1
    assert not output.exists()


def test_render_card_missing_photo_file(tmp_path, remote_images):
    result = runner.invoke(app, ["render-card", "--photo", str(tmp_path / "nope.png")])
    assert result.exit_code != 0


def test_upgrade_db_check_reports_head():
    storage.init_db()
    result = runner.invoke(app, ["upgrade-db", "--check"])
    assert result.exit_code == 0
    assert f"Head revision: {storage.head_revision()}" in result.output


def test_admin_token_prints_root_token():
    result = runner.invoke(app, ["admin-token"])
    assert result.exit_code == 0
    assert result.output.strip() == storage.fetch_root_token()
