"""Unit tests for auth/avatars.py -- avatar ingestion pipeline.

Covers:
- a valid upload is resized to 250x250 and published as avatars/{id}.{ext}
- corrupt, empty, oversized and wrongly named uploads raise ValidationError
- no temp file survives any outcome
- a new upload replaces the previous avatar, including other extensions
- default_avatar_url() is a deterministic Gravatar URL
"""

import io

import pytest
from PIL import Image

from auth.avatars import AvatarPipeline, default_avatar_url
from auth.errors import InternalError, ValidationError
from conftest import png_bytes


@pytest.fixture
def pipeline(tmp_path):
    return AvatarPipeline(avatars_dir=tmp_path / "avatars", tmp_dir=tmp_path / "tmp", max_bytes=64 * 1024)


def _tmp_is_empty(pipeline: AvatarPipeline) -> bool:
    return list(pipeline.tmp_dir.iterdir()) == []


def test_valid_png_is_resized_and_published(pipeline):
    path = pipeline.ingest("acc1", "Me.PNG", io.BytesIO(png_bytes((40, 30))))
    assert path == "avatars/acc1.png"
    with Image.open(pipeline.avatars_dir / "acc1.png") as img:
        assert img.size == (250, 250)
    assert _tmp_is_empty(pipeline)


def test_rgba_upload_saved_as_jpeg(pipeline):
    buf = io.BytesIO()
    Image.new("RGBA", (10, 10), (0, 0, 255, 128)).save(buf, format="PNG")
    buf.seek(0)
    path = pipeline.ingest("acc1", "photo.jpg", buf)
    assert path == "avatars/acc1.jpg"
    with Image.open(pipeline.avatars_dir / "acc1.jpg") as img:
        assert img.format == "JPEG"
        assert img.size == (250, 250)


def test_corrupt_image_is_validation_error_and_leaves_nothing(pipeline):
    with pytest.raises(ValidationError):
        pipeline.ingest("acc1", "me.png", io.BytesIO(b"definitely not an image" * 10))
    assert _tmp_is_empty(pipeline)
    assert not (pipeline.avatars_dir / "acc1.png").exists()


def test_truncated_image_is_validation_error(pipeline):
    data = png_bytes((200, 200))
    with pytest.raises(ValidationError):
        pipeline.ingest("acc1", "me.png", io.BytesIO(data[: len(data) // 2]))
    assert _tmp_is_empty(pipeline)


def test_corrupt_upload_keeps_previous_avatar(pipeline):
    pipeline.ingest("acc1", "me.png", io.BytesIO(png_bytes()))
    with pytest.raises(ValidationError):
        pipeline.ingest("acc1", "me.png", io.BytesIO(b"garbage"))
    with Image.open(pipeline.avatars_dir / "acc1.png") as img:
        assert img.size == (250, 250)


@pytest.mark.parametrize("filename", [None, "", "noext", "script.exe", "archive.tar"])
def test_bad_filename_rejected(pipeline, filename):
    with pytest.raises(ValidationError):
        pipeline.ingest("acc1", filename, io.BytesIO(png_bytes()))
    assert _tmp_is_empty(pipeline)


def test_empty_upload_rejected(pipeline):
    with pytest.raises(ValidationError):
        pipeline.ingest("acc1", "me.png", io.BytesIO(b""))
    assert _tmp_is_empty(pipeline)


def test_oversized_upload_rejected(pipeline):
    with pytest.raises(ValidationError):
        pipeline.ingest("acc1", "me.png", io.BytesIO(b"\x89PNG" + b"0" * (65 * 1024)))
    assert _tmp_is_empty(pipeline)


def test_new_extension_replaces_old_avatar(pipeline):
    pipeline.ingest("acc1", "me.png", io.BytesIO(png_bytes()))
    pipeline.ingest("acc1", "me.gif", io.BytesIO(png_bytes(color="blue")))
    names = sorted(p.name for p in pipeline.avatars_dir.iterdir())
    assert names == ["acc1.gif"]


def test_other_accounts_untouched(pipeline):
    pipeline.ingest("acc1", "me.png", io.BytesIO(png_bytes()))
    pipeline.ingest("acc2", "me.jpg", io.BytesIO(png_bytes()))
    names = sorted(p.name for p in pipeline.avatars_dir.iterdir())
    assert names == ["acc1.png", "acc2.jpg"]


def test_publish_failure_is_internal_error_and_cleans_up(pipeline, monkeypatch):
    def fail(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("auth.avatars.os.replace", fail)
    with pytest.raises(InternalError):
        pipeline.ingest("acc1", "me.png", io.BytesIO(png_bytes()))
    assert _tmp_is_empty(pipeline)


def test_default_avatar_url_is_deterministic():
    url = default_avatar_url("A@X.com ")
    assert url == default_avatar_url("a@x.com")
    assert url.startswith("https://www.gravatar.com/avatar/")
    assert "s=250" in url
