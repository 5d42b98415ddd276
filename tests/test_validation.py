import io

import pytest
from PIL import Image

from audioshelf.errors import ValidationError
from audioshelf.services.validation import (
    ChapterMetadata, clean_title, file_extension, validate_chapter_audio, validate_cover_image,
)
from audioshelf.settings.config import settings


def _meta(**kw):
    base = dict(filename="ch.mp3", title="Ch", duration_seconds=120, content_type="audio/mpeg")
    base.update(kw)
    return ChapterMetadata(**base)


def test_file_extension():
    assert file_extension("Book.Part1.M4A") == "m4a"
    assert file_extension("/tmp/../x.mp3") == "mp3"
    assert file_extension("noext") == ""


def test_generic_mime_is_accepted():
    check = validate_chapter_audio(b"x" * 10, _meta(content_type="application/octet-stream"))
    assert check.extension == "mp3"
    assert check.duration_seconds == 120
    assert check.warning is None


def test_missing_duration_counts_as_zero():
    assert validate_chapter_audio(b"x", _meta(duration_seconds=None)).duration_seconds == 0


def test_large_file_warns(monkeypatch):
    monkeypatch.setattr(settings, "WARN_CHAPTER_BYTES", 5)
    check = validate_chapter_audio(b"x" * 10, _meta())
    assert check.warning is not None


def test_too_long_chapter(monkeypatch):
    monkeypatch.setattr(settings, "MAX_CHAPTER_SECONDS", 60)
    with pytest.raises(ValidationError) as exc:
        validate_chapter_audio(b"x", _meta(duration_seconds=61))
    assert exc.value.code == "duration_too_long"


def test_title_rules():
    assert clean_title("  Prologue ") == "Prologue"
    with pytest.raises(ValidationError):
        clean_title(None)
    with pytest.raises(ValidationError) as exc:
        clean_title("x" * 256)
    assert exc.value.code == "title_too_long"


def _image(fmt):
    buf = io.BytesIO()
    Image.new("RGB", (3, 3)).save(buf, format=fmt)
    return buf.getvalue()


def test_cover_formats():
    assert validate_cover_image(_image("JPEG"), "c.jpeg") == "jpg"
    assert validate_cover_image(_image("PNG"), "c.PNG") == "png"
    with pytest.raises(ValidationError) as exc:
        validate_cover_image(_image("PNG"), "c.gif")
    assert exc.value.code == "unsupported_format"


def test_cover_size_limit(monkeypatch):
    monkeypatch.setattr(settings, "MAX_COVER_BYTES", 10)
    with pytest.raises(ValidationError) as exc:
        validate_cover_image(_image("PNG"), "c.png")
    assert exc.value.code == "file_too_large"
