# services/validation.py
"""Upload policy for chapter audio and cover images.

Everything here is checked before the object store is touched, so a rejected
upload never leaves anything behind.
"""
from __future__ import annotations

import io
import logging
import os
from dataclasses import dataclass
from typing import Optional

from PIL import Image, UnidentifiedImageError

from audioshelf.errors import ValidationError
from audioshelf.settings.config import settings

logger = logging.getLogger(__name__)

AUDIO_EXTENSIONS = {"mp3", "m4a"}
AUDIO_MIME_TYPES = {"audio/mpeg", "audio/mp3", "audio/mp4", "audio/m4a", "audio/x-m4a", "audio/aac"}
COVER_EXTENSIONS = {"jpg", "jpeg", "png", "webp"}
TITLE_MAX_LEN = 255


@dataclass(slots=True)
class ChapterMetadata:
    filename: str
    title: str
    duration_seconds: Optional[int] = None
    content_type: Optional[str] = None
    is_preview: bool = False


@dataclass(slots=True)
class AudioCheck:
    extension: str
    size_bytes: int
    duration_seconds: int
    warning: Optional[str] = None


def file_extension(filename: str) -> str:
    _, ext = os.path.splitext(os.path.basename(filename or ""))
    return ext.lower().lstrip(".")


def _mb(n: int) -> str:
    return f"{n / (1024 * 1024):.1f} MB"


def clean_title(raw: Optional[str]) -> str:
    title = (raw or "").strip()
    if not title:
        raise ValidationError("A title is required.", code="title_required")
    if len(title) > TITLE_MAX_LEN:
        raise ValidationError(f"Title must be at most {TITLE_MAX_LEN} characters.", code="title_too_long")
    return title


def validate_chapter_audio(data: bytes, meta: ChapterMetadata) -> AudioCheck:
    ext = file_extension(meta.filename)
    if ext not in AUDIO_EXTENSIONS:
        raise ValidationError(
            "Unsupported file format. Allowed formats: MP3, M4A (AAC).",
            code="unsupported_format",
        )

    mime = (meta.content_type or "").strip().lower()
    # Generic uploads arrive as application/octet-stream; only reject clearly non-audio types
    if mime and mime not in AUDIO_MIME_TYPES and not mime.startswith("audio/") and mime != "application/octet-stream":
        raise ValidationError("This file is not an audio file. Allowed formats: MP3, M4A (AAC).", code="not_audio")

    size = len(data or b"")
    if size == 0:
        raise ValidationError("The uploaded file is empty.", code="empty_file")
    if size > settings.MAX_CHAPTER_BYTES:
        raise ValidationError(
            f"File is too large ({_mb(size)}). Maximum size is {_mb(settings.MAX_CHAPTER_BYTES)}; "
            "export as mono 64-96 kbps MP3/M4A or split the chapter.",
            code="file_too_large",
        )

    duration = meta.duration_seconds
    if duration is not None and duration < 0:
        raise ValidationError("Duration cannot be negative.", code="invalid_duration")
    if duration is not None and duration > settings.MAX_CHAPTER_SECONDS:
        raise ValidationError(
            f"Chapter is too long ({duration // 60} minutes). Maximum length is "
            f"{settings.MAX_CHAPTER_SECONDS // 60} minutes; split it into shorter chapters.",
            code="duration_too_long",
        )

    warning = None
    if size > settings.WARN_CHAPTER_BYTES:
        warning = f"Large upload ({_mb(size)}); this may take a while."
        logger.warning("validate_chapter_audio: %s is %s", meta.filename, _mb(size))

    return AudioCheck(extension=ext, size_bytes=size, duration_seconds=int(duration or 0), warning=warning)


def validate_cover_image(data: bytes, filename: str) -> str:
    """Return the normalized extension of a valid cover image."""
    ext = file_extension(filename)
    if ext not in COVER_EXTENSIONS:
        raise ValidationError("Unsupported image format. Allowed: JPG, PNG, WEBP.", code="unsupported_format")
    size = len(data or b"")
    if size == 0:
        raise ValidationError("The uploaded image is empty.", code="empty_file")
    if size > settings.MAX_COVER_BYTES:
        raise ValidationError(
            f"Image is too large ({_mb(size)}). Maximum size is {_mb(settings.MAX_COVER_BYTES)}.",
            code="file_too_large",
        )
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise ValidationError("The uploaded file is not a readable image.", code="not_image") from e
    return "jpg" if ext == "jpeg" else ext


__all__ = [
    "ChapterMetadata",
    "AudioCheck",
    "clean_title",
    "file_extension",
    "validate_chapter_audio",
    "validate_cover_image",
]
