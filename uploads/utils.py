import os, mimetypes
from uuid import uuid4
from django.conf import settings
from django.core.files.base import ContentFile, File

# subtitle types mimetypes doesn't know everywhere
mimetypes.add_type("text/vtt", ".vtt")
mimetypes.add_type("application/x-subrip", ".srt")


def staging_name(file_name: str) -> str:
    """Return `<staging dir>/<uuid>_<name>` relative to the storage root."""
    safe_name = f"{uuid4().hex}_{os.path.basename(file_name)}"
    return f"{settings.UPLOAD_STAGING_DIR}/{safe_name}"


def as_django_file(payload, file_name: str):
    """Wrap raw bytes or a binary file object so a FileField can store it."""
    if isinstance(payload, (bytes, bytearray, memoryview)):
        return ContentFile(bytes(payload), name=file_name)
    if isinstance(payload, File):
        return payload
    if hasattr(payload, "read"):
        return File(payload, name=file_name)
    return None


def payload_size(payload) -> int | None:
    if isinstance(payload, (bytes, bytearray, memoryview)):
        return len(payload)
    size = getattr(payload, "size", None)
    if size is not None:
        return int(size)
    if hasattr(payload, "seek") and hasattr(payload, "tell"):
        pos = payload.tell()
        payload.seek(0, os.SEEK_END)
        end = payload.tell()
        payload.seek(pos)
        return end - pos
    return None


def guess_mime_type(path: str) -> str:
    mime, _ = mimetypes.guess_type(path)
    return mime or "application/octet-stream"


def guess_kind(path: str) -> str:
    """Return 'image' | 'video' | 'other' based on mimetype/extension."""
    mime, _ = mimetypes.guess_type(path)
    if not mime:
        return "other"
    if mime.startswith("image/"):
        return "image"
    if mime.startswith("video/"):
        return "video"
    return "other"
