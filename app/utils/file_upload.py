# app/utils/file_upload.py

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from fastapi import UploadFile

from app.core.config import settings
from app.core.exceptions import ValidationError

# Allowed MIME types
ALLOWED_VIDEO_TYPES = {"video/mp4", "video/webm", "video/ogg"}
ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/webp"}
ALLOWED_MATERIAL_TYPES = {
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-powerpoint",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "text/csv",
    "text/plain",
    "text/x-python",
    "application/zip",
    "application/x-zip-compressed",
    "application/vnd.rar",
    "image/jpeg",
    "image/png",
}

MB = 1024 * 1024
MAX_VIDEO_SIZE = settings.max_video_size_mb * MB
MAX_IMAGE_SIZE = settings.max_image_size_mb * MB
MAX_MATERIAL_SIZE = settings.max_material_size_mb * MB
CHUNK_SIZE = MB


@dataclass
class FilePayload:
    """An upload read into memory and validated."""

    filename: str
    content_type: str
    contents: bytes

    @property
    def size(self) -> int:
        return len(self.contents)

    @property
    def extension(self) -> str:
        return Path(self.filename).suffix.lower().lstrip(".")


def validate_file(
    filename: str,
    content_type: str,
    size: int,
    allowed_mime_types: Iterable[str],
    max_bytes: int,
) -> None:
    """
    Check an upload against a MIME allow-list and a size ceiling.

    Raises:
        ValidationError: If the file is missing, empty, of a disallowed type or too big
    """
    if not filename:
        raise ValidationError("No filename provided", errors=["file"])

    allowed = set(allowed_mime_types)
    if content_type not in allowed:
        raise ValidationError(
            f"Invalid file type. Allowed types: {', '.join(sorted(allowed))}",
            errors=["file"],
        )

    if size == 0:
        raise ValidationError("Empty file uploaded", errors=["file"])

    if size > max_bytes:
        raise ValidationError(
            f"File size exceeds maximum allowed size of {max_bytes / MB:g}MB",
            errors=["file"],
        )


async def read_upload(
    file: UploadFile, allowed_mime_types: Iterable[str], max_bytes: int
) -> FilePayload:
    """
    Validate an ``UploadFile`` and read it into memory.

    Type and declared size are checked before reading; the body is read in
    chunks and rejected as soon as it passes ``max_bytes``.
    """
    if file is None:
        raise ValidationError("File is required", errors=["file"])

    content_type = file.content_type or "application/octet-stream"
    # an undeclared size is checked once the chunks are counted
    declared_size = file.size if file.size is not None else max_bytes
    validate_file(file.filename, content_type, declared_size, allowed_mime_types, max_bytes)

    chunks = []
    total = 0
    try:
        while True:
            chunk = await file.read(CHUNK_SIZE)
            if not chunk:
                break
            total += len(chunk)
            if total > max_bytes:
                break
            chunks.append(chunk)
    except Exception as e:
        raise ValidationError(f"Error reading file: {str(e)}", errors=["file"])
    finally:
        await file.seek(0)  # Reset file pointer

    validate_file(file.filename, content_type, total, allowed_mime_types, max_bytes)

    return FilePayload(
        filename=file.filename, content_type=content_type, contents=b"".join(chunks)
    )
