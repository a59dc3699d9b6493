import os
import uuid
from abc import ABC, abstractmethod
from io import BytesIO
from typing import Iterable, List, Sequence

import structlog
from fastapi import UploadFile
from PIL import Image, UnidentifiedImageError

from app.core.config import settings
from app.core.exceptions import MediaUploadFailed, ValidationError

logger = structlog.get_logger(__name__)

FORMAT_TO_EXTENSION = {"JPEG": "jpg", "PNG": "png", "WEBP": "webp"}
MAX_PIXELS = 50_000_000


class MediaStorage(ABC):
    """Where uploaded images live. The catalog only ever stores the returned URLs."""

    @abstractmethod
    def upload(self, file: UploadFile) -> str:
        """Store the file and return its public URL."""

    @abstractmethod
    def delete(self, url: str) -> None:
        """Remove a previously uploaded file."""


def read_image(file: UploadFile, max_size: int, allowed_extensions: Iterable[str]) -> tuple[bytes, str]:
    """Validate an uploaded image and return raw bytes plus normalized extension.

    Never trusts the client filename or content type: the format is detected
    from the bytes with Pillow.
    """
    allowed = {ext.lower() for ext in allowed_extensions}
    filename = getattr(file, "filename", "") or ""
    file.file.seek(0)
    try:
        data = file.file.read(max_size + 1)
    finally:
        file.file.seek(0)

    if not data:
        raise ValidationError("Empty file", [{"file": filename}])
    if len(data) > max_size:
        raise ValidationError("File too large", [{"file": filename}])

    claimed = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    if claimed not in allowed:
        raise ValidationError("File extension not allowed", [{"file": filename}])

    try:
        with Image.open(BytesIO(data)) as image:
            detected = FORMAT_TO_EXTENSION.get((image.format or "").upper(), "")
            width, height = image.size
            image.verify()  # will raise if broken
    except (UnidentifiedImageError, OSError, SyntaxError):
        raise ValidationError("Invalid image file", [{"file": filename}])

    if detected not in allowed:
        raise ValidationError("Invalid file type", [{"file": filename}])
    if claimed != detected and {claimed, detected} != {"jpg", "jpeg"}:
        raise ValidationError("File extension does not match content", [{"file": filename}])
    # Prevent decompression bomb by limiting pixel count
    if width * height > MAX_PIXELS:
        raise ValidationError("Image too large", [{"file": filename}])
    return data, detected


class LocalMediaStorage(MediaStorage):
    """Writes images under ``MEDIA_ROOT`` and serves them from ``MEDIA_URL_PREFIX``."""

    def __init__(self, root: str = None, url_prefix: str = None):
        self.root = root or settings.MEDIA_ROOT
        self.url_prefix = (url_prefix or settings.MEDIA_URL_PREFIX).rstrip("/")

    def upload(self, file: UploadFile) -> str:
        data, extension = read_image(file, settings.MAX_UPLOAD_SIZE, settings.ALLOWED_EXTENSIONS)
        unique_filename = f"{uuid.uuid4()}.{extension}"
        try:
            os.makedirs(self.root, exist_ok=True)
            with open(os.path.join(self.root, unique_filename), "wb") as out:
                out.write(data)
        except OSError as exc:
            logger.error("media_write_failed", filename=unique_filename, error=str(exc))
            raise MediaUploadFailed() from exc
        return f"{self.url_prefix}/{unique_filename}"

    def delete(self, url: str) -> None:
        if not url.startswith(f"{self.url_prefix}/"):
            logger.warning("media_delete_skipped", url=url, reason="foreign_url")
            return
        path = os.path.join(self.root, os.path.basename(url))
        if os.path.exists(path):
            os.remove(path)


def discard_media(storage: MediaStorage, urls: Sequence[str]) -> None:
    """Best-effort delete; a leftover file is preferable to failing a committed write."""
    for url in urls:
        try:
            storage.delete(url)
        except Exception as exc:
            logger.warning("media_delete_failed", url=url, error=str(exc))


def upload_batch(storage: MediaStorage, files: Sequence[UploadFile]) -> List[str]:
    """Upload every file or none: on failure, already-uploaded files are deleted."""
    uploaded: List[str] = []
    try:
        for file in files:
            uploaded.append(storage.upload(file))
    except Exception:
        if uploaded:
            logger.warning("media_rollback", uploaded=len(uploaded), requested=len(files))
            discard_media(storage, uploaded)
        raise
    return uploaded
