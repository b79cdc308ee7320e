from __future__ import annotations

import base64
import logging
import uuid
from dataclasses import dataclass
from io import BytesIO

import qrcode
from qrcode.constants import ERROR_CORRECT_M
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from app.adoptrees.constants import ALLOWED_IMAGE_TYPES, MAX_IMAGE_BYTES
from app.adoptrees.storage import Storage, StorageError

logger = logging.getLogger(__name__)

_EXTENSIONS = {"image/jpeg": "jpg", "image/jpg": "jpg", "image/png": "png", "image/webp": "webp"}


@dataclass(frozen=True)
class StoredImage:
    url: str
    key: str


def read_image_upload(file: FileStorage | None, *, max_bytes: int = MAX_IMAGE_BYTES) -> tuple[bytes | None, str | None]:
    """Return (bytes, None) for an acceptable image, otherwise (None, error message)."""
    if file is None or not file.filename:
        return None, "No file provided"
    content_type = (file.mimetype or "").lower()
    if content_type not in ALLOWED_IMAGE_TYPES:
        return None, "Invalid file type. Only JPEG, PNG, and WebP images are allowed."
    data = file.read()
    if not data:
        return None, "File is empty"
    if len(data) > max_bytes:
        return None, f"File too large. Maximum size is {max_bytes // (1024 * 1024)}MB."
    return data, None


def store_image(storage: Storage, data: bytes, *, prefix: str, filename: str | None, content_type: str) -> StoredImage:
    base = secure_filename(filename or "") or "image"
    stem = base.rsplit(".", 1)[0][:40] or "image"
    ext = _EXTENSIONS.get(content_type.lower(), "bin")
    key = f"{prefix.strip('/')}/{uuid.uuid4().hex[:12]}-{stem}.{ext}"
    storage.put_bytes(key, data, content_type=content_type)
    return StoredImage(url=storage.public_url(key), key=key)


def delete_image_quietly(storage: Storage, key: str | None) -> bool:
    """Best-effort delete; a stale image never blocks the surrounding change."""
    if not key:
        return False
    try:
        storage.delete(key)
        return True
    except (StorageError, OSError) as e:
        logger.warning("Image delete failed (key=%s): %s", key, e)
        return False
    except Exception as e:
        logger.warning("Image delete failed on remote storage (key=%s): %s", key, e)
        return False


def qr_png_bytes(payload: str, *, box_size: int = 10, border: int = 2) -> bytes:
    qr = qrcode.QRCode(version=1, error_correction=ERROR_CORRECT_M, box_size=box_size, border=border)
    qr.add_data(payload)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buffer = BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def qr_data_url(payload: str) -> str:
    encoded = base64.b64encode(qr_png_bytes(payload)).decode("ascii")
    return f"data:image/png;base64,{encoded}"
