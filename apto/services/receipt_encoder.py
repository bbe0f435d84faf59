import asyncio
import base64
import mimetypes
from pathlib import Path

from apto.db.models import Attachment
from apto.errors import EncodingError

SUPPORTED_MEDIA_TYPES = {
    "application/pdf",
    "image/jpeg",
    "image/png",
    "image/webp",
    "image/gif",
    "image/heic",
    "image/heif",
}

DEFAULT_MEDIA_TYPE = "image/jpeg"

MEDIA_TYPE_TO_SUFFIX = {
    "application/pdf": ".pdf",
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
    "image/heic": ".heic",
    "image/heif": ".heif",
}


def guess_media_type(filename: str | None) -> str:
    if not filename:
        return DEFAULT_MEDIA_TYPE
    mime, _ = mimetypes.guess_type(filename)
    return mime or DEFAULT_MEDIA_TYPE


def encode_bytes(data: bytes, filename: str | None = None, media_type: str | None = None) -> Attachment:
    media_type = (media_type or guess_media_type(filename)).lower()
    if media_type not in SUPPORTED_MEDIA_TYPES:
        raise EncodingError(f"Unsupported file type: {media_type}")
    if not data:
        raise EncodingError("File is empty")
    return Attachment(media_type=media_type, data=base64.standard_b64encode(data).decode())


async def encode_file(path: str | Path, media_type: str | None = None) -> Attachment:
    path = Path(path)
    try:
        data = await asyncio.to_thread(path.read_bytes)
    except OSError as exc:
        raise EncodingError(f"Could not read {path.name}: {exc}") from None
    return encode_bytes(data, filename=path.name, media_type=media_type)
