"""Image bytes handed over by the picker/camera surface.

The remote service wants the MIME type and pixel dimensions next to the file,
so the payload is decoded once with Pillow before anything is sent. Anything
Pillow cannot identify is rejected as a malformed request.
"""

import io
from dataclasses import dataclass
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError

from roomflow.core.errors import InvalidRequestError

_MIME_BY_FORMAT = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "HEIF": "image/heic",
}

_MIME_BY_SUFFIX = {
    ".png": "image/png",
    ".webp": "image/webp",
}


@dataclass(frozen=True)
class ImagePayload:
    data: bytes
    filename: str = "room.jpg"

    def describe(self) -> Tuple[str, int, int]:
        """Return (mime_type, width, height) or raise InvalidRequestError."""
        if not self.data:
            raise InvalidRequestError("No image provided")
        try:
            with Image.open(io.BytesIO(self.data)) as img:
                width, height = img.size
                image_format: Optional[str] = img.format
        except (UnidentifiedImageError, OSError) as exc:
            raise InvalidRequestError(f"Unreadable image {self.filename!r}: {exc}") from exc
        return _guess_mime(self.filename, image_format), width, height


def _guess_mime(filename: str, image_format: Optional[str]) -> str:
    if image_format and image_format in _MIME_BY_FORMAT:
        return _MIME_BY_FORMAT[image_format]
    lowered = filename.lower()
    for suffix, mime in _MIME_BY_SUFFIX.items():
        if lowered.endswith(suffix):
            return mime
    return "image/jpeg"
