"""Source photo handling: decoding, validation, and wire encoding.

Photos arrive either as raw bytes with a declared MIME type (from an image
picker) or as a ``data:image/...;base64,`` URL (from the relay).  Before any
network call the photo is validated: it must be non-empty, declare a
supported type, stay under the size limit, and actually decode as that type.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

from arqia.core.errors import InvalidImageError

logger = logging.getLogger(__name__)

SUPPORTED_MIME_TYPES: dict[str, str] = {
    "image/jpeg": "JPEG",
    "image/png": "PNG",
    "image/webp": "WEBP",
}

# Some pickers report the non-standard alias.
_MIME_ALIASES = {"image/jpg": "image/jpeg"}


@dataclass(frozen=True)
class SourceImage:
    """A room photo as supplied by the caller.

    Attributes:
        data: Raw encoded image bytes.
        mime_type: Declared MIME type (e.g. ``"image/jpeg"``).
    """

    data: bytes
    mime_type: str

    @classmethod
    def from_base64(cls, encoded: str, mime_type: str) -> SourceImage:
        """Build from a bare base64 string.

        Raises:
            InvalidImageError: If *encoded* is not valid base64.
        """
        try:
            data = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidImageError(f"Image is not valid base64: {e}") from e
        return cls(data=data, mime_type=mime_type)

    @classmethod
    def from_data_url(cls, url: str) -> SourceImage:
        """Build from a ``data:<mime>;base64,<payload>`` URL.

        Raises:
            InvalidImageError: If the URL is not a base64 image data URL.
        """
        if not url:
            raise InvalidImageError("Image is required")
        if not url.startswith("data:image/"):
            raise InvalidImageError("Invalid image format: expected a data:image/ URL")
        header, sep, payload = url.partition(",")
        if not sep or not header.endswith(";base64"):
            raise InvalidImageError("Invalid image format: expected base64 encoding")
        mime_type = header[len("data:") : -len(";base64")]
        return cls.from_base64(payload, mime_type)

    @property
    def normalized_mime_type(self) -> str:
        mime = self.mime_type.strip().lower()
        return _MIME_ALIASES.get(mime, mime)

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def to_data_url(self) -> str:
        """Encode as a ``data:`` URL suitable for the predictions API."""
        return f"data:{self.normalized_mime_type};base64,{self.to_base64()}"

    def __repr__(self) -> str:
        return f"SourceImage(mime_type={self.mime_type!r}, size={len(self.data)})"


def validate_image(image: SourceImage | None, max_bytes: int | None = None) -> None:
    """Check that *image* can be sent to the backend.

    The check is local and cheap, so it always runs before any network call.

    Args:
        image: The photo to validate.
        max_bytes: Optional upper bound on the encoded size.

    Raises:
        InvalidImageError: If the photo is missing, empty, too large, of an
            unsupported type, or does not decode as its declared type.
    """
    if image is None:
        raise InvalidImageError("Image is required")
    if not image.data:
        raise InvalidImageError("Image is empty")

    mime = image.normalized_mime_type
    expected_format = SUPPORTED_MIME_TYPES.get(mime)
    if expected_format is None:
        supported = ", ".join(SUPPORTED_MIME_TYPES)
        raise InvalidImageError(f"Unsupported image type {image.mime_type!r} (expected {supported})")

    if max_bytes is not None and len(image.data) > max_bytes:
        raise InvalidImageError(f"Image is too large: {len(image.data)} bytes (limit {max_bytes})")

    try:
        with Image.open(io.BytesIO(image.data)) as img:
            actual_format = img.format
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
        raise InvalidImageError(f"Image data could not be decoded: {e}") from e

    if actual_format != expected_format:
        logger.warning(f"Declared {mime} but image decodes as {actual_format}")
        raise InvalidImageError(
            f"Image declared as {mime} but contains {actual_format or 'unknown'} data"
        )
