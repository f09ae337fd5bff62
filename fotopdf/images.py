"""
images.py - User-supplied raster images.

Width and height always come from decoding the bytes with Pillow.
"""

import io
import logging
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError

from .errors import ImageDecodeError, InvalidFileTypeError

logger = logging.getLogger(__name__)

mimetypes.add_type("image/webp", ".webp")

PDF_MIME_TYPE = "application/pdf"


def guess_mime_type(name: str) -> str:
    """Guess a MIME type from a filename, empty string if unknown."""
    mime_type, _ = mimetypes.guess_type(name)
    return mime_type or ""


def is_image_mime_type(mime_type: str) -> bool:
    return mime_type.startswith("image/")


def require_pdf(name: str, mime_type: Optional[str] = None):
    """Raise InvalidFileTypeError unless the file is a PDF."""
    mime_type = mime_type or guess_mime_type(name)
    if mime_type != PDF_MIME_TYPE:
        raise InvalidFileTypeError(f"{name}: please select a PDF file")


@dataclass
class ImageAsset:
    """One raster image as supplied by the user."""
    name: str
    data: bytes
    mime_type: str
    _size: Optional[Tuple[int, int]] = field(default=None, repr=False, compare=False)
    _format: Optional[str] = field(default=None, repr=False, compare=False)

    @classmethod
    def from_bytes(cls, name: str, data: bytes, mime_type: Optional[str] = None) -> "ImageAsset":
        """Build an asset, rejecting anything not declared as an image."""
        mime_type = mime_type or guess_mime_type(name)
        if not is_image_mime_type(mime_type):
            raise InvalidFileTypeError(f"{name}: not an image file ({mime_type or 'unknown type'})")
        return cls(name=name, data=bytes(data), mime_type=mime_type)

    @classmethod
    def from_path(cls, path: Path) -> "ImageAsset":
        path = Path(path)
        return cls.from_bytes(path.name, path.read_bytes())

    def decode(self) -> Tuple[int, int]:
        """
        Decode the header and cache (width, height).

        Raises:
            ImageDecodeError: bytes are not a readable image or have no area
        """
        if self._size is None:
            try:
                with Image.open(io.BytesIO(self.data)) as img:
                    width, height = img.size
                    self._format = img.format
            except (UnidentifiedImageError, OSError, ValueError) as e:
                raise ImageDecodeError(f"{self.name}: cannot decode image ({e})") from e

            if width <= 0 or height <= 0:
                raise ImageDecodeError(f"{self.name}: image has no area ({width}x{height})")

            self._size = (width, height)
            logger.debug(f"Decoded {self.name}: {width}x{height} {self._format}")

        return self._size

    def open(self) -> Image.Image:
        """Fully decode the pixels. Caller owns the returned image."""
        try:
            img = Image.open(io.BytesIO(self.data))
            img.load()
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise ImageDecodeError(f"{self.name}: cannot decode image ({e})") from e
        return img

    @property
    def width(self) -> int:
        return self.decode()[0]

    @property
    def height(self) -> int:
        return self.decode()[1]

    @property
    def format(self) -> Optional[str]:
        """Pillow format name (JPEG, PNG, WEBP, ...) once decoded."""
        self.decode()
        return self._format

    @property
    def aspect_ratio(self) -> float:
        width, height = self.decode()
        return width / height

    @property
    def size_bytes(self) -> int:
        return len(self.data)
