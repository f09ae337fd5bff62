"""
compression.py - Image encoding for PDF embedding.

Supports:
- JPEG (DCTDecode) at a given quality, for L/RGB/CMYK images
- Lossless Flate (FlateDecode) for everything else, incl. 1-bit
- Alpha channels split off as a separate soft mask
"""

import io
import logging
import zlib
from dataclasses import dataclass
from typing import List, Optional, Tuple

import cv2
import numpy as np
from PIL import Image

from .config import GRAYSCALE_SATURATION_THRESHOLD, MAX_JPEG_QUALITY, MIN_JPEG_QUALITY

logger = logging.getLogger(__name__)

JPEG_MODES = ("L", "RGB", "CMYK")

# PDF colour space per Pillow mode for lossless output
FLATE_COLORSPACES = {
    "1": ("DeviceGray", 1),
    "L": ("DeviceGray", 8),
    "RGB": ("DeviceRGB", 8),
    "CMYK": ("DeviceCMYK", 8),
}


# Integer gray modes holding 16-bit samples (Pillow opens 16-bit PNGs as these)
HIGH_BIT_DEPTH_MODES = ("I", "I;16", "I;16B", "I;16L")


class UnsupportedImageModeError(ValueError):
    """Image mode cannot be stored as JPEG."""


@dataclass
class EncodedImage:
    """Encoded image data ready for PDF embedding."""
    data: bytes
    width: int
    height: int
    colorspace: str          # PDF colour space name without the slash
    bits_per_component: int
    filter: str              # DCTDecode or FlateDecode
    decode: Optional[List[int]] = None
    smask: Optional["EncodedImage"] = None

    @property
    def is_jpeg(self) -> bool:
        return self.filter == "DCTDecode"

    @property
    def total_size(self) -> int:
        size = len(self.data)
        if self.smask is not None:
            size += self.smask.total_size
        return size


def quality_from_factor(factor: float) -> int:
    """Map a quality factor in (0, 1] to a Pillow JPEG quality."""
    if not 0 < factor <= 1:
        raise ValueError(f"Quality factor must be in (0, 1], got {factor}")
    return max(MIN_JPEG_QUALITY, min(MAX_JPEG_QUALITY, round(factor * 100)))


def is_grayscale_image(image: np.ndarray) -> bool:
    """
    Check if image is effectively grayscale based on saturation.

    Only returns True if the entire image has very low saturation.
    """
    if len(image.shape) != 3 or image.shape[2] != 3:
        return True  # Already grayscale

    hsv = cv2.cvtColor(image, cv2.COLOR_RGB2HSV)
    mean_saturation = np.mean(hsv[:, :, 1])

    is_gray = mean_saturation < GRAYSCALE_SATURATION_THRESHOLD
    logger.debug(f"Mean saturation: {mean_saturation:.1f}, is_grayscale: {is_gray}")

    return is_gray


def to_8bit_gray(img: Image.Image) -> Image.Image:
    """Scale 16-bit gray samples down to 8 bits; convert("L") would clip them."""
    array = np.clip(np.asarray(img, dtype=np.int64), 0, 65535)
    return Image.fromarray((array >> 8).astype(np.uint8))


def split_alpha(img: Image.Image) -> Tuple[Image.Image, Optional[Image.Image]]:
    """
    Separate colour and alpha.

    Returns:
        (colour image without alpha, alpha as "L" image or None)
    """
    if img.mode == "P" and "transparency" in img.info:
        img = img.convert("RGBA")

    if img.mode in ("RGBA", "LA", "PA"):
        alpha = img.getchannel("A")
        base = img.convert("L" if img.mode == "LA" else "RGB")
        if alpha.getextrema() == (255, 255):
            return base, None  # Fully opaque
        return base, alpha

    return img, None


def compress_jpeg(img: Image.Image, quality: int) -> EncodedImage:
    """
    Encode as JPEG.

    RGB images with no meaningful colour are stored as grayscale.
    CMYK is converted to RGB first.

    Raises:
        UnsupportedImageModeError: mode has no JPEG representation
    """
    if img.mode not in JPEG_MODES:
        raise UnsupportedImageModeError(f"Mode {img.mode} cannot be stored as JPEG")

    if img.mode == "CMYK":
        img = img.convert("RGB")

    if img.mode == "RGB":
        array = np.asarray(img)
        if is_grayscale_image(array):
            img = Image.fromarray(cv2.cvtColor(array, cv2.COLOR_RGB2GRAY))

    buffer = io.BytesIO()
    save_args = {"format": "JPEG", "quality": quality, "optimize": True}
    if img.mode == "RGB":
        save_args["subsampling"] = 2  # 4:2:0 chroma subsampling
    img.save(buffer, **save_args)

    colorspace = "DeviceRGB" if img.mode == "RGB" else "DeviceGray"
    return EncodedImage(
        data=buffer.getvalue(),
        width=img.width,
        height=img.height,
        colorspace=colorspace,
        bits_per_component=8,
        filter="DCTDecode",
    )


def compress_lossless(img: Image.Image) -> EncodedImage:
    """
    Encode pixels losslessly with zlib (FlateDecode).

    Alpha is dropped here; use split_alpha() first to keep it.
    """
    if img.mode not in FLATE_COLORSPACES:
        if img.mode in HIGH_BIT_DEPTH_MODES:
            img = to_8bit_gray(img)
        elif img.mode == "F":
            img = img.convert("L")
        elif img.mode in ("LA", "La"):
            img = img.convert("L")
        else:
            img = img.convert("RGB")

    colorspace, bpc = FLATE_COLORSPACES[img.mode]

    # Mode "1" tobytes() is packed 1 bit per pixel, rows padded to a byte, 1=white
    data = zlib.compress(img.tobytes(), level=9)

    return EncodedImage(
        data=data,
        width=img.width,
        height=img.height,
        colorspace=colorspace,
        bits_per_component=bpc,
        filter="FlateDecode",
    )
