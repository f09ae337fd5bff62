"""
config.py - Page geometry, compression levels and AI advisor settings.
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional

# Page sizes in millimetres (portrait)
PAGE_SIZES_MM = {
    "a4": (210.0, 297.0),
    "letter": (215.9, 279.4),
}
DEFAULT_PAGE_SIZE = "a4"
DEFAULT_MARGIN_MM = 10.0

# Pillow JPEG quality bounds (above 95 only grows the file)
MIN_JPEG_QUALITY = 1
MAX_JPEG_QUALITY = 95

# Only store as grayscale if mean saturation is below this
GRAYSCALE_SATURATION_THRESHOLD = 10  # Out of 255

DEFAULT_FILENAME_PREFIX = "fotopdf-export"
FALLBACK_FILENAME_STEM = "export"
PDF_SUFFIX = ".pdf"


class CompressionLevel(Enum):
    """User-selectable compression levels mapped to a quality factor."""

    LOW = ("Low", 0.75, "Good quality, less compression.")
    MEDIUM = ("Medium", 0.5, "Balanced quality and compression.")
    HIGH = ("High", 0.25, "Lower quality, high compression.")

    def __init__(self, label: str, factor: float, description: str):
        self.label = label
        self.factor = factor
        self.description = description

    @classmethod
    def from_name(cls, name: str) -> "CompressionLevel":
        try:
            return cls[name.strip().upper()]
        except KeyError:
            choices = ", ".join(level.name.lower() for level in cls)
            raise ValueError(f"Unknown compression level {name!r} (choose {choices})") from None


DEFAULT_COMPRESSION_LEVEL = CompressionLevel.MEDIUM


@dataclass
class AdvisorSettings:
    """Connection settings for the filename suggestion service."""

    api_base_url: str = "https://api.openai.com/v1/"
    model_name: str = "gpt-4o-mini"
    api_key: Optional[str] = None
    timeout: float = 15.0
    max_retry_attempts: int = 2

    @classmethod
    def from_env(cls) -> "AdvisorSettings":
        defaults = cls()
        return cls(
            api_base_url=os.environ.get("FOTOPDF_API_BASE_URL", defaults.api_base_url),
            model_name=os.environ.get("FOTOPDF_MODEL_NAME", defaults.model_name),
            api_key=os.environ.get("FOTOPDF_API_KEY"),
        )

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)
