from __future__ import annotations

from dataclasses import dataclass

from .config import DEFAULT_MARGIN_MM, DEFAULT_PAGE_SIZE, PAGE_SIZES_MM
from .utils import mm_to_pt


@dataclass(frozen=True)
class PageGeometry:
    """Fixed page size and margin, in PDF points."""

    width: float
    height: float
    margin: float

    @classmethod
    def from_name(cls, name: str = DEFAULT_PAGE_SIZE, margin_mm: float = DEFAULT_MARGIN_MM) -> PageGeometry:
        try:
            width_mm, height_mm = PAGE_SIZES_MM[name.lower()]
        except KeyError:
            raise ValueError(f"Unknown page size {name!r}") from None
        return cls(mm_to_pt(width_mm), mm_to_pt(height_mm), mm_to_pt(margin_mm))

    def __post_init__(self):
        if self.printable_width <= 0 or self.printable_height <= 0:
            raise ValueError("Margin leaves no printable area")

    @property
    def printable_width(self) -> float:
        return self.width - 2 * self.margin

    @property
    def printable_height(self) -> float:
        return self.height - 2 * self.margin

    @property
    def printable_aspect_ratio(self) -> float:
        return self.printable_width / self.printable_height


@dataclass(frozen=True)
class PageLayout:
    page_width: float
    page_height: float
    width: float
    height: float
    x: float
    y: float

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height


def fit_image(image_width: int, image_height: int, geometry: PageGeometry) -> PageLayout:
    """
    Fit an image inside the printable area, keeping its aspect ratio.

    Width-bound first; falls back to height-bound when the image would
    overflow vertically. The placement is centered on the page.
    """
    if image_width <= 0 or image_height <= 0:
        raise ValueError(f"Image dimensions must be positive, got {image_width}x{image_height}")

    ratio = image_width / image_height
    width = geometry.printable_width
    height = width / ratio
    if height > geometry.printable_height:
        height = geometry.printable_height
        width = height * ratio

    return PageLayout(
        page_width=geometry.width,
        page_height=geometry.height,
        width=width,
        height=height,
        x=(geometry.width - width) / 2,
        y=(geometry.height - height) / 2,
    )
