"""
pdf_writer.py - Page composition: one image per page.

Supports:
- JPEG images embedded as-is (DCTDecode)
- Everything else decoded with Pillow and stored losslessly (FlateDecode)
- Alpha channels as a soft mask (/SMask)

Each image is scaled to fit the printable area and centered.
"""

import io
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

import pikepdf
from pikepdf import Array, Dictionary, Name, Pdf, Stream

from .compression import EncodedImage, compress_lossless, split_alpha
from .images import ImageAsset
from .layout import PageGeometry, PageLayout, fit_image

logger = logging.getLogger(__name__)

NO_VALID_IMAGES = "No valid images"

# Adobe CMYK JPEGs store inverted samples
ADOBE_CMYK_DECODE = [1, 0, 1, 0, 1, 0, 1, 0]


@dataclass
class ItemStats:
    """Statistics for one input image."""
    index: int
    name: str
    success: bool
    error: Optional[str] = None
    layout: Optional[PageLayout] = None
    embedded_size: int = 0


@dataclass
class ConversionResult:
    """Result of composing images into a PDF."""
    success: bool
    error: Optional[str] = None
    pdf_bytes: Optional[bytes] = None

    item_count: int = 0
    page_count: int = 0
    total_time: float = 0.0

    item_stats: List[ItemStats] = field(default_factory=list)

    @property
    def items_failed(self) -> int:
        return sum(1 for s in self.item_stats if not s.success)

    @property
    def failed_items(self) -> List[ItemStats]:
        return [s for s in self.item_stats if not s.success]

    @property
    def output_size(self) -> int:
        return len(self.pdf_bytes) if self.pdf_bytes else 0

    def summary(self) -> str:
        return (
            f"Pages: {self.page_count}/{self.item_count}\n"
            f"Failed images: {self.items_failed}\n"
            f"Output: {self.output_size:,} bytes\n"
            f"Time: {self.total_time:.1f}s"
        )


def image_stream(pdf: Pdf, encoded: EncodedImage) -> Stream:
    """Build an image XObject stream from encoded data."""
    image_dict = Dictionary({
        '/Type': Name.XObject,
        '/Subtype': Name.Image,
        '/Width': encoded.width,
        '/Height': encoded.height,
        '/ColorSpace': Name('/' + encoded.colorspace),
        '/BitsPerComponent': encoded.bits_per_component,
        '/Filter': Name('/' + encoded.filter),
    })
    if encoded.decode is not None:
        image_dict['/Decode'] = Array(encoded.decode)
    if encoded.smask is not None:
        image_dict['/SMask'] = pdf.make_indirect(image_stream(pdf, encoded.smask))

    return Stream(pdf, encoded.data, image_dict)


def encode_asset(asset: ImageAsset) -> EncodedImage:
    """
    Prepare an image for embedding.

    JPEG bytes pass through untouched once they decode cleanly. Other
    formats are decoded and stored losslessly.

    Raises:
        ImageDecodeError: the bytes do not decode
    """
    width, height = asset.decode()

    if asset.format == "JPEG":
        # Full decode so truncated files fail here, not in a viewer
        with asset.open() as img:
            mode = img.mode
            is_adobe = "adobe" in img.info

        if mode in ("L", "RGB", "CMYK"):
            colorspace = {"L": "DeviceGray", "RGB": "DeviceRGB", "CMYK": "DeviceCMYK"}[mode]
            return EncodedImage(
                data=asset.data,
                width=width,
                height=height,
                colorspace=colorspace,
                bits_per_component=8,
                filter="DCTDecode",
                decode=ADOBE_CMYK_DECODE if mode == "CMYK" and is_adobe else None,
            )

    with asset.open() as img:
        base, alpha = split_alpha(img)
        encoded = compress_lossless(base)
        if alpha is not None:
            encoded.smask = compress_lossless(alpha)

    return encoded


class PDFWriter:
    """
    Assembles images into a PDF, one per page.

    Every page has the same fixed geometry.
    """

    def __init__(self, geometry: Optional[PageGeometry] = None):
        self.pdf = Pdf.new()
        self.geometry = geometry or PageGeometry.from_name()
        self.layouts: List[PageLayout] = []

    @property
    def page_count(self) -> int:
        return len(self.pdf.pages)

    def add_page(self, encoded: EncodedImage) -> PageLayout:
        """Add a page holding one image, fitted and centered."""
        layout = fit_image(encoded.width, encoded.height, self.geometry)

        # Build everything before touching the page list
        xobjects = Dictionary({})
        xobjects['/Im0'] = self.pdf.make_indirect(image_stream(self.pdf, encoded))

        content = f"""
q
{layout.width:.4f} 0 0 {layout.height:.4f} {layout.x:.4f} {layout.y:.4f} cm
/Im0 Do
Q
"""
        contents = self.pdf.make_indirect(
            Stream(self.pdf, content.strip().encode("ascii"))
        )

        self.pdf.add_blank_page(page_size=(layout.page_width, layout.page_height))
        page = self.pdf.pages[-1]
        page.Resources = Dictionary({'/XObject': xobjects})
        page.Contents = contents

        self.layouts.append(layout)

        mode = "jpeg" if encoded.is_jpeg else "flate"
        logger.debug(
            f"Added page {self.page_count}: {encoded.width}x{encoded.height} "
            f"({mode}) at {layout.width:.1f}x{layout.height:.1f}pt"
        )
        return layout

    def to_bytes(self) -> bytes:
        """Serialize the PDF."""
        buffer = io.BytesIO()
        self.pdf.save(
            buffer,
            compress_streams=True,
            object_stream_mode=pikepdf.ObjectStreamMode.generate
        )
        logger.info(f"Serialized {self.page_count} pages ({buffer.tell():,} bytes)")
        return buffer.getvalue()

    def save(self, output_path: Path):
        """Save PDF to file."""
        output_path = Path(output_path)
        output_path.write_bytes(self.to_bytes())


def compose_pdf(
    assets: Sequence[ImageAsset],
    geometry: Optional[PageGeometry] = None
) -> ConversionResult:
    """
    Compose images into a PDF, one per page, in the given order.

    An image that fails to decode or embed is skipped and recorded in
    item_stats; the rest still make it into the document. Fails as a
    whole when no image could be placed.

    Returns:
        ConversionResult with the PDF bytes on success
    """
    result = ConversionResult(success=False, item_count=len(assets))
    start_time = time.time()

    try:
        writer = PDFWriter(geometry)

        for index, asset in enumerate(assets):
            stats = ItemStats(index=index, name=asset.name, success=False)
            try:
                encoded = encode_asset(asset)
                stats.layout = writer.add_page(encoded)
                stats.embedded_size = encoded.total_size
                stats.success = True
                logger.info(
                    f"Image {index + 1} ({asset.name}): {encoded.total_size:,} bytes | "
                    f"{encoded.width}x{encoded.height}"
                )
            except Exception as e:
                logger.error(f"Image {index + 1} ({asset.name}) failed: {e}")
                stats.error = str(e)
            result.item_stats.append(stats)

        result.page_count = writer.page_count

        if result.page_count == 0:
            result.error = NO_VALID_IMAGES
        else:
            result.pdf_bytes = writer.to_bytes()
            result.success = True

        result.total_time = time.time() - start_time
        logger.info(f"\n{result.summary()}")

    except Exception as e:
        logger.error(f"Conversion failed: {e}")
        result.error = str(e)
        result.pdf_bytes = None

    return result
