"""
reencoder.py - Shrink a PDF by re-encoding its embedded images.

Per image:
1. Decode (pikepdf/Pillow) and re-encode as JPEG at the requested quality
2. Otherwise re-encode losslessly (Flate); PyMuPDF decodes what pikepdf cannot
3. Otherwise leave the image untouched

Pages are never added or removed. Everything else in the document is
saved as it was.
"""

import io
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

import pikepdf
from pikepdf import DependencyError, Name, Pdf, PdfImage, UnsupportedImageTypeError
from PIL import Image

try:
    import fitz  # PyMuPDF
except ImportError:
    import pymupdf as fitz

from .compression import (
    EncodedImage,
    UnsupportedImageModeError,
    compress_jpeg,
    compress_lossless,
    quality_from_factor,
    split_alpha,
)
from .config import CompressionLevel
from .pdf_writer import image_stream

logger = logging.getLogger(__name__)

# Keys of the original image dictionary that still apply after re-encoding
CARRIED_KEYS = ('/SMask', '/Interpolate', '/Intent', '/OC', '/Metadata')

FallbackDecoder = Callable[[pikepdf.Stream], Image.Image]

# pikepdf decode errors that mean "encoding not supported" rather than "bad data"
UNSUPPORTED_ENCODING_ERRORS = (
    UnsupportedImageTypeError,
    DependencyError,
    NotImplementedError,
    UnsupportedImageModeError,
)


class ImageOutcome(Enum):
    REENCODED = "reencoded"    # JPEG at the requested quality
    FALLBACK = "fallback"      # lossless re-encode
    SKIPPED = "skipped"        # left untouched


@dataclass
class ImageStats:
    """Statistics for one embedded image."""
    page_num: int
    name: str
    outcome: ImageOutcome
    original_size: int = 0
    new_size: int = 0
    references: int = 1
    error: Optional[str] = None

    @property
    def replaced(self) -> bool:
        return self.outcome is not ImageOutcome.SKIPPED


@dataclass
class CompressionResult:
    """Result of re-encoding a PDF's images."""
    success: bool
    error: Optional[str] = None
    output: Optional[bytes] = None

    quality_factor: float = 0.0
    page_count: int = 0
    input_size: int = 0
    output_size: int = 0
    total_time: float = 0.0

    # Set when no image could be replaced; the output may not be smaller
    limited_compression: bool = False

    image_stats: List[ImageStats] = field(default_factory=list)

    @property
    def images_found(self) -> int:
        return len(self.image_stats)

    @property
    def images_replaced(self) -> int:
        return sum(1 for s in self.image_stats if s.replaced)

    @property
    def images_skipped(self) -> int:
        return sum(1 for s in self.image_stats if not s.replaced)

    @property
    def reduction_pct(self) -> float:
        if self.input_size == 0:
            return 0
        return (1 - self.output_size / self.input_size) * 100

    def summary(self) -> str:
        return (
            f"Input:  {self.input_size:,} bytes\n"
            f"Output: {self.output_size:,} bytes\n"
            f"Reduction: {self.reduction_pct:.1f}%\n"
            f"Pages: {self.page_count}\n"
            f"Images: {self.images_replaced}/{self.images_found} re-encoded\n"
            f"Time: {self.total_time:.1f}s"
        )


def is_raster_image(obj) -> bool:
    """True for image XObject streams that carry pixels (not stencil masks)."""
    if not isinstance(obj, pikepdf.Stream):
        return False
    if obj.get('/Subtype') != Name.Image:
        return False
    return not bool(obj.get('/ImageMask', False))


def page_image_names(page: pikepdf.Page) -> List[str]:
    """Resource names of the raster images in a page's /XObject dictionary."""
    resources = page.obj.get('/Resources')
    if resources is None:
        return []
    xobjects = resources.get('/XObject')
    if xobjects is None:
        return []
    return [name for name in xobjects.keys() if is_raster_image(xobjects[name])]


def decode_image(obj: pikepdf.Stream) -> Image.Image:
    """Decode an image XObject with pikepdf and Pillow."""
    if '/Decode' in obj:
        raise UnsupportedImageModeError("Image has a custom /Decode array")
    img = PdfImage(obj).as_pil_image()
    img.load()
    return img


class PyMuPDFDecoder:
    """
    Second-chance decoder for images pikepdf cannot decode (JBIG2, JPX, ...).

    Looks the image up by object number in a PyMuPDF copy of the same
    input bytes. Any MuPDF warning while decoding counts as a failure.
    """

    def __init__(self, pdf_bytes: bytes):
        self._pdf_bytes = pdf_bytes
        self._doc = None

    def _open(self):
        if self._doc is None:
            self._doc = fitz.open(stream=self._pdf_bytes, filetype="pdf")
        return self._doc

    def __call__(self, obj: pikepdf.Stream) -> Image.Image:
        xref = obj.objgen[0]
        if xref <= 0:
            raise ValueError("Image is not an indirect object")

        doc = self._open()
        if doc.xref_get_key(xref, "Subtype") != ("name", "/Image"):
            raise ValueError(f"Object {xref} is not an image in PyMuPDF's view")

        fitz.TOOLS.reset_mupdf_warnings()
        pix = fitz.Pixmap(doc, xref)
        warnings = fitz.TOOLS.mupdf_warnings()
        if warnings:
            raise ValueError(f"MuPDF could not decode object {xref}: {warnings}")

        if (pix.width, pix.height) != (int(obj.Width), int(obj.Height)):
            raise ValueError(f"Object {xref} decoded to unexpected size {pix.width}x{pix.height}")

        if pix.alpha:
            pix = fitz.Pixmap(pix, 0)  # drop alpha
        if pix.n not in (1, 3):
            pix = fitz.Pixmap(fitz.csRGB, pix)

        mode = "L" if pix.n == 1 else "RGB"
        return Image.frombytes(mode, (pix.width, pix.height), pix.samples)

    def close(self):
        if self._doc is not None:
            self._doc.close()
            self._doc = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


def reencode_image(
    obj: pikepdf.Stream,
    quality: int,
    fallback_decoder: Optional[FallbackDecoder] = None
) -> Tuple[ImageOutcome, Optional[EncodedImage], Optional[str]]:
    """
    Re-encode one image XObject.

    Returns:
        (outcome, encoded image or None, error text or None)
    """
    img = None
    try:
        img = decode_image(obj)
        # pikepdf composites /SMask into the decoded pixels; the mask itself
        # is carried over unchanged
        base, _ = split_alpha(img)
        return ImageOutcome.REENCODED, compress_jpeg(base, quality), None
    except Exception as e:
        decode_failure = e if img is None else None
        primary_error = f"{type(e).__name__}: {e}"
        logger.debug(f"JPEG re-encode failed ({primary_error}), trying lossless")

    try:
        if img is None:
            # Damaged data stays damaged; only hand over encodings pikepdf lacks
            if not isinstance(decode_failure, UNSUPPORTED_ENCODING_ERRORS):
                raise ValueError("Image data could not be decoded")
            if fallback_decoder is None:
                raise ValueError("No fallback decoder")
            img = fallback_decoder(obj)
        base, _ = split_alpha(img)
        return ImageOutcome.FALLBACK, compress_lossless(base), None
    except Exception as e:
        return ImageOutcome.SKIPPED, None, f"{primary_error}; lossless: {type(e).__name__}: {e}"


def _replacement_stream(pdf: Pdf, original: pikepdf.Stream, encoded: EncodedImage) -> pikepdf.Stream:
    stream = image_stream(pdf, encoded)
    for key in CARRIED_KEYS:
        if key in original:
            stream[key] = original[key]
    mask = original.get('/Mask')
    if isinstance(mask, pikepdf.Stream):
        # Colour-key masks (arrays) depend on exact sample values; only
        # explicit mask images survive re-encoding
        stream['/Mask'] = mask
    return pdf.make_indirect(stream)


def reencode_images(
    pdf: Pdf,
    quality: int,
    fallback_decoder: Optional[FallbackDecoder] = None
) -> List[ImageStats]:
    """
    Re-encode every raster image referenced from a page's resources.

    Resource names and the image objects they point at are collected for
    all pages first; substitutions run in a second pass. Pages may share
    one /Resources dictionary, so pass 2 works from the collected originals
    and never from what the dictionary holds by then. An image shared
    between pages or names is re-encoded once and every reference is
    pointed at the same new object.
    """
    targets = []
    for page_num, page in enumerate(pdf.pages):
        names = page_image_names(page)
        if not names:
            continue
        xobjects = page.obj.Resources.XObject
        for name in names:
            targets.append((page_num, xobjects, name, xobjects[name]))

    logger.debug(f"Found {len(targets)} image references on {len(pdf.pages)} pages")

    done: Dict[Tuple[int, int], Tuple[ImageStats, Optional[pikepdf.Object]]] = {}
    all_stats: List[ImageStats] = []

    for page_num, xobjects, name, original in targets:
        key = original.objgen

        if key in done and key != (0, 0):
            stats, replacement = done[key]
            stats.references += 1
            if replacement is not None:
                xobjects[name] = replacement
            continue

        original_size = len(original.read_raw_bytes())
        outcome, encoded, error = reencode_image(original, quality, fallback_decoder)
        stats = ImageStats(
            page_num=page_num,
            name=str(name),
            outcome=outcome,
            original_size=original_size,
            error=error,
        )

        replacement = None
        if encoded is not None:
            replacement = _replacement_stream(pdf, original, encoded)
            xobjects[name] = replacement
            stats.new_size = encoded.total_size
            logger.info(
                f"Page {page_num + 1} {name}: {original_size:,} -> {stats.new_size:,} bytes | "
                f"{encoded.width}x{encoded.height} | {outcome.value}"
            )
        else:
            stats.new_size = original_size
            logger.warning(f"Page {page_num + 1} {name}: left untouched ({error})")

        done[key] = (stats, replacement)
        all_stats.append(stats)

    return all_stats


def save_pdf(pdf: Pdf, optimize: bool) -> bytes:
    """
    Serialize the document.

    Without any re-encoded image there is nothing to gain from object
    streams, so a plain save is used.
    """
    buffer = io.BytesIO()
    if optimize:
        pdf.save(
            buffer,
            compress_streams=True,
            object_stream_mode=pikepdf.ObjectStreamMode.generate
        )
    else:
        pdf.save(buffer, object_stream_mode=pikepdf.ObjectStreamMode.disable)
    return buffer.getvalue()


def compress_pdf(data: bytes, level=CompressionLevel.MEDIUM) -> CompressionResult:
    """
    Re-encode the images of a PDF at a compression level.

    Args:
        data: PDF file contents; never modified
        level: CompressionLevel or a quality factor in (0, 1]

    Returns:
        CompressionResult with the rebuilt PDF on success
    """
    factor = level.factor if isinstance(level, CompressionLevel) else float(level)
    source = bytes(data)

    result = CompressionResult(
        success=False,
        quality_factor=factor,
        input_size=len(source)
    )

    try:
        start_time = time.time()
        quality = quality_from_factor(factor)

        logger.info(f"Compressing {result.input_size:,} bytes at quality {quality}")

        with pikepdf.open(io.BytesIO(source)) as pdf, PyMuPDFDecoder(source) as fallback:
            result.page_count = len(pdf.pages)
            result.image_stats = reencode_images(pdf, quality, fallback)

            result.limited_compression = result.images_replaced == 0
            if result.limited_compression:
                logger.info("No image could be re-encoded; saving without optimization")

            output = save_pdf(pdf, optimize=not result.limited_compression)

        result.output = output
        result.output_size = len(output)
        result.success = True
        result.total_time = time.time() - start_time

        logger.info(f"\n{result.summary()}")

    except Exception as e:
        logger.error(f"Compression failed: {e}")
        result.error = str(e)
        result.output = None

    return result
