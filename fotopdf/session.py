"""
session.py - Per-user state around the two transformations.

A Session owns the image list, the PDF chosen for compression, the current
result buffers, and the notifications shown to the user. Each operation has
its own in-flight guard; starting it twice raises OperationInProgressError.
"""

import asyncio
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Iterable, List, Optional, Set, Tuple, Union

from .config import DEFAULT_COMPRESSION_LEVEL, DEFAULT_FILENAME_PREFIX, PDF_SUFFIX, CompressionLevel
from .errors import InvalidFileTypeError, OperationInProgressError, ResultReleasedError
from .filename_advisor import FilenameAdvisor, normalize_filename
from .images import PDF_MIME_TYPE, ImageAsset, guess_mime_type, is_image_mime_type, require_pdf
from .layout import PageGeometry
from .pdf_writer import ConversionResult, compose_pdf
from .reencoder import CompressionResult, compress_pdf
from .utils import estimate_size

logger = logging.getLogger(__name__)

ShareHandler = Callable[["ResultHandle"], Awaitable[None]]
FileInput = Union[ImageAsset, Tuple[str, bytes], Path, str]


class Operation(str, Enum):
    CONVERT = "convert"
    COMPRESS = "compress"
    SUGGEST = "suggest"


@dataclass
class Notification:
    """A transient, user-visible message."""
    title: str
    description: str
    destructive: bool = False


@dataclass
class SourcePdf:
    name: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


class ResultHandle:
    """An output buffer offered to the user; must be released when superseded."""

    def __init__(self, data: bytes, filename: str, mime_type: str = PDF_MIME_TYPE):
        self._data: Optional[bytes] = data
        self.filename = filename
        self.mime_type = mime_type
        self.size = len(data)

    @property
    def released(self) -> bool:
        return self._data is None

    @property
    def data(self) -> bytes:
        if self._data is None:
            raise ResultReleasedError(f"{self.filename} has been released")
        return self._data

    def save(self, path: Optional[Path] = None) -> Path:
        """Write the buffer to disk; defaults to the handle's filename."""
        path = Path(path) if path is not None else Path(self.filename)
        path.write_bytes(self.data)
        logger.info(f"Saved {self.size:,} bytes to {path}")
        return path

    def release(self):
        if self._data is not None:
            logger.debug(f"Released {self.filename}")
        self._data = None

    def __repr__(self) -> str:
        state = "released" if self.released else f"{self.size:,} bytes"
        return f"ResultHandle({self.filename!r}, {state})"


class Session:
    """State for one user; nothing in here is shared between sessions."""

    def __init__(
        self,
        advisor: Optional[FilenameAdvisor] = None,
        geometry: Optional[PageGeometry] = None,
        share_handler: Optional[ShareHandler] = None
    ):
        self.advisor = advisor or FilenameAdvisor()
        self.geometry = geometry or PageGeometry.from_name()
        self.share_handler = share_handler

        self.images: List[ImageAsset] = []
        self.filename = DEFAULT_FILENAME_PREFIX + PDF_SUFFIX
        self.pdf_file: Optional[SourcePdf] = None
        self.compression_level = DEFAULT_COMPRESSION_LEVEL

        self.conversion: Optional[ResultHandle] = None
        self.compressed: Optional[ResultHandle] = None
        self.notifications: List[Notification] = []

        self._in_flight: Set[Operation] = set()

    # -- notifications -----------------------------------------------------

    def notify(self, title: str, description: str, destructive: bool = False):
        self.notifications.append(Notification(title, description, destructive))
        log = logger.warning if destructive else logger.info
        log(f"{title}: {description}")

    def drain_notifications(self) -> List[Notification]:
        notifications, self.notifications = self.notifications, []
        return notifications

    # -- guards and results --------------------------------------------------

    def is_busy(self, operation: Operation) -> bool:
        return operation in self._in_flight

    @contextmanager
    def _guard(self, operation: Operation):
        if operation in self._in_flight:
            raise OperationInProgressError(operation.value)
        self._in_flight.add(operation)
        try:
            yield
        finally:
            self._in_flight.discard(operation)

    def _clear_conversion(self):
        if self.conversion is not None:
            self.conversion.release()
            self.conversion = None

    def _clear_compressed(self):
        if self.compressed is not None:
            self.compressed.release()
            self.compressed = None

    # -- image list ----------------------------------------------------------

    def add_images(self, files: Iterable[FileInput]) -> List[ImageAsset]:
        """
        Append images to the list. Non-image files are ignored.

        Raises:
            InvalidFileTypeError: none of the files is an image
        """
        added = []
        for item in files:
            if isinstance(item, ImageAsset):
                added.append(item)
                continue
            if isinstance(item, tuple):
                name, data = item
            else:
                path = Path(item)
                name, data = path.name, None
            if not is_image_mime_type(guess_mime_type(name)):
                logger.debug(f"Ignoring non-image file {name}")
                continue
            if data is None:
                data = Path(item).read_bytes()
            added.append(ImageAsset.from_bytes(name, data))

        if not added:
            self.notify("Invalid file type", "Please select only image files.", destructive=True)
            raise InvalidFileTypeError("No image files selected")

        self.images.extend(added)
        self._clear_conversion()
        logger.info(f"Added {len(added)} images ({len(self.images)} total)")
        return added

    def remove_image(self, index: int) -> ImageAsset:
        removed = self.images.pop(index)
        logger.info(f"Removed {removed.name}")
        return removed

    def move_image(self, from_index: int, to_index: int):
        """Move one image to a new position, shifting the rest."""
        if from_index == to_index:
            return
        image = self.images.pop(from_index)
        self.images.insert(to_index, image)

    # -- PDF for compression -------------------------------------------------

    def set_pdf(self, name: str, data: bytes, mime_type: Optional[str] = None) -> SourcePdf:
        """
        Choose the PDF to compress.

        Raises:
            InvalidFileTypeError: the file is not a PDF
        """
        try:
            require_pdf(name, mime_type)
        except InvalidFileTypeError:
            self.notify("Invalid file type", "Please select a PDF file.", destructive=True)
            raise

        self.pdf_file = SourcePdf(name=name, data=bytes(data))
        self._clear_compressed()
        return self.pdf_file

    @property
    def estimated_size(self) -> Optional[float]:
        """Estimated output size for the chosen level; an approximation only."""
        if self.pdf_file is None:
            return None
        return estimate_size(self.pdf_file.size, self.compression_level.factor)

    def compressed_filename(self) -> str:
        stem = self.pdf_file.name if self.pdf_file else "document"
        if stem.lower().endswith(PDF_SUFFIX):
            stem = stem[:-len(PDF_SUFFIX)]
        return f"{stem}-compressed{PDF_SUFFIX}"

    # -- operations ----------------------------------------------------------

    async def suggest_filename(self) -> str:
        """Ask the advisor for a name and adopt it. Never fails the session."""
        with self._guard(Operation.SUGGEST):
            if not self.images:
                return self.filename
            try:
                suggested = await self.advisor.suggest([image.name for image in self.images])
            except Exception as e:
                logger.warning(f"Filename advisor raised: {e}")
                self.notify(
                    "AI Suggestion Failed",
                    "Could not get AI filename suggestion. Please enter a name manually.",
                    destructive=True,
                )
                return self.filename
            self.filename = normalize_filename(suggested)
            return self.filename

    async def convert(self) -> ConversionResult:
        """Compose the current image list into a PDF."""
        with self._guard(Operation.CONVERT):
            self._clear_conversion()
            assets = list(self.images)

            result = await asyncio.to_thread(compose_pdf, assets, self.geometry)

            if not result.success:
                self.notify(
                    "PDF Conversion Failed",
                    "Something went wrong while creating the PDF. Please try again.",
                    destructive=True,
                )
                return result

            if result.items_failed:
                names = ", ".join(s.name for s in result.failed_items)
                self.notify(
                    "Some images were skipped",
                    f"{result.items_failed} of {result.item_count} images could not be added: {names}",
                    destructive=True,
                )

            self.conversion = ResultHandle(result.pdf_bytes, normalize_filename(self.filename))
            return result

    async def compress(self, level: Optional[CompressionLevel] = None) -> CompressionResult:
        """Re-encode the chosen PDF's images."""
        with self._guard(Operation.COMPRESS):
            if self.pdf_file is None:
                raise InvalidFileTypeError("No PDF selected")
            if level is not None:
                self.compression_level = level

            self._clear_compressed()
            result = await asyncio.to_thread(compress_pdf, self.pdf_file.data, self.compression_level)

            if not result.success:
                self.notify(
                    "Compression Failed",
                    "Could not compress the PDF. The file might be corrupted or encrypted.",
                    destructive=True,
                )
                return result

            if result.limited_compression:
                self.notify(
                    "Limited compression",
                    "No images could be re-encoded; the result may not be smaller.",
                )

            self.compressed = ResultHandle(result.output, self.compressed_filename())
            return result

    async def share(self, handle: ResultHandle) -> bool:
        """Hand a result to the platform share mechanism, if there is one."""
        if self.share_handler is None:
            self.notify(
                "Sharing Not Supported",
                "This environment does not support sharing files.",
                destructive=True,
            )
            return False
        try:
            await self.share_handler(handle)
        except Exception as e:
            logger.warning(f"Share failed: {e}")
            self.notify(
                "Sharing Failed",
                "Could not share the file. Please try downloading it instead.",
                destructive=True,
            )
            return False
        return True

    # -- teardown ------------------------------------------------------------

    def close(self):
        """Release every buffer this session holds."""
        self._clear_conversion()
        self._clear_compressed()
        self.images.clear()
        self.pdf_file = None
        logger.debug("Session closed")

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
