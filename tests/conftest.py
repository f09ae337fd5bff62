import io

import numpy as np
import pikepdf
import pytest
from pikepdf import Dictionary, Name, Pdf, Stream
from PIL import Image


def _noisy_rgb(width, height, seed=0):
    """Gradient plus noise: compresses poorly losslessly, well as JPEG."""
    rng = np.random.default_rng(seed)
    x = np.linspace(0, 255, width, dtype=np.float32)
    y = np.linspace(0, 255, height, dtype=np.float32)[:, None]
    base = np.stack([np.broadcast_to(x, (height, width)),
                     np.broadcast_to(y, (height, width)),
                     np.full((height, width), 128, dtype=np.float32)], axis=2)
    noise = rng.integers(-20, 20, size=(height, width, 3))
    return np.clip(base + noise, 0, 255).astype(np.uint8)


@pytest.fixture
def image_bytes():
    """Factory: encoded image bytes of a given size and format."""
    def make(width, height, fmt="PNG", mode="RGB", color=None):
        if color is not None:
            img = Image.new(mode, (width, height), color)
        else:
            img = Image.fromarray(_noisy_rgb(width, height))
            if mode != "RGB":
                img = img.convert(mode)
        buffer = io.BytesIO()
        img.save(buffer, format=fmt)
        return buffer.getvalue()
    return make


@pytest.fixture
def raw_image_stream():
    """Factory: uncompressed RGB image XObject inside a given Pdf."""
    def make(pdf, width=64, height=48, seed=0):
        pixels = _noisy_rgb(width, height, seed).tobytes()
        return pdf.make_indirect(Stream(pdf, pixels, Dictionary({
            '/Type': Name.XObject,
            '/Subtype': Name.Image,
            '/Width': width,
            '/Height': height,
            '/ColorSpace': Name.DeviceRGB,
            '/BitsPerComponent': 8,
        })))
    return make


@pytest.fixture
def corrupt_image_stream():
    """Factory: DCTDecode image XObject whose data is not a JPEG."""
    def make(pdf, width=16, height=16):
        return pdf.make_indirect(Stream(pdf, b"this is not a jpeg at all", Dictionary({
            '/Type': Name.XObject,
            '/Subtype': Name.Image,
            '/Width': width,
            '/Height': height,
            '/ColorSpace': Name.DeviceRGB,
            '/BitsPerComponent': 8,
            '/Filter': Name.DCTDecode,
        })))
    return make


@pytest.fixture
def build_pdf():
    """
    Factory: PDF bytes with one page per entry.

    Each entry maps resource names to callables returning an XObject for
    the Pdf being built (or is empty for a page without images).
    """
    def make(pages):
        pdf = Pdf.new()
        for page_images in pages:
            pdf.add_blank_page(page_size=(200, 200))
            page = pdf.pages[-1]
            if not page_images:
                continue
            xobjects = Dictionary({})
            content = []
            for name, factory in page_images.items():
                xobjects[name] = factory(pdf)
                content.append(f"q 100 0 0 100 50 50 cm {name} Do Q")
            page.Resources = Dictionary({'/XObject': xobjects})
            page.Contents = pdf.make_indirect(Stream(pdf, "\n".join(content).encode("ascii")))
        buffer = io.BytesIO()
        pdf.save(buffer)
        return buffer.getvalue()
    return make


@pytest.fixture
def open_pdf():
    """Open PDF bytes with pikepdf."""
    opened = []

    def make(data):
        pdf = pikepdf.open(io.BytesIO(data))
        opened.append(pdf)
        return pdf

    yield make
    for pdf in opened:
        pdf.close()
