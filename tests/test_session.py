import asyncio

import pytest

from fotopdf.config import AdvisorSettings, CompressionLevel
from fotopdf.errors import InvalidFileTypeError, OperationInProgressError, ResultReleasedError
from fotopdf.filename_advisor import FilenameAdvisor
from fotopdf.images import ImageAsset
from fotopdf.session import Operation, ResultHandle, Session


class FakeAdvisor:
    def __init__(self, name="Beach Trip", error=None):
        self.name = name
        self.error = error
        self.seen = []

    async def suggest(self, descriptions):
        self.seen.append(list(descriptions))
        if self.error is not None:
            raise self.error
        return self.name


@pytest.fixture
def session():
    s = Session(advisor=FilenameAdvisor(AdvisorSettings(api_key=None)))
    yield s
    s.close()


def test_only_non_images_is_rejected(session):
    with pytest.raises(InvalidFileTypeError):
        session.add_images([("notes.txt", b"hello"), ("report.pdf", b"%PDF-1.4")])

    notes = session.drain_notifications()
    assert [n.title for n in notes] == ["Invalid file type"]
    assert notes[0].destructive
    assert session.images == []


def test_non_images_are_filtered(session, image_bytes):
    added = session.add_images([
        ("a.png", image_bytes(10, 10)),
        ("notes.txt", b"hello"),
        ImageAsset.from_bytes("b.jpg", image_bytes(10, 10, fmt="JPEG")),
    ])

    assert [a.name for a in added] == ["a.png", "b.jpg"]
    assert session.notifications == []


def test_add_images_from_paths(session, tmp_path, image_bytes):
    path = tmp_path / "scan.png"
    path.write_bytes(image_bytes(10, 10))

    session.add_images([path, str(path)])

    assert [a.name for a in session.images] == ["scan.png", "scan.png"]


def test_reorder_and_remove(session, image_bytes):
    session.add_images([(name, image_bytes(4, 4)) for name in ("a.png", "b.png", "c.png")])

    session.move_image(2, 0)
    assert [a.name for a in session.images] == ["c.png", "a.png", "b.png"]

    session.move_image(0, 2)
    assert [a.name for a in session.images] == ["a.png", "b.png", "c.png"]

    removed = session.remove_image(1)
    assert removed.name == "b.png"
    assert [a.name for a in session.images] == ["a.png", "c.png"]


@pytest.mark.asyncio
async def test_convert_creates_result(session, image_bytes):
    session.add_images([("a.png", image_bytes(20, 10)), ("b.jpg", image_bytes(10, 20, fmt="JPEG"))])

    result = await session.convert()

    assert result.success
    assert result.page_count == 2
    assert session.conversion.filename == "fotopdf-export.pdf"
    assert session.conversion.data.startswith(b"%PDF")
    assert not session.is_busy(Operation.CONVERT)


@pytest.mark.asyncio
async def test_new_conversion_releases_previous(session, image_bytes):
    session.add_images([("a.png", image_bytes(8, 8))])
    await session.convert()
    first = session.conversion

    await session.convert()

    assert first.released
    with pytest.raises(ResultReleasedError):
        first.data
    assert not session.conversion.released


@pytest.mark.asyncio
async def test_adding_images_releases_conversion(session, image_bytes):
    session.add_images([("a.png", image_bytes(8, 8))])
    await session.convert()
    handle = session.conversion

    session.add_images([("b.png", image_bytes(8, 8))])

    assert handle.released
    assert session.conversion is None


@pytest.mark.asyncio
async def test_convert_while_converting_is_refused(session, image_bytes):
    session.add_images([("a.png", image_bytes(64, 64))])

    results = await asyncio.gather(session.convert(), session.convert(), return_exceptions=True)

    refused = [r for r in results if isinstance(r, OperationInProgressError)]
    assert len(refused) == 1
    assert refused[0].operation == "convert"
    assert sum(1 for r in results if not isinstance(r, Exception) and r.success) == 1


@pytest.mark.asyncio
async def test_convert_with_no_valid_images_notifies(session):
    session.add_images([("broken.png", b"not a png")])

    result = await session.convert()

    assert not result.success
    assert session.conversion is None
    assert [n.title for n in session.drain_notifications()] == ["PDF Conversion Failed"]


@pytest.mark.asyncio
async def test_convert_partial_failure_notifies(session, image_bytes):
    session.add_images([("good.png", image_bytes(8, 8)), ("broken.png", b"not a png")])

    result = await session.convert()

    assert result.success
    assert result.page_count == 1
    notes = session.drain_notifications()
    assert notes[0].title == "Some images were skipped"
    assert "broken.png" in notes[0].description


@pytest.mark.asyncio
async def test_suggest_filename_adds_extension(image_bytes):
    advisor = FakeAdvisor("Beach Trip")
    session = Session(advisor=advisor)
    session.add_images([("beach1.jpg", image_bytes(4, 4, fmt="JPEG"))])

    assert await session.suggest_filename() == "Beach Trip.pdf"
    assert session.filename == "Beach Trip.pdf"
    assert advisor.seen == [["beach1.jpg"]]


@pytest.mark.asyncio
async def test_suggest_filename_never_raises(image_bytes):
    session = Session(advisor=FakeAdvisor(error=RuntimeError("boom")))
    session.add_images([("a.png", image_bytes(4, 4))])

    assert await session.suggest_filename() == "fotopdf-export.pdf"
    assert session.drain_notifications()[0].title == "AI Suggestion Failed"


def test_set_pdf_rejects_other_types(session):
    with pytest.raises(InvalidFileTypeError):
        session.set_pdf("notes.txt", b"hello")

    assert session.pdf_file is None
    assert session.drain_notifications()[0].destructive


def test_estimated_size(session):
    assert session.estimated_size is None

    session.set_pdf("doc.pdf", b"x" * 1000)
    session.compression_level = CompressionLevel.HIGH

    assert session.estimated_size == 250
    assert session.compressed_filename() == "doc-compressed.pdf"


@pytest.mark.asyncio
async def test_compress_without_pdf(session):
    with pytest.raises(InvalidFileTypeError):
        await session.compress()


@pytest.mark.asyncio
async def test_compress_with_images(session, build_pdf, raw_image_stream):
    data = build_pdf([{'/Im0': lambda pdf: raw_image_stream(pdf, 120, 90)}])
    session.set_pdf("scan.pdf", data)

    result = await session.compress(CompressionLevel.HIGH)

    assert result.success
    assert result.images_replaced == 1
    assert session.compression_level is CompressionLevel.HIGH
    assert session.compressed.filename == "scan-compressed.pdf"
    assert session.notifications == []


@pytest.mark.asyncio
async def test_compress_without_images_reports_limited(session, build_pdf):
    session.set_pdf("text.pdf", build_pdf([{}]))

    result = await session.compress()

    assert result.success
    assert result.limited_compression
    notes = session.drain_notifications()
    assert [n.title for n in notes] == ["Limited compression"]
    assert not notes[0].destructive
    assert session.compressed is not None


@pytest.mark.asyncio
async def test_compress_unreadable_pdf(session):
    session.set_pdf("fake.pdf", b"this is a text file, not a PDF")

    result = await session.compress()

    assert not result.success
    assert session.compressed is None
    assert session.drain_notifications()[0].title == "Compression Failed"


@pytest.mark.asyncio
async def test_share_without_handler(session, image_bytes):
    session.add_images([("a.png", image_bytes(4, 4))])
    await session.convert()

    assert await session.share(session.conversion) is False
    assert session.drain_notifications()[0].title == "Sharing Not Supported"


@pytest.mark.asyncio
async def test_share_with_handler(image_bytes):
    shared = []

    async def handler(handle):
        shared.append(handle.filename)

    session = Session(advisor=FakeAdvisor(), share_handler=handler)
    session.add_images([("a.png", image_bytes(4, 4))])
    await session.convert()

    assert await session.share(session.conversion)
    assert shared == ["fotopdf-export.pdf"]


@pytest.mark.asyncio
async def test_close_releases_everything(session, image_bytes, build_pdf):
    session.add_images([("a.png", image_bytes(4, 4))])
    await session.convert()
    session.set_pdf("text.pdf", build_pdf([{}]))
    await session.compress()
    handles = [session.conversion, session.compressed]

    session.close()

    assert all(h.released for h in handles)
    assert session.images == []
    assert session.pdf_file is None


def test_result_handle_save(tmp_path):
    handle = ResultHandle(b"%PDF-1.7 test", "out.pdf")
    path = handle.save(tmp_path / "out.pdf")

    assert path.read_bytes() == b"%PDF-1.7 test"
