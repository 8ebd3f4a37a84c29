"""Tests for page facsimiles rendered from page PDFs."""

import threading
from datetime import date

import pytest

from feedcache.types import ImageType

DAY = date(2024, 1, 10)


def _issue(cache):
    return cache.issue(cache.feed(cache.feeder("Test Feeder"), "daily"), DAY)


def _write_pdf(path):
    try:
        from pypdf import PdfWriter
    except ImportError:
        pytest.skip("pypdf not available")
    try:
        import pypdfium2  # noqa: F401
    except ImportError:
        pytest.skip("pypdfium2 not available")

    writer = PdfWriter()
    writer.add_blank_page(width=200, height=300)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        writer.write(f)


@pytest.fixture
def page(cache, snapshots):
    feeder = cache.merge_feeder(snapshots.feeder(snapshots.issue(DAY)))
    feed = cache.feed(feeder, snapshots.FEED_NAME)
    return cache.pages(cache.issue(feed, DAY))[0]


class TestFacsimile:

    def test_rendered_next_to_pdf(self, cache, page):
        pdf_path = cache.file_for_name(page.pdf_name)
        _write_pdf(pdf_path)

        image = cache.facsimile(page)
        assert image is not None
        assert image.type == ImageType.FACSIMILE
        assert image.name == pdf_path.stem + ".jpg"
        jpg_path = cache.file_for_name(image.name)
        assert jpg_path == pdf_path.with_suffix(".jpg")
        assert jpg_path.read_bytes()[:2] == b"\xff\xd8"
        assert cache.pages(_issue(cache))[0].facsimile_id == image.id

    def test_computed_once(self, cache, page):
        pdf_path = cache.file_for_name(page.pdf_name)
        _write_pdf(pdf_path)

        first = cache.facsimile(page)
        mtime = cache.file_for_name(first.name).stat().st_mtime_ns
        second = cache.facsimile(page)
        assert second.id == first.id
        assert cache.file_for_name(second.name).stat().st_mtime_ns == mtime

    def test_concurrent_requests(self, cache, page):
        _write_pdf(cache.file_for_name(page.pdf_name))
        results = []

        def worker():
            results.append(cache.facsimile(page))

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len({img.id for img in results}) == 1
        assert cache._db.scalar(
            "SELECT COUNT(*) FROM images WHERE type = ?", (ImageType.FACSIMILE.value,)
        ) == 1
        # Per-page locks are dropped once nobody waits on them
        assert cache._facsimiles._locks == {}

    def test_moment_facsimile(self, cache, page):
        _write_pdf(cache.file_for_name(page.pdf_name))
        image = cache.moment_facsimile(cache.moment(_issue(cache)))
        assert image.name == f"page1-{DAY.isoformat()}.jpg"

    def test_missing_pdf(self, cache, page):
        assert cache.facsimile(page) is None

    def test_broken_pdf(self, cache, page):
        try:
            import pypdfium2  # noqa: F401
        except ImportError:
            pytest.skip("pypdfium2 not available")
        pdf_path = cache.file_for_name(page.pdf_name)
        pdf_path.parent.mkdir(parents=True, exist_ok=True)
        pdf_path.write_bytes(b"not a pdf")
        assert cache.facsimile(page) is None
