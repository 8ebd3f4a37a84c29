"""
Page facsimiles rendered from page PDFs.

A facsimile is a JPEG of the first PDF page, written as <pdf stem>.jpg next
to the PDF and registered as an Image of type facsimile. It is created on
first request and reused afterwards.
"""

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from .blob_store import BlobStore
from .config import DEFAULT_FACSIMILE_QUALITY, DEFAULT_FACSIMILE_SCALE
from .database import Database
from .merge import Merger
from .queries import Queries
from .records import StoredImage, StoredMoment, StoredPage
from .types import Image, ImageResolution, ImageType

logger = logging.getLogger(__name__)


def render_first_page(pdf_path: Path, jpg_path: Path,
                      scale: float = DEFAULT_FACSIMILE_SCALE,
                      quality: int = DEFAULT_FACSIMILE_QUALITY) -> bool:
    """Render page 1 of a PDF to a JPEG file. Returns False on failure."""
    try:
        import pypdfium2 as pdfium
    except ImportError:
        logger.warning("pypdfium2 not installed; cannot render facsimiles")
        return False

    try:
        pdf = pdfium.PdfDocument(str(pdf_path))
    except (pdfium.PdfiumError, OSError) as e:
        logger.warning("Cannot open PDF %s: %s", pdf_path, e)
        return False
    try:
        if len(pdf) == 0:
            logger.warning("PDF %s has no pages", pdf_path)
            return False
        bitmap = pdf[0].render(scale=scale)
        pil_image = bitmap.to_pil()
        pil_image.convert("RGB").save(jpg_path, format="JPEG", quality=quality)
    except (pdfium.PdfiumError, OSError) as e:
        logger.warning("Failed to render %s: %s", pdf_path, e)
        return False
    finally:
        pdf.close()
    return True


class Facsimiles:
    """Lazily derived page facsimiles, computed once per page."""

    def __init__(self, db: Database, blobs: BlobStore, merger: Merger, queries: Queries,
                 scale: float = DEFAULT_FACSIMILE_SCALE,
                 quality: int = DEFAULT_FACSIMILE_QUALITY):
        self._db = db
        self._blobs = blobs
        self._merger = merger
        self._queries = queries
        self._scale = scale
        self._quality = quality
        # page id -> [lock, number of callers holding or waiting for it]
        self._locks: dict[int, list] = {}
        self._locks_lock = threading.Lock()

    @contextmanager
    def _page_lock(self, page_id: int):
        with self._locks_lock:
            slot = self._locks.setdefault(page_id, [threading.Lock(), 0])
            slot[1] += 1
        try:
            with slot[0]:
                yield
        finally:
            with self._locks_lock:
                slot[1] -= 1
                if slot[1] == 0:
                    del self._locks[page_id]

    def _existing(self, page: StoredPage) -> Optional[StoredImage]:
        image = self._queries.image(page.facsimile_id)
        if image is None or image.file is None:
            return None
        path = self._blobs.path_of(image.file)
        if path is None or not path.exists():
            return None
        return image

    def facsimile(self, page: StoredPage) -> Optional[StoredImage]:
        """
        Facsimile image of a page, rendering it if needed.

        Returns:
            The facsimile, or None if the page's PDF is not on disk
        """
        with self._page_lock(page.id):
            current = self._queries.page(page.id)
            if current is None:
                return None
            image = self._existing(current)
            if image is not None:
                return image

            pdf = self._blobs.get(current.pdf_id)
            pdf_path = self._blobs.path_of(pdf) if pdf else None
            if pdf_path is None or not pdf_path.exists():
                return None
            jpg_path = pdf_path.with_suffix(".jpg")
            if not render_first_page(pdf_path, jpg_path, self._scale, self._quality):
                return None

            entry = self._blobs.put(jpg_path, pdf.storage_type)
            if entry is None:
                self._db.save()
                return None
            with self._db.transaction():
                image_id = self._merger.merge_image(Image(
                    name=entry.name,
                    storage_type=entry.storage_type,
                    mo_time=entry.mo_time,
                    size=entry.size,
                    sha256=entry.sha256,
                    resolution=ImageResolution.HIGH,
                    type=ImageType.FACSIMILE,
                ))
                self._db.write(
                    "UPDATE pages SET facsimile_id = ? WHERE id = ?", (image_id, current.id)
                )
            self._db.save()
            logger.debug("Rendered facsimile %s", jpg_path.name)
            return self._queries.image(image_id)

    def moment_facsimile(self, moment: StoredMoment) -> Optional[StoredImage]:
        """Facsimile of the issue's first page."""
        page = self._queries.page(moment.first_page_id)
        return self.facsimile(page) if page else None
