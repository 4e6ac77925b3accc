"""Turn uploaded statement files into plain text or page images for the vision model."""
import asyncio
import base64
import csv
import io
import logging
import os
import tempfile
import time
from datetime import date, datetime
from typing import Iterable, Protocol

from docx import Document
from openpyxl import load_workbook
from pdf2image import convert_from_path
from PIL import Image

from statement_ledger.exceptions import ExtractionError
from statement_ledger.models.schemas import ExtractedContent, FileBlob, ImagePart

logger = logging.getLogger("content_extractor")

PDF_TYPE = "application/pdf"
DOCX_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
XLSX_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# Page scale 2.5 over the 72 DPI PDF unit (~180 DPI).
RASTER_SCALE = 2.5
RASTER_DPI = int(72 * RASTER_SCALE)

STATEMENT_SEPARATOR = "\n\n--- NEXT STATEMENT ---\n\n"


class Rasterizer(Protocol):
    def rasterize(self, pdf_bytes: bytes) -> list[bytes]:
        """Return one PNG per page, in page order."""
        ...


class Pdf2ImageRasterizer:
    """Render PDF pages with poppler (pdf2image) and encode them as lossless PNG."""

    def __init__(self, dpi: int = RASTER_DPI):
        self.dpi = dpi

    def rasterize(self, pdf_bytes: bytes) -> list[bytes]:
        return [_image_to_png(img) for img in self._pdf_to_images(pdf_bytes)]

    def _pdf_to_images(self, pdf_bytes: bytes) -> list[Image.Image]:
        tmp_path = None
        try:
            with tempfile.NamedTemporaryFile(suffix=".pdf", delete=False) as tmp:
                tmp.write(pdf_bytes)
                tmp.flush()
                tmp_path = tmp.name
            return convert_from_path(tmp_path, dpi=self.dpi)
        except Exception as e:
            err_msg = str(e).strip()
            if "poppler" in err_msg.lower() or "page count" in err_msg.lower():
                raise ExtractionError(
                    "PDF to image failed: poppler is required. "
                    "Install it (e.g. brew install poppler on macOS, apt install poppler-utils on Linux)."
                ) from e
            raise ExtractionError(f"PDF to image failed: {err_msg}") from e
        finally:
            if tmp_path and os.path.exists(tmp_path):
                try:
                    os.unlink(tmp_path)
                except OSError as e:
                    logger.warning("could not remove temp file %s: %s", tmp_path, e)


def _image_to_png(img: Image.Image) -> bytes:
    if img.mode not in ("RGB", "RGBA", "L"):
        img = img.convert("RGB")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def _cell_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date)):
        return value.strftime("%d/%m/%Y")
    return str(value)


def docx_to_text(content: bytes) -> str:
    """Raw text of a Word document: paragraphs first, then table rows (tab separated)."""
    document = Document(io.BytesIO(content))
    parts = [p.text for p in document.paragraphs]
    for table in document.tables:
        for row in table.rows:
            parts.append("\t".join(cell.text for cell in row.cells))
    return "\n".join(parts)


def xlsx_to_csv(content: bytes) -> str:
    """Every sheet serialized as CSV, concatenated in workbook order."""
    workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    try:
        out = io.StringIO()
        writer = csv.writer(out, lineterminator="\n")
        for sheet in workbook.worksheets:
            for row in sheet.iter_rows(values_only=True):
                writer.writerow([_cell_text(v) for v in row])
        return out.getvalue()
    finally:
        workbook.close()


def aggregate(results: Iterable[ExtractedContent]) -> ExtractedContent:
    """Join non-empty texts with the statement separator and flatten images, keeping input order."""
    texts = []
    images: list[ImagePart] = []
    for result in results:
        if result.text:
            texts.append(result.text)
        images.extend(result.images)
    return ExtractedContent(text=STATEMENT_SEPARATOR.join(texts) if texts else None, images=images)


class ContentExtractor:
    def __init__(self, rasterizer: Rasterizer | None = None):
        self.rasterizer = rasterizer or Pdf2ImageRasterizer()

    def extract_from_file(self, blob: FileBlob) -> ExtractedContent:
        if not blob.content:
            raise ExtractionError(f"File content is empty: {blob.filename}")
        media_type = blob.media_type or ""
        t0 = time.perf_counter()
        try:
            if media_type == PDF_TYPE:
                pages = self.rasterizer.rasterize(blob.content)
                result = ExtractedContent(
                    images=[ImagePart(mime_type="image/png", data=base64.b64encode(p).decode("ascii")) for p in pages]
                )
            elif media_type.startswith("image/"):
                result = ExtractedContent(
                    images=[ImagePart(mime_type=media_type, data=base64.b64encode(blob.content).decode("ascii"))]
                )
            elif media_type == DOCX_TYPE:
                result = ExtractedContent(text=docx_to_text(blob.content))
            elif media_type == XLSX_TYPE:
                result = ExtractedContent(text=xlsx_to_csv(blob.content))
            else:
                result = ExtractedContent(text=blob.content.decode("utf-8-sig", errors="replace"))
        except ExtractionError:
            raise
        except Exception as e:
            raise ExtractionError(f"Could not extract {blob.filename}: {e}") from e
        logger.info(
            "extract_from_file: %s (%s) -> text=%d chars, images=%d (%.2f s)",
            blob.filename, media_type or "unknown", len(result.text or ""), len(result.images),
            time.perf_counter() - t0,
        )
        return result

    async def extract_batch(self, blobs: list[FileBlob]) -> ExtractedContent:
        """Extract every file concurrently; the batch fails as a whole if any file fails."""
        if not blobs:
            raise ExtractionError("No files to extract.")
        t0 = time.perf_counter()
        results = await asyncio.gather(*(asyncio.to_thread(self.extract_from_file, b) for b in blobs))
        content = aggregate(results)
        logger.info(
            "extract_batch: %d files -> text=%d chars, images=%d (%.2f s)",
            len(blobs), len(content.text or ""), len(content.images), time.perf_counter() - t0,
        )
        return content
