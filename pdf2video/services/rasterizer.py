"""PDF rasterization executed inside the isolated worker process.

The functions here are pure with respect to their inputs: PDF bytes and a
target box in, PNG page bitmaps out. ``worker_main`` is the process entry
point used by :mod:`pdf2video.services.dispatcher`; it answers exactly one
request and never lets an exception escape into the host.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

import fitz  # PyMuPDF
from PIL import Image

from .errors import RasterizationError

LOGGER = logging.getLogger(__name__)

REQUEST_RENDER = "render"
REQUEST_PAGE_COUNT = "page_count"
REPLY_RENDERED = "rendered"
REPLY_PAGE_COUNT = "page_count"
REPLY_ERROR = "error"


@dataclass(slots=True)
class RenderedPage:
    index: int
    png: bytes = field(repr=False)
    width: int
    height: int


@dataclass(slots=True)
class RenderResult:
    pages: List[RenderedPage]
    page_count: int


def _open_document(pdf_bytes: bytes) -> "fitz.Document":
    if not pdf_bytes:
        raise RasterizationError("PDF data is empty")
    try:
        document = fitz.open(stream=bytes(pdf_bytes), filetype="pdf")
    except Exception as error:  # noqa: BLE001 - MuPDF raises a variety of errors
        raise RasterizationError(f"Unable to parse PDF: {error}") from error
    if document.needs_pass:
        document.close()
        raise RasterizationError("PDF is password protected")
    return document


def count_pages(pdf_bytes: bytes) -> int:
    """Return the number of pages without rendering any of them."""

    document = _open_document(pdf_bytes)
    try:
        return int(document.page_count)
    finally:
        document.close()


def render_page(page: "fitz.Page", width: int, height: int) -> bytes:
    """Render ``page`` to a ``width`` x ``height`` PNG.

    The page is scaled to cover the target box and centered on a white
    background; any overflow is cropped evenly from both sides.
    """

    bounds = page.rect
    if bounds.width <= 0 or bounds.height <= 0:
        raise RasterizationError(f"Page {page.number + 1} has an empty media box")

    scale = max(width / bounds.width, height / bounds.height)
    pixmap = page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False, colorspace=fitz.csRGB)
    bitmap = Image.frombytes("RGB", (pixmap.width, pixmap.height), pixmap.samples)

    canvas = Image.new("RGB", (width, height), (255, 255, 255))
    offset = ((width - bitmap.width) // 2, (height - bitmap.height) // 2)
    canvas.paste(bitmap, offset)

    output = io.BytesIO()
    canvas.save(output, format="PNG")
    return output.getvalue()


def render_pdf(pdf_bytes: bytes, width: int, height: int) -> RenderResult:
    """Render every page of the document, in order, to ``width`` x ``height`` PNGs."""

    if width <= 0 or height <= 0:
        raise RasterizationError(f"Invalid target size {width}x{height}")

    document = _open_document(pdf_bytes)
    try:
        pages: List[RenderedPage] = []
        for number in range(document.page_count):
            try:
                png = render_page(document.load_page(number), width, height)
            except RasterizationError:
                raise
            except Exception as error:  # noqa: BLE001 - MuPDF raises a variety of errors
                raise RasterizationError(f"Failed to render page {number + 1}: {error}") from error
            pages.append(RenderedPage(index=number + 1, png=png, width=width, height=height))
        return RenderResult(pages=pages, page_count=int(document.page_count))
    finally:
        document.close()


def handle_request(message: Any) -> Dict[str, Any]:
    """Answer one worker protocol message; failures become an ``error`` reply."""

    try:
        if not isinstance(message, dict):
            raise RasterizationError("Malformed worker request")
        kind = message.get("type")
        if kind == REQUEST_RENDER:
            result = render_pdf(message["pdf"], int(message["width"]), int(message["height"]))
            return {
                "type": REPLY_RENDERED,
                "page_count": result.page_count,
                "pages": [
                    {"index": page.index, "png": page.png, "width": page.width, "height": page.height}
                    for page in result.pages
                ],
            }
        if kind == REQUEST_PAGE_COUNT:
            return {"type": REPLY_PAGE_COUNT, "page_count": count_pages(message["pdf"])}
        raise RasterizationError(f"Unknown worker request type: {kind!r}")
    except Exception as error:  # noqa: BLE001 - every failure is reported as a reply
        return {"type": REPLY_ERROR, "message": str(error) or error.__class__.__name__}


def worker_main(conn: Any) -> None:
    """Process entry point: receive one request, send one reply, exit."""

    try:
        request = conn.recv()
    except EOFError:
        return
    try:
        conn.send(handle_request(request))
    finally:
        conn.close()
