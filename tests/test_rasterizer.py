from __future__ import annotations

import io

import pytest
from PIL import Image

from pdf2video.services.errors import RasterizationError
from pdf2video.services.rasterizer import (
    REPLY_ERROR,
    REPLY_PAGE_COUNT,
    REPLY_RENDERED,
    count_pages,
    handle_request,
    render_pdf,
)


def _open_png(data: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(data))
    image.load()
    return image


def test_render_pdf_outputs_exact_target_size_in_page_order(make_pdf) -> None:
    pdf = make_pdf((720, 405), (595, 842), (400, 400))

    result = render_pdf(pdf, 1920, 1080)

    assert result.page_count == 3
    assert [page.index for page in result.pages] == [1, 2, 3]
    for page in result.pages:
        image = _open_png(page.png)
        assert image.format == "PNG"
        assert image.size == (1920, 1080)
        assert (page.width, page.height) == (1920, 1080)


def _solid_pdf(width: float, height: float) -> bytes:
    import fitz

    document = fitz.open()
    try:
        page = document.new_page(width=width, height=height)
        page.draw_rect(page.rect, color=(1, 0, 0), fill=(1, 0, 0))
        return document.tobytes()
    finally:
        document.close()


def test_render_pdf_covers_the_target_box() -> None:
    # A portrait page in a landscape box overflows vertically and is cropped,
    # so no white letterbox columns remain at the sides.
    page = render_pdf(_solid_pdf(300, 600), 640, 360).pages[0]
    image = _open_png(page.png).convert("RGB")

    assert image.size == (640, 360)
    for x, y in ((4, 180), (635, 180), (320, 4), (320, 355)):
        red, green, blue = image.getpixel((x, y))
        assert red > 200 and green < 60 and blue < 60


def test_count_pages(make_pdf) -> None:
    assert count_pages(make_pdf((720, 405), (720, 405))) == 2


@pytest.mark.parametrize("payload", [b"", b"this is not a pdf"])
def test_invalid_documents_raise(payload: bytes) -> None:
    with pytest.raises(RasterizationError):
        render_pdf(payload, 1280, 720)


def test_handle_request_turns_failures_into_error_replies(make_pdf) -> None:
    reply = handle_request({"type": "render", "pdf": b"broken", "width": 1280, "height": 720})
    assert reply["type"] == REPLY_ERROR
    assert "Unable to parse PDF" in reply["message"]

    reply = handle_request({"type": "explode"})
    assert reply["type"] == REPLY_ERROR

    reply = handle_request("not a dict")
    assert reply["type"] == REPLY_ERROR


def test_handle_request_success_replies(make_pdf) -> None:
    pdf = make_pdf((720, 405), (720, 405))

    count_reply = handle_request({"type": "page_count", "pdf": pdf})
    assert count_reply == {"type": REPLY_PAGE_COUNT, "page_count": 2}

    render_reply = handle_request({"type": "render", "pdf": pdf, "width": 320, "height": 240})
    assert render_reply["type"] == REPLY_RENDERED
    assert [page["index"] for page in render_reply["pages"]] == [1, 2]
    assert all(isinstance(page["png"], bytes) for page in render_reply["pages"])
