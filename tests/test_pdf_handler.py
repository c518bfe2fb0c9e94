"""Tests for format sniffing and page rasterization."""

import io
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
from PIL import Image

from docintel.ocr.pdf_handler import PDFHandler, detect_mime_type, resolve_document_type


def _mock_pil_image(width: int = 300, height: int = 200) -> Image.Image:
    """Create a mock PIL image."""
    return Image.fromarray(np.zeros((height, width, 3), dtype=np.uint8))


def _image_bytes(fmt: str) -> bytes:
    buf = io.BytesIO()
    _mock_pil_image(40, 20).save(buf, format=fmt)
    return buf.getvalue()


class TestDetectMimeType:
    """Tests for magic-byte sniffing."""

    @pytest.mark.parametrize(
        ("prefix", "expected"),
        [
            (b"%PDF-1.7", "application/pdf"),
            (b"\xff\xd8\xff\xe0", "image/jpeg"),
            (b"\x89PNG\r\n", "image/png"),
            (b"GIF89a", "image/gif"),
            (b"II*\x00rest", "image/tiff"),
        ],
    )
    def test_known_signatures(self, prefix: bytes, expected: str) -> None:
        assert detect_mime_type(prefix) == expected

    def test_unknown_defaults_to_png(self) -> None:
        assert detect_mime_type(b"\x00\x01\x02\x03\x04") == "image/png"

    def test_short_buffer(self) -> None:
        assert detect_mime_type(b"%P") == "application/octet-stream"


class TestResolveDocumentType:
    """Tests for the doc_type hint handling."""

    def test_explicit_hint_wins(self) -> None:
        assert resolve_document_type(b"%PDF-1.4", "image") == "image"

    def test_auto_sniffs_pdf(self) -> None:
        assert resolve_document_type(b"%PDF-1.4", "auto") == "pdf"

    def test_auto_defaults_to_image(self) -> None:
        assert resolve_document_type(b"\x89PNG\r\n", "auto") == "image"


class TestPDFHandler:
    """Tests for the PDFHandler class."""

    def test_init_default_dpi(self) -> None:
        assert PDFHandler().dpi == 300

    @patch("docintel.ocr.pdf_handler.convert_from_bytes")
    def test_pdf_pages(self, mock_convert: MagicMock) -> None:
        mock_convert.return_value = [_mock_pil_image(), _mock_pil_image()]
        handler = PDFHandler(dpi=200)

        images = handler.to_page_images(b"%PDF-1.4 fake content")

        assert len(images) == 2
        assert all(isinstance(img, np.ndarray) for img in images)
        mock_convert.assert_called_once_with(b"%PDF-1.4 fake content", dpi=200)

    def test_png_single_page(self) -> None:
        images = PDFHandler().to_page_images(_image_bytes("PNG"), "auto")
        assert len(images) == 1
        assert images[0].shape == (20, 40, 3)

    def test_jpeg_converted_to_rgb(self) -> None:
        images = PDFHandler().to_page_images(_image_bytes("JPEG"), "image")
        assert images[0].ndim == 3

    def test_empty_buffer_raises(self) -> None:
        with pytest.raises(ValueError):
            PDFHandler().to_page_images(b"")

    @patch("docintel.ocr.pdf_handler.convert_from_bytes")
    def test_conversion_failure_raises_runtime_error(self, mock_convert: MagicMock) -> None:
        mock_convert.side_effect = Exception("poppler not installed")
        with pytest.raises(RuntimeError, match="poppler"):
            PDFHandler().to_page_images(b"%PDF-1.4")
