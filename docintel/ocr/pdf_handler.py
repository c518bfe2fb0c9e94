"""Page rasterization for the classical OCR engine.

Turns an uploaded byte buffer (PDF or image) into page images so that
Tesseract can read them. Format sniffing follows the file's magic bytes
whenever the caller's hint is ``auto``.
"""

import io
from typing import Literal

import numpy as np
from pdf2image import convert_from_bytes
from PIL import Image

from docintel.utils.logger import get_logger

logger = get_logger(__name__)

DocumentType = Literal["pdf", "image", "auto"]

_MIME_SIGNATURES: list[tuple[bytes, str]] = [
    (b"%PDF", "application/pdf"),
    (b"\xff\xd8", "image/jpeg"),
    (b"\x89PNG", "image/png"),
    (b"GIF8", "image/gif"),
    (b"BM", "image/bmp"),
    (b"II*\x00", "image/tiff"),
    (b"MM\x00*", "image/tiff"),
]


def detect_mime_type(document: bytes) -> str:
    """Guess a document's MIME type from its leading bytes.

    Args:
        document: Raw file bytes.

    Returns:
        MIME type string; ``image/png`` when nothing matches.
    """
    if len(document) < 4:
        return "application/octet-stream"
    for signature, mime in _MIME_SIGNATURES:
        if document.startswith(signature):
            return mime
    return "image/png"


def resolve_document_type(document: bytes, hint: DocumentType = "auto") -> str:
    """Return ``pdf`` or ``image`` for a buffer, honoring an explicit hint."""
    if hint in ("pdf", "image"):
        return hint
    return "pdf" if detect_mime_type(document) == "application/pdf" else "image"


class PDFHandler:
    """Converts documents to page images for OCR.

    Args:
        dpi: Resolution for PDF rendering. Higher values produce
            better OCR results but use more memory.
    """

    def __init__(self, dpi: int = 300) -> None:
        self.dpi = dpi

    def to_page_images(
        self, document: bytes, doc_type: DocumentType = "auto"
    ) -> list[np.ndarray]:
        """Rasterize a document into one RGB array per page.

        Args:
            document: Raw PDF or image bytes.
            doc_type: Format hint (``pdf``, ``image`` or ``auto``).

        Returns:
            List of page images as numpy arrays.

        Raises:
            ValueError: If the buffer is empty.
            RuntimeError: If the document cannot be decoded.
        """
        if not document:
            raise ValueError("Empty document buffer")

        kind = resolve_document_type(document, doc_type)
        try:
            if kind == "pdf":
                pil_images = convert_from_bytes(document, dpi=self.dpi)
            else:
                pil_images = [Image.open(io.BytesIO(document)).convert("RGB")]
        except Exception as exc:
            raise RuntimeError(f"Could not decode {kind} document: {exc}") from exc

        images = [np.array(img) for img in pil_images]
        logger.info("Rasterized %s into %d page(s)", kind, len(images))
        return images
