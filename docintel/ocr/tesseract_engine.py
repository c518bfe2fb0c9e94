"""Classical layout-aware OCR engine backed by Tesseract.

Rasterizes the document, cleans each page up, and runs Tesseract with
the configured language pack (English, French and Macedonian by
default). The blocking Tesseract calls run in a worker thread so the
engine can be awaited alongside the remote engines.
"""

import asyncio
import time
from dataclasses import dataclass

import numpy as np
import pytesseract
from PIL import Image

from docintel.exceptions import ServiceError, ServiceTimeoutError
from docintel.models import RecognitionResult
from docintel.utils.config import OCRConfig, PreprocessingConfig
from docintel.utils.logger import get_logger

from .base import RecognitionEngine
from .pdf_handler import DocumentType, PDFHandler
from .preprocessing import preprocess_page

logger = get_logger(__name__)


@dataclass
class PageText:
    """Tesseract output for a single page."""

    text: str
    confidence: float
    word_count: int


class TesseractEngine(RecognitionEngine):
    """Wrapper around Tesseract OCR for document text extraction.

    Tesseract runs in a worker thread, so the engine enforces its own
    deadline: each subprocess gets the remaining budget and is killed when
    it runs over. Timeouts are not retried.

    Args:
        config: OCR configuration (languages, page segmentation, DPI).
        preprocessing: Image cleanup configuration.
        engine_id: Identifier reported in recognition results.
    """

    retry_on_timeout = False

    def __init__(
        self,
        config: OCRConfig,
        preprocessing: PreprocessingConfig | None = None,
        engine_id: str = "tesseract",
    ) -> None:
        if config.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = config.tesseract_cmd
        self.config = config
        self.preprocessing = preprocessing or PreprocessingConfig()
        self.engine_id = engine_id
        self.timeout_seconds = config.tesseract_timeout_seconds
        self.pdf_handler = PDFHandler(dpi=config.pdf_dpi)

    async def recognize(
        self, document: bytes, doc_type: DocumentType = "auto"
    ) -> RecognitionResult:
        start = time.monotonic()
        text, confidence = await asyncio.to_thread(self._recognize_sync, document, doc_type)
        return RecognitionResult(
            text=text,
            confidence=confidence,
            engine_id=self.engine_id,
            latency_ms=int((time.monotonic() - start) * 1000),
        )

    def _recognize_sync(self, document: bytes, doc_type: DocumentType) -> tuple[str, float]:
        deadline = time.monotonic() + self.timeout_seconds
        try:
            pages = self.pdf_handler.to_page_images(document, doc_type)
        except (ValueError, RuntimeError) as exc:
            raise ServiceError(f"Tesseract could not read document: {exc}") from exc

        results: list[PageText] = []
        for page in pages:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ServiceTimeoutError(
                    f"Tesseract ran out of time after {len(results)} of {len(pages)} page(s)"
                )
            results.append(
                self.extract_page(preprocess_page(page, self.preprocessing), timeout=remaining)
            )
        text = "\n\n".join(r.text.strip() for r in results if r.text.strip())

        total_words = sum(r.word_count for r in results)
        confidence = (
            sum(r.confidence * r.word_count for r in results) / total_words
            if total_words
            else 0.0
        )
        logger.info(
            "Tesseract read %d page(s), %d words, confidence %.2f",
            len(results),
            total_words,
            confidence,
        )
        return text, confidence

    def extract_page(self, image: np.ndarray, timeout: float | None = None) -> PageText:
        """Run Tesseract on one page image.

        Args:
            image: Page as a numpy array.
            timeout: Seconds both Tesseract runs may take together;
                defaults to the engine timeout.

        Returns:
            Page text with the mean word confidence on a 0-1 scale.

        Raises:
            ServiceTimeoutError: If Tesseract was killed for running over.
            ServiceError: If Tesseract failed.
        """
        config = f"--psm {self.config.tesseract_psm}"
        pil_image = Image.fromarray(image)
        lang = self.config.tesseract_languages
        deadline = time.monotonic() + (timeout or self.timeout_seconds)

        try:
            text = pytesseract.image_to_string(
                pil_image, lang=lang, config=config, timeout=_remaining(deadline)
            )
            data = pytesseract.image_to_data(
                pil_image,
                lang=lang,
                config=config,
                output_type=pytesseract.Output.DICT,
                timeout=_remaining(deadline),
            )
        except pytesseract.TesseractError as exc:
            raise ServiceError(f"Tesseract failed: {exc}") from exc
        except RuntimeError as exc:
            # pytesseract signals a killed subprocess with a bare RuntimeError
            raise ServiceTimeoutError(f"Tesseract timed out: {exc}") from exc

        total_conf = 0.0
        word_count = 0
        for raw_conf, word in zip(data["conf"], data["text"], strict=False):
            conf = float(raw_conf)
            if conf > 0 and word.strip():
                total_conf += conf
                word_count += 1

        avg_conf = (total_conf / word_count / 100.0) if word_count > 0 else 0.0
        return PageText(text=text, confidence=avg_conf, word_count=word_count)


def _remaining(deadline: float) -> float:
    """Seconds left before ``deadline``; pytesseract treats 0 as no limit."""
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise ServiceTimeoutError("Tesseract ran out of time")
    return remaining
