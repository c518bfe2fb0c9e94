"""Fan-out of a document to every configured recognition engine.

The document is fetched once, every engine is started concurrently under
its own timeout and retry budget, and the answers are joined. Failed
engines contribute an empty zero-confidence result which the validity
filter then drops, so the caller only ever sees usable results.
"""

import asyncio
import time
from dataclasses import replace

import httpx

from docintel.models import RecognitionResult
from docintel.utils.config import OCRConfig, RetryConfig
from docintel.utils.logger import get_logger
from docintel.utils.resilience import RetryPolicy, call_with_retry

from .base import RecognitionEngine
from .pdf_handler import DocumentType

logger = get_logger(__name__)


class EngineOrchestrator:
    """Runs all recognition engines on a document and keeps the valid results.

    Args:
        engines: Recognition engines to fan out to.
        retry: Retry budget applied to each engine call.
        min_confidence: Results at or below this confidence are dropped.
        fetch_timeout_seconds: Timeout for downloading URL sources.
        client: ``httpx.AsyncClient`` used to download URL sources.
    """

    def __init__(
        self,
        engines: list[RecognitionEngine],
        retry: RetryConfig | None = None,
        min_confidence: float = 0.1,
        fetch_timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.engines = engines
        self.retry = retry or RetryConfig()
        self.min_confidence = min_confidence
        self.fetch_timeout_seconds = fetch_timeout_seconds
        self._client = client

    @classmethod
    def from_config(
        cls,
        engines: list[RecognitionEngine],
        ocr: OCRConfig,
        retry: RetryConfig,
    ) -> "EngineOrchestrator":
        return cls(
            engines,
            retry=retry,
            min_confidence=ocr.min_confidence,
            fetch_timeout_seconds=ocr.fetch_timeout_seconds,
        )

    async def fetch(self, source: str | bytes) -> bytes:
        """Return the document bytes, downloading ``source`` if it is a URL."""
        if isinstance(source, bytes):
            return source
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.fetch_timeout_seconds, follow_redirects=True
            )
        response = await self._client.get(source)
        response.raise_for_status()
        logger.info("Fetched %d bytes from document URL", len(response.content))
        return response.content

    async def extract_text(
        self, source: str | bytes, doc_type: DocumentType = "auto"
    ) -> list[RecognitionResult]:
        """Recognize ``source`` with every engine concurrently.

        Args:
            source: Document URL or raw bytes.
            doc_type: Format hint passed to each engine.

        Returns:
            Valid results ordered by descending confidence; possibly empty.
            Never raises.
        """
        try:
            document = await self.fetch(source)
        except Exception as exc:
            logger.error("Could not fetch document: %s", exc)
            return []

        if not document or not self.engines:
            return []

        results = await asyncio.gather(
            *(self._run_engine(engine, document, doc_type) for engine in self.engines)
        )
        valid = [r for r in results if r.is_valid(self.min_confidence)]
        valid.sort(key=lambda r: r.confidence, reverse=True)

        logger.info(
            "OCR fan-out: %d engine(s), %d valid, confidences=%s",
            len(results),
            len(valid),
            [round(r.confidence, 2) for r in valid],
        )
        return valid

    async def _run_engine(
        self, engine: RecognitionEngine, document: bytes, doc_type: DocumentType
    ) -> RecognitionResult:
        """Call one engine under its budget; failures become empty results."""
        start = time.monotonic()
        policy = replace(
            RetryPolicy.from_config(self.retry, engine.timeout_seconds),
            retry_on_timeout=engine.retry_on_timeout,
        )
        try:
            return await call_with_retry(
                lambda: engine.recognize(document, doc_type),
                policy,
                label=f"OCR engine {engine.engine_id}",
            )
        except Exception as exc:
            logger.warning("OCR engine %s failed: %s", engine.engine_id, exc)
            return RecognitionResult(
                text="",
                confidence=0.0,
                engine_id=engine.engine_id,
                latency_ms=int((time.monotonic() - start) * 1000),
            )

    async def aclose(self) -> None:
        """Close the download client and every engine's clients."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        for engine in self.engines:
            await engine.aclose()
