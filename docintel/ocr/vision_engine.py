"""Vision-language OCR engine served through a Gradio-style endpoint.

The hosted model receives the page as base64 together with an
instruction and the model name, and answers ``{"data": [raw, markdown]}``.
Several endpoint paths are tried in order because hosted Spaces expose
different routes depending on their Gradio version. The service gives
no confidence score, so one is estimated from the shape of the text.
"""

import base64
import re
import time
from typing import Any

import httpx

from docintel.exceptions import (
    MalformedResponseError,
    ModelWarmingUpError,
    ServiceError,
    ServiceTimeoutError,
    ServiceUnavailableError,
)
from docintel.models import RecognitionResult
from docintel.utils.config import OCRConfig
from docintel.utils.logger import get_logger

from .base import RecognitionEngine
from .pdf_handler import DocumentType

logger = get_logger(__name__)

_SPECIAL_CHARS = re.compile(r"[^\w\s.,!?;:\-]")


def parse_vision_response(body: Any) -> str:
    """Pull the recognized text out of a vision endpoint response.

    Accepts the Gradio ``{"data": [raw, markdown]}`` shape, a bare string,
    or an object with a ``text`` field.

    Raises:
        MalformedResponseError: If none of the known shapes match.
    """
    if isinstance(body, dict) and isinstance(body.get("data"), list):
        data = body["data"]
        raw = data[0] if len(data) > 0 else None
        markdown = data[1] if len(data) > 1 else None
        text = raw or markdown or ""
        if isinstance(text, str):
            return text.strip()
    if isinstance(body, str):
        return body.strip()
    if isinstance(body, dict) and isinstance(body.get("text"), str):
        return body["text"].strip()
    raise MalformedResponseError("Unexpected vision OCR response format")


def estimate_confidence(text: str) -> float:
    """Score recognized text on 0-1 from length and character mix.

    Starts at 0.5, rewards longer text and the presence of upper case,
    lower case, digits and punctuation, and penalizes text in which more
    than 30% of characters are unusual symbols.
    """
    if not text:
        return 0.0

    confidence = 0.5
    if len(text) > 100:
        confidence += 0.2
    if len(text) > 500:
        confidence += 0.1
    if re.search(r"[A-Z]", text):
        confidence += 0.05
    if re.search(r"[a-z]", text):
        confidence += 0.05
    if re.search(r"\d", text):
        confidence += 0.05
    if re.search(r"[.,!?;:]", text):
        confidence += 0.05

    special_ratio = len(_SPECIAL_CHARS.findall(text)) / len(text)
    if special_ratio > 0.3:
        confidence -= 0.2

    return max(0.0, min(1.0, confidence))


class VisionOCREngine(RecognitionEngine):
    """High-accuracy OCR via a hosted vision-language model.

    Args:
        config: OCR configuration holding endpoints, model and prompt.
        client: Pre-built ``httpx.AsyncClient`` (used by tests).
        engine_id: Identifier reported in recognition results.
    """

    def __init__(
        self,
        config: OCRConfig,
        client: httpx.AsyncClient | None = None,
        engine_id: str = "vision",
    ) -> None:
        self.config = config
        self.engine_id = engine_id
        self.timeout_seconds = config.vision_timeout_seconds
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.vision_timeout_seconds)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def recognize(
        self, document: bytes, doc_type: DocumentType = "auto"
    ) -> RecognitionResult:
        start = time.monotonic()
        payload = {
            "data": [
                base64.b64encode(document).decode("ascii"),
                self.config.vision_prompt,
                self.config.vision_model,
            ]
        }
        body = await self._post_first_available(payload)
        text = parse_vision_response(body)
        confidence = estimate_confidence(text)
        logger.info(
            "Vision OCR returned %d characters (confidence %.2f)", len(text), confidence
        )
        return RecognitionResult(
            text=text,
            confidence=confidence,
            engine_id=self.engine_id,
            latency_ms=int((time.monotonic() - start) * 1000),
        )

    async def _post_first_available(self, payload: dict[str, Any]) -> Any:
        """POST ``payload`` to each endpoint until one answers with 2xx."""
        if not self.config.vision_endpoints:
            raise ServiceError("No vision OCR endpoints configured")

        last_error: ServiceError | None = None
        for endpoint in self.config.vision_endpoints:
            try:
                response = await self._get_client().post(endpoint, json=payload)
            except httpx.TimeoutException as exc:
                last_error = ServiceTimeoutError(f"Vision endpoint {endpoint} timed out")
                last_error.__cause__ = exc
                continue
            except httpx.HTTPError as exc:
                last_error = ServiceUnavailableError(f"Vision endpoint {endpoint}: {exc}")
                last_error.__cause__ = exc
                continue

            if response.status_code == 503 and "loading" in response.text.lower():
                raise ModelWarmingUpError("Vision model is loading")
            if response.is_success:
                logger.debug("Vision endpoint %s answered", endpoint)
                try:
                    return response.json()
                except ValueError:
                    return response.text

            logger.debug("Vision endpoint %s failed with %d", endpoint, response.status_code)
            if response.status_code >= 500:
                last_error = ServiceUnavailableError(
                    f"Vision endpoint {endpoint} returned {response.status_code}"
                )
            else:
                last_error = ServiceError(
                    f"Vision endpoint {endpoint} returned {response.status_code}"
                )

        assert last_error is not None
        raise last_error
