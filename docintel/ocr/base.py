"""Recognition engine contract."""

from abc import ABC, abstractmethod

from docintel.models import RecognitionResult
from docintel.ocr.pdf_handler import DocumentType


class RecognitionEngine(ABC):
    """A text-recognition source the orchestrator can fan out to.

    Implementations raise on failure; the orchestrator owns the timeout,
    the retries, and the conversion of failures into empty results.
    Engines whose work runs in a thread set ``retry_on_timeout`` to False
    and bound that work themselves.
    """

    engine_id: str = "engine"
    timeout_seconds: float = 45.0
    retry_on_timeout: bool = True

    @abstractmethod
    async def recognize(
        self, document: bytes, doc_type: DocumentType = "auto"
    ) -> RecognitionResult:
        """Recognize the text of ``document``."""

    async def aclose(self) -> None:
        """Release network clients held by the engine."""
