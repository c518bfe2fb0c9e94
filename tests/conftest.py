"""Shared test fixtures for the document intelligence test suite."""

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Any

import numpy as np
import pytest

from docintel.models import (
    Category,
    ClassificationResult,
    DateMention,
    Entity,
    EntityKind,
    ProcessingMethod,
    ProcessingResult,
    RecognitionResult,
    VoteSource,
)
from docintel.ocr.base import RecognitionEngine
from docintel.services.completion import CompletionClient
from docintel.utils.resilience import RetryPolicy

CSS_INVOICE_TEXT = (
    "CSS Assurance\nDécompte de prime 2024\nMarie Dupont\n"
    "Montant: CHF 350.50\nÉchéance 15.03.2024"
)
MACEDONIAN_CERTIFICATE_TEXT = (
    "УНИВЕРЗИТЕТ „СВ. КИРИЛ И МЕТОДИЈ“ СКОПЈЕ\nУВЕРЕНИЕ\n"
    "Се издава за положен контролен испит по информатика\n12 март 2023"
)
FRENCH_ATTESTATION_TEXT = (
    "Université de Genève\nAttestation de formation continue en informatique\n"
    "Jean Martin a suivi la formation du 15 janvier 2024 au 20 mars 2024."
)


class FakeCompletionClient(CompletionClient):
    """Completion client replaying canned replies.

    Each call consumes the next reply; the last one is repeated once the
    list runs out. Exceptions in the list are raised instead of returned.
    """

    def __init__(self, replies: list[str | Exception]) -> None:
        self.replies = replies
        self.prompts: list[str] = []
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    async def complete(
        self,
        prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> str:
        self.prompts.append(prompt)
        self.calls.append(
            {"temperature": temperature, "max_tokens": max_tokens, "json_mode": json_mode}
        )
        reply = self.replies[min(len(self.prompts), len(self.replies)) - 1]
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def aclose(self) -> None:
        self.closed = True


class FakeEngine(RecognitionEngine):
    """Recognition engine returning a fixed text or raising a fixed error."""

    def __init__(
        self,
        engine_id: str,
        text: str = "",
        confidence: float = 0.0,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.engine_id = engine_id
        self.text = text
        self.confidence = confidence
        self.error = error
        self.delay = delay
        self.timeout_seconds = 1.0
        self.calls = 0
        self.closed = False

    async def recognize(self, document: bytes, doc_type: str = "auto") -> RecognitionResult:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return RecognitionResult(
            text=self.text, confidence=self.confidence, engine_id=self.engine_id
        )

    async def aclose(self) -> None:
        self.closed = True


def build_result(**overrides: Any) -> ProcessingResult:
    """A processed certificate result, with any field overridden."""
    category = overrides.pop("category", Category.CERTIFICATE)
    fields: dict[str, Any] = {
        "corrected_text": FRENCH_ATTESTATION_TEXT,
        "text_confidence": 0.9,
        "classification": ClassificationResult(
            category=category,
            confidence=0.95,
            reasoning="Rule 'french-training-certificate' matched",
            source=VoteSource.RULE,
        ),
        "entities": (
            Entity("Jean Martin", EntityKind.PERSON, 0.7),
            Entity("Université de Genève", EntityKind.ORG, 0.8),
        ),
        "dates": (
            DateMention("15 janvier 2024", "15/01/2024", 0.85, "fr"),
            DateMention("20 mars 2024", "20/03/2024", 0.85, "fr"),
        ),
        "tags": ("certificate", "french", "accented"),
        "suggested_name": "Attestation_Informatique_Jean_Martin_15_01_2024",
        "summary": "French IT training attestation or certificate.",
        "language": "fr",
        "word_count": 21,
        "quality_score": 0.925,
        "processing_method": ProcessingMethod.LOCAL,
    }
    fields.update(overrides)
    return ProcessingResult(**fields)


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Retry policy without waits, for exercising retry paths quickly."""
    return RetryPolicy(
        timeout_seconds=1.0, max_attempts=3, backoff_seconds=0.0, warmup_wait_seconds=0.0
    )


@pytest.fixture
def completion_client() -> Callable[..., FakeCompletionClient]:
    """Factory for completion clients replaying the given replies."""
    return FakeCompletionClient


@pytest.fixture
def engine() -> Callable[..., FakeEngine]:
    """Factory for fake recognition engines."""
    return FakeEngine


@pytest.fixture
def processed_result() -> Callable[..., ProcessingResult]:
    """Factory for processed results, defaulting to a French certificate."""
    return build_result


@pytest.fixture
def css_text() -> str:
    return CSS_INVOICE_TEXT


@pytest.fixture
def macedonian_text() -> str:
    return MACEDONIAN_CERTIFICATE_TEXT


@pytest.fixture
def french_text() -> str:
    return FRENCH_ATTESTATION_TEXT


@pytest.fixture
def sample_image() -> np.ndarray:
    """Create a simple synthetic grayscale test image."""
    image = np.zeros((200, 300), dtype=np.uint8)
    image[50:150, 50:250] = 255
    return image


@pytest.fixture
def sample_color_image() -> np.ndarray:
    """Create a simple synthetic RGB test image."""
    image = np.zeros((200, 300, 3), dtype=np.uint8)
    image[50:150, 50:250] = (255, 255, 255)
    return image


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def config_dir(project_root: Path) -> Path:
    """Return the configs directory path."""
    return project_root / "configs"
