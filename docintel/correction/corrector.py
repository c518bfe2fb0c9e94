"""OCR text correction through a generative completion service.

All candidate texts go to the model in a single request, and the model
reconciles them into one cleaned text. When the service is unavailable
or answers with something unusable, the highest-confidence candidate is
used verbatim.
"""

from dataclasses import dataclass

from docintel.exceptions import DocIntelError, NoUsableTextError
from docintel.models import RecognitionResult
from docintel.services.completion import CompletionClient
from docintel.utils.logger import get_logger
from docintel.utils.resilience import RetryPolicy, call_with_retry

logger = get_logger(__name__)

_PROMPT_TEMPLATE = """You are an expert OCR text correction system. I have {count} OCR results from the same document.
Please analyze them and provide the most accurate, corrected text.

OCR Results:
{candidates}

Please:
1. Identify and correct common OCR errors (like 'rn' -> 'm', '|' -> 'l', '0' -> 'O' in words, etc.)
2. Fix spacing and formatting issues
3. Combine the best parts from each result
4. Preserve the original language (English, French, Macedonian Cyrillic)
5. Maintain document structure (line breaks, paragraphs)
6. Handle special characters, accents and Cyrillic letters properly

Respond with JSON:
{{
  "correctedText": "the final corrected text",
  "corrections": ["list of specific corrections made"],
  "confidence": 0.95,
  "language": "detected primary language",
  "reasoning": "brief explanation of your correction strategy"
}}"""


@dataclass(frozen=True)
class CorrectionResult:
    """Outcome of the correction stage."""

    text: str
    confidence: float
    corrections: tuple[str, ...]
    language: str = "unknown"
    engine_id: str = "correction"
    fell_back: bool = False


def best_result(results: list[RecognitionResult]) -> RecognitionResult:
    """Return the highest-confidence result; the first one wins ties.

    Raises:
        NoUsableTextError: If ``results`` is empty.
    """
    if not results:
        raise NoUsableTextError("No recognition results to choose from")
    best = results[0]
    for candidate in results[1:]:
        if candidate.confidence > best.confidence:
            best = candidate
    return best


def build_correction_prompt(results: list[RecognitionResult]) -> str:
    candidates = "\n".join(
        f"\nResult {i} (confidence: {r.confidence:.2f}, engine: {r.engine_id}):\n{r.text}\n---"
        for i, r in enumerate(results, 1)
    )
    return _PROMPT_TEMPLATE.format(count=len(results), candidates=candidates)


class TextCorrector:
    """Merges several OCR candidates into one corrected text.

    Args:
        client: Completion capability used for the merge.
        policy: Timeout and retry budget for the completion call.
    """

    def __init__(self, client: CompletionClient, policy: RetryPolicy) -> None:
        self.client = client
        self.policy = policy

    async def correct(self, results: list[RecognitionResult]) -> CorrectionResult:
        """Reconcile ``results`` into a single corrected text.

        Args:
            results: Valid recognition results (at least one).

        Returns:
            The model's correction, or the best input result on failure.

        Raises:
            NoUsableTextError: If ``results`` is empty.
        """
        fallback = best_result(results)
        prompt = build_correction_prompt(results)

        try:
            data = await call_with_retry(
                lambda: self.client.complete_json(prompt, temperature=0.1),
                self.policy,
                label="OCR correction",
            )
            text = data.get("correctedText")
            if not isinstance(text, str) or not text.strip():
                raise DocIntelError("Correction reply has no correctedText")
            corrections = tuple(str(c) for c in data.get("corrections") or [])
            confidence = _clamp(data.get("confidence"), default=fallback.confidence)
        except Exception as exc:
            logger.warning("OCR correction failed, using best OCR result: %s", exc)
            return CorrectionResult(
                text=fallback.text,
                confidence=fallback.confidence,
                corrections=(),
                engine_id=fallback.engine_id,
                fell_back=True,
            )

        logger.info(
            "OCR correction applied %d correction(s), confidence %.2f",
            len(corrections),
            confidence,
        )
        return CorrectionResult(
            text=text,
            confidence=confidence,
            corrections=corrections,
            language=str(data.get("language") or "unknown"),
        )


def _clamp(value: object, default: float) -> float:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    return max(0.0, min(1.0, number))
