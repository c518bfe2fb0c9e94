"""Probabilistic classifiers producing the model vote.

Three interchangeable back-ends map a document onto the same category
set: a hosted zero-shot NLI model, the same kind of model run locally
through ``transformers``, and a generative completion model. Each raises
on failure; the arbiter treats a failed model vote as absent.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any

from docintel.exceptions import MalformedResponseError, ServiceError
from docintel.models import Category, ClassificationVote, VoteSource
from docintel.services.completion import CompletionClient
from docintel.services.inference import InferenceClient
from docintel.utils.logger import get_logger
from docintel.utils.resilience import RetryPolicy, call_with_retry

logger = get_logger(__name__)

# Descriptive hypotheses work better for NLI models than bare category names.
CANDIDATE_LABELS: dict[str, Category] = {
    "attestation certificate diploma": Category.CERTIFICATE,
    "financial document invoice receipt": Category.FINANCIAL,
    "insurance document invoice receipt": Category.INSURANCE,
    "legal contract agreement document": Category.LEGAL,
    "medical health report document": Category.MEDICAL,
    "educational course training document": Category.EDUCATION,
    "government official administrative document": Category.GOVERNMENT,
    "insurance policy document": Category.INSURANCE,
    "personal identity document": Category.PERSONAL,
}

COMPLETION_CATEGORIES: dict[str, Category] = {
    "attestation_certificate_diploma": Category.CERTIFICATE,
    "financial_document": Category.FINANCIAL,
    "government_document": Category.GOVERNMENT,
    "insurance_document": Category.INSURANCE,
    "identity_document": Category.PERSONAL,
    "legal_document": Category.LEGAL,
    "medical_document": Category.MEDICAL,
    "education_document": Category.EDUCATION,
    "other": Category.OTHER,
}


class ZeroShotClassifier(ABC):
    """Contract for model-based classifiers."""

    name: str = "model"

    @abstractmethod
    async def classify(self, text: str) -> ClassificationVote:
        """Return the model's vote for ``text``."""


def scores_to_vote(
    labels: list[str],
    scores: list[float],
    model: str,
    max_alternatives: int,
) -> ClassificationVote:
    """Convert ranked zero-shot labels into a vote.

    Scores of labels that map onto the same category are not summed; the
    best-ranked label of each category represents it.
    """
    if not labels or len(labels) != len(scores):
        raise MalformedResponseError("Zero-shot response has no ranked labels")

    ranked: list[tuple[Category, float]] = []
    seen: set[Category] = set()
    for label, score in sorted(zip(labels, scores, strict=True), key=lambda p: -p[1]):
        category = CANDIDATE_LABELS.get(label, Category.parse(label))
        if category in seen:
            continue
        seen.add(category)
        ranked.append((category, float(score)))

    top_category, top_score = ranked[0]
    return ClassificationVote(
        category=top_category,
        confidence=top_score,
        reasoning=f"Zero-shot model {model} ranked '{top_category.value}' first",
        source=VoteSource.MODEL,
        alternatives=tuple(ranked[1 : max_alternatives + 1]),
    )


def _parse_zero_shot_body(body: Any) -> tuple[list[str], list[float]]:
    """Accept both ``{labels, scores}`` and ``[{label, score}, ...]`` bodies."""
    if isinstance(body, list) and body and isinstance(body[0], dict) and "label" in body[0]:
        return [str(b["label"]) for b in body], [float(b["score"]) for b in body]
    if isinstance(body, list) and len(body) == 1 and isinstance(body[0], dict):
        body = body[0]
    if isinstance(body, dict) and "labels" in body and "scores" in body:
        return [str(x) for x in body["labels"]], [float(x) for x in body["scores"]]
    raise MalformedResponseError("Unrecognized zero-shot response body")


class InferenceZeroShotClassifier(ZeroShotClassifier):
    """Hosted zero-shot classifier with a model fallback chain.

    The first model is light and fast; later models are larger and get a
    longer slice of the text. The first model that answers wins.

    Args:
        client: Inference capability.
        models: Model identifiers tried in order.
        policy: Timeout and retry budget per model.
        max_chars: Characters of text sent to the first model.
        max_alternatives: Alternative categories kept on the vote.
    """

    name = "inference"

    def __init__(
        self,
        client: InferenceClient,
        models: list[str],
        policy: RetryPolicy,
        max_chars: int = 2000,
        max_alternatives: int = 3,
    ) -> None:
        self.client = client
        self.models = models
        self.policy = policy
        self.max_chars = max_chars
        self.max_alternatives = max_alternatives

    async def classify(self, text: str) -> ClassificationVote:
        last_error: Exception | None = None
        for index, model in enumerate(self.models):
            payload = {
                "inputs": text[: self.max_chars * (index + 1)],
                "parameters": {"candidate_labels": list(CANDIDATE_LABELS)},
            }
            try:
                body = await call_with_retry(
                    lambda: self.client.post(model, payload),
                    self.policy,
                    label=f"zero-shot {model}",
                )
                labels, scores = _parse_zero_shot_body(body)
                return scores_to_vote(labels, scores, model, self.max_alternatives)
            except ServiceError as exc:
                logger.warning("Zero-shot model %s failed: %s", model, exc)
                last_error = exc

        raise last_error or ServiceError("No zero-shot models configured")


class TransformersZeroShotClassifier(ZeroShotClassifier):
    """Zero-shot classifier running a ``transformers`` pipeline in-process.

    The pipeline is loaded on first use and shared afterwards.

    Args:
        model_name: Hugging Face model identifier.
        max_chars: Characters of text fed to the model.
        max_alternatives: Alternative categories kept on the vote.
        device: Torch device; auto-detected when ``None``.
    """

    name = "transformers"

    def __init__(
        self,
        model_name: str = "facebook/bart-large-mnli",
        max_chars: int = 2000,
        max_alternatives: int = 3,
        device: str | None = None,
    ) -> None:
        self.model_name = model_name
        self.max_chars = max_chars
        self.max_alternatives = max_alternatives
        self.device = device
        self._pipeline: Any = None

    def _get_pipeline(self) -> Any:
        if self._pipeline is None:
            import torch
            from transformers import pipeline

            device = self.device or ("cuda" if torch.cuda.is_available() else "cpu")
            logger.info("Loading zero-shot model %s on %s", self.model_name, device)
            self._pipeline = pipeline(
                "zero-shot-classification", model=self.model_name, device=device
            )
        return self._pipeline

    def _classify_sync(self, text: str) -> ClassificationVote:
        try:
            output = self._get_pipeline()(
                text[: self.max_chars], candidate_labels=list(CANDIDATE_LABELS)
            )
        except (OSError, RuntimeError, ValueError) as exc:
            raise ServiceError(f"Local zero-shot model failed: {exc}") from exc
        labels, scores = _parse_zero_shot_body(output)
        return scores_to_vote(labels, scores, self.model_name, self.max_alternatives)

    async def classify(self, text: str) -> ClassificationVote:
        return await asyncio.to_thread(self._classify_sync, text)


_COMPLETION_PROMPT = """You are an expert document classifier. Analyze this document text and classify it into one of these categories:

CATEGORIES:
- attestation_certificate_diploma: Educational certificates, diplomas, attestations, course completions
- financial_document: Invoices, receipts, financial statements, bills, banking documents
- government_document: Official government papers, administrative documents, permits
- insurance_document: Insurance policies, claims, coverage documents, insurance bills
- identity_document: Passports, IDs, licenses, personal identification documents
- legal_document: Contracts, agreements, court papers
- medical_document: Medical reports, prescriptions, hospital papers
- education_document: Course material, transcripts, training documents
- other: If none of the above categories fit well

DOCUMENT TEXT:
{text}

Consider keywords, document structure, official phrasing, and multilingual
content (English, French, Macedonian).

Respond with JSON:
{{
  "category": "primary_category",
  "confidence": 0.95,
  "reasoning": "why this classification was chosen",
  "alternativeCategories": [{{"category": "backup_option", "confidence": 0.2}}],
  "keyIndicators": ["words or phrases that led to this classification"]
}}"""


class CompletionClassifier(ZeroShotClassifier):
    """Classifier asking a generative model for a JSON verdict.

    Args:
        client: Completion capability.
        policy: Timeout and retry budget.
        max_chars: Characters of document text included in the prompt.
        max_alternatives: Alternative categories kept on the vote.
    """

    name = "completion"

    def __init__(
        self,
        client: CompletionClient,
        policy: RetryPolicy,
        max_chars: int = 2000,
        max_alternatives: int = 3,
    ) -> None:
        self.client = client
        self.policy = policy
        self.max_chars = max_chars
        self.max_alternatives = max_alternatives

    async def classify(self, text: str) -> ClassificationVote:
        snippet = text[: self.max_chars] + ("..." if len(text) > self.max_chars else "")
        prompt = _COMPLETION_PROMPT.format(text=snippet)
        data = await call_with_retry(
            lambda: self.client.complete_json(prompt, temperature=0.1),
            self.policy,
            label="completion classification",
        )

        category = self._map(data.get("category"))
        try:
            confidence = float(data.get("confidence", 0.0))
        except (TypeError, ValueError) as exc:
            raise MalformedResponseError("Classification confidence is not a number") from exc

        alternatives: list[tuple[Category, float]] = []
        for alt in data.get("alternativeCategories") or []:
            if isinstance(alt, dict) and alt.get("category"):
                alternatives.append(
                    (self._map(alt["category"]), float(alt.get("confidence", 0.0)))
                )

        indicators = ", ".join(str(i) for i in data.get("keyIndicators") or [])
        reasoning = str(data.get("reasoning") or "Completion model classification")
        if indicators:
            reasoning = f"{reasoning} (indicators: {indicators})"

        return ClassificationVote(
            category=category,
            confidence=max(0.0, min(1.0, confidence)),
            reasoning=reasoning,
            source=VoteSource.MODEL,
            alternatives=tuple(alternatives[: self.max_alternatives]),
        )

    @staticmethod
    def _map(label: object) -> Category:
        key = str(label or "").strip().lower()
        return COMPLETION_CATEGORIES.get(key, Category.parse(key))
