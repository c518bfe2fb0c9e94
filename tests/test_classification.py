"""Tests for rule classification, model classifiers and arbitration."""

import asyncio
import json
from collections.abc import Callable
from typing import Any
from unittest.mock import MagicMock, patch

import httpx
import pytest

from docintel.classification.arbiter import ClassificationArbiter, arbitrate
from docintel.classification.model_classifier import (
    CANDIDATE_LABELS,
    CompletionClassifier,
    InferenceZeroShotClassifier,
    TransformersZeroShotClassifier,
    ZeroShotClassifier,
    scores_to_vote,
)
from docintel.classification.rules import RuleClassifier
from docintel.exceptions import (
    MalformedResponseError,
    ServiceError,
    ServiceTimeoutError,
)
from docintel.models import Category, ClassificationVote, VoteSource
from docintel.services.inference import InferenceClient
from docintel.utils.config import InferenceConfig
from docintel.utils.resilience import RetryPolicy


def _vote(
    category: Category,
    confidence: float,
    source: VoteSource = VoteSource.RULE,
    alternatives: tuple[tuple[Category, float], ...] = (),
) -> ClassificationVote:
    return ClassificationVote(category, confidence, "test", source, alternatives)


class _StaticModel(ZeroShotClassifier):
    """Model classifier returning a fixed vote or raising a fixed error."""

    name = "static"

    def __init__(self, vote: ClassificationVote | None = None, error: Exception | None = None):
        self.vote = vote
        self.error = error
        self.calls = 0

    async def classify(self, text: str) -> ClassificationVote:
        self.calls += 1
        if self.error is not None:
            raise self.error
        assert self.vote is not None
        return self.vote


class TestRuleClassifier:
    """Tests for the ordered keyword rules."""

    def test_css_insurance(self, css_text: str) -> None:
        vote = RuleClassifier().vote(css_text)
        assert vote.category == Category.INSURANCE
        assert vote.confidence >= 0.95
        assert vote.source == VoteSource.RULE

    def test_macedonian_it_certificate(self, macedonian_text: str) -> None:
        vote = RuleClassifier().vote(macedonian_text)
        assert vote.category == Category.CERTIFICATE
        assert vote.confidence >= 0.95

    def test_uppercase_cyrillic_matches(self) -> None:
        vote = RuleClassifier().vote("УВЕРЕНИЕ ЗА ИНФОРМАТИКА")
        assert vote.category == Category.CERTIFICATE
        assert vote.confidence == 0.98

    def test_french_training_attestation(self, french_text: str) -> None:
        vote = RuleClassifier().vote(french_text)
        assert vote.category == Category.CERTIFICATE
        assert vote.confidence == 0.95

    def test_plain_attestation(self) -> None:
        vote = RuleClassifier().vote("Attestation de domicile")
        assert (vote.category, vote.confidence) == (Category.CERTIFICATE, 0.9)

    def test_insurance_checked_before_banking(self) -> None:
        vote = RuleClassifier().vote("CSS assurance: payment by bank transfer")
        assert vote.category == Category.INSURANCE

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("UBS account statement", Category.FINANCIAL),
            ("Facture numéro 42", Category.FINANCIAL),
            ("University course syllabus", Category.EDUCATION),
            ("University certificate of completion", Category.CERTIFICATE),
            ("Hospital discharge for patient", Category.MEDICAL),
            ("Rental contract between parties", Category.LEGAL),
            ("Municipal parking permit", Category.GOVERNMENT),
        ],
    )
    def test_category_rules(self, text: str, expected: Category) -> None:
        assert RuleClassifier().vote(text).category == expected

    def test_government_excluded_for_attestations(self) -> None:
        vote = RuleClassifier().vote("Official attestation")
        assert vote.category == Category.CERTIFICATE

    def test_excluded_government_scores_below_default(self) -> None:
        vote = RuleClassifier().vote("Official assurance notice")
        assert vote.category == Category.PERSONAL
        assert vote.confidence == 0.3
        assert vote.reasoning == "Rule 'government-excluded' matched"

    def test_no_match_defaults_to_personal(self) -> None:
        vote = RuleClassifier().vote("Shopping list: eggs, milk")
        assert vote.category == Category.PERSONAL
        assert vote.confidence == 0.4

    def test_match_returns_rule(self) -> None:
        rule = RuleClassifier().match("patient record")
        assert rule is not None
        assert rule.name == "medical"


class TestScoresToVote:
    """Tests for zero-shot score conversion."""

    def test_top_label_wins(self) -> None:
        vote = scores_to_vote(
            ["legal contract agreement document", "personal identity document"],
            [0.8, 0.2],
            "m",
            3,
        )
        assert vote.category == Category.LEGAL
        assert vote.confidence == 0.8
        assert vote.source == VoteSource.MODEL
        assert vote.alternatives == ((Category.PERSONAL, 0.2),)

    def test_duplicate_categories_keep_best_label(self) -> None:
        vote = scores_to_vote(
            [
                "insurance policy document",
                "insurance document invoice receipt",
                "financial document invoice receipt",
            ],
            [0.5, 0.3, 0.2],
            "m",
            3,
        )
        assert vote.category == Category.INSURANCE
        assert vote.alternatives == ((Category.FINANCIAL, 0.2),)

    def test_alternatives_bounded(self) -> None:
        labels = list(CANDIDATE_LABELS)
        scores = [1.0 - i * 0.1 for i in range(len(labels))]
        assert len(scores_to_vote(labels, scores, "m", 2).alternatives) == 2

    def test_empty_labels_raise(self) -> None:
        with pytest.raises(MalformedResponseError):
            scores_to_vote([], [], "m", 3)


class TestInferenceZeroShotClassifier:
    """Tests for the hosted zero-shot classifier."""

    def test_first_model_answers(self, fast_policy: RetryPolicy) -> None:
        payloads: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            payloads.append(json.loads(request.content))
            return httpx.Response(
                200,
                json={
                    "labels": ["medical health report document", "legal contract agreement document"],
                    "scores": [0.7, 0.3],
                },
            )

        client = InferenceClient(
            InferenceConfig(),
            api_token="hf-test",
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        classifier = InferenceZeroShotClassifier(client, ["fast", "large"], fast_policy, max_chars=10)
        vote = asyncio.run(classifier.classify("patient report " * 10))

        assert vote.category == Category.MEDICAL
        assert len(payloads) == 1
        assert len(payloads[0]["inputs"]) == 10
        assert payloads[0]["parameters"]["candidate_labels"] == list(CANDIDATE_LABELS)

    def test_falls_back_to_next_model(self, fast_policy: RetryPolicy) -> None:
        paths: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            if request.url.path.endswith("/fast"):
                return httpx.Response(400, json={"error": "unsupported"})
            return httpx.Response(
                200, json=[{"label": "personal identity document", "score": 0.66}]
            )

        client = InferenceClient(
            InferenceConfig(base_url="https://inference.example"),
            api_token="hf-test",
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        classifier = InferenceZeroShotClassifier(client, ["fast", "large"], fast_policy)
        vote = asyncio.run(classifier.classify("Passport"))

        assert vote.category == Category.PERSONAL
        assert paths == ["/fast", "/large"]

    def test_all_models_failing_raise(self, fast_policy: RetryPolicy) -> None:
        client = InferenceClient(
            InferenceConfig(),
            api_token="hf-test",
            client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(401))),
        )
        classifier = InferenceZeroShotClassifier(client, ["a", "b"], fast_policy)
        with pytest.raises(ServiceError):
            asyncio.run(classifier.classify("text"))


class TestTransformersZeroShotClassifier:
    """Tests for the in-process transformers classifier (mocked pipeline)."""

    def test_uses_local_pipeline(self) -> None:
        fake_pipeline = MagicMock(
            return_value={
                "labels": ["educational course training document", "attestation certificate diploma"],
                "scores": [0.55, 0.45],
            }
        )
        classifier = TransformersZeroShotClassifier(max_chars=5, device="cpu")
        with patch("transformers.pipeline", return_value=fake_pipeline) as factory:
            vote = asyncio.run(classifier.classify("Course outline"))
            asyncio.run(classifier.classify("Second call"))

        assert vote.category == Category.EDUCATION
        assert factory.call_count == 1
        assert fake_pipeline.call_args_list[0].args[0] == "Cours"

    def test_model_errors_become_service_errors(self) -> None:
        classifier = TransformersZeroShotClassifier(device="cpu")
        classifier._pipeline = MagicMock(side_effect=RuntimeError("CUDA out of memory"))
        with pytest.raises(ServiceError):
            asyncio.run(classifier.classify("text"))


class TestCompletionClassifier:
    """Tests for the generative classifier."""

    def test_parses_reply(
        self, completion_client: Callable[..., Any], fast_policy: RetryPolicy
    ) -> None:
        reply = json.dumps(
            {
                "category": "insurance_document",
                "confidence": 0.92,
                "reasoning": "Premium statement",
                "alternativeCategories": [
                    {"category": "financial_document", "confidence": 0.3},
                    {"category": "identity_document", "confidence": 0.1},
                ],
                "keyIndicators": ["prime", "CSS"],
            }
        )
        classifier = CompletionClassifier(completion_client([reply]), fast_policy, max_alternatives=1)
        vote = asyncio.run(classifier.classify("CSS prime"))

        assert vote.category == Category.INSURANCE
        assert vote.confidence == 0.92
        assert vote.source == VoteSource.MODEL
        assert vote.alternatives == ((Category.FINANCIAL, 0.3),)
        assert "prime, CSS" in vote.reasoning

    def test_unknown_category_maps_to_other(
        self, completion_client: Callable[..., Any], fast_policy: RetryPolicy
    ) -> None:
        reply = json.dumps({"category": "recipe", "confidence": 0.5})
        vote = asyncio.run(
            CompletionClassifier(completion_client([reply]), fast_policy).classify("text")
        )
        assert vote.category == Category.OTHER

    def test_bad_confidence_raises(
        self, completion_client: Callable[..., Any], fast_policy: RetryPolicy
    ) -> None:
        reply = json.dumps({"category": "legal_document", "confidence": "high"})
        with pytest.raises(MalformedResponseError):
            asyncio.run(
                CompletionClassifier(completion_client([reply]), fast_policy).classify("text")
            )


class TestArbitrate:
    """Tests for the arbitration rule."""

    @pytest.mark.parametrize(
        ("rule_score", "model_score", "winner"),
        [
            (0.9, 0.95, VoteSource.MODEL),
            (0.9, 0.5, VoteSource.RULE),
            (0.75, 0.75, VoteSource.RULE),
            (0.4, 0.41, VoteSource.MODEL),
        ],
    )
    def test_strictly_higher_wins(
        self, rule_score: float, model_score: float, winner: VoteSource
    ) -> None:
        rule = _vote(Category.FINANCIAL, rule_score)
        model = _vote(Category.LEGAL, model_score, VoteSource.MODEL)
        assert arbitrate(rule, model).source == winner

    def test_rule_alone_is_authoritative(self) -> None:
        result = arbitrate(_vote(Category.MEDICAL, 0.9), None)
        assert result.category == Category.MEDICAL
        assert result.alternatives == ()

    def test_alternatives_exclude_winner(self) -> None:
        rule = _vote(Category.FINANCIAL, 0.9)
        model = _vote(
            Category.INSURANCE,
            0.95,
            VoteSource.MODEL,
            ((Category.FINANCIAL, 0.4), (Category.INSURANCE, 0.3), (Category.LEGAL, 0.1)),
        )
        result = arbitrate(rule, model, max_alternatives=3)
        assert result.category == Category.INSURANCE
        assert result.alternatives == ((Category.FINANCIAL, 0.9), (Category.LEGAL, 0.1))

    def test_deterministic(self) -> None:
        rule = _vote(Category.GOVERNMENT, 0.75)
        model = _vote(Category.PERSONAL, 0.75, VoteSource.MODEL)
        assert arbitrate(rule, model) == arbitrate(rule, model)


class TestClassificationArbiter:
    """Tests for ClassificationArbiter."""

    def test_model_timeout_keeps_rule_category(self) -> None:
        model = _StaticModel(error=ServiceTimeoutError("zero-shot timed out"))
        arbiter = ClassificationArbiter(model=model)
        result = asyncio.run(arbiter.classify("Facture numéro 42"))

        assert result.category == Category.FINANCIAL
        assert result.confidence == 0.9
        assert result.source == VoteSource.RULE
        assert model.calls == 1

    def test_model_not_consulted_when_disabled(self) -> None:
        model = _StaticModel(_vote(Category.LEGAL, 0.99, VoteSource.MODEL))
        result = asyncio.run(
            ClassificationArbiter(model=model).classify("Shopping list", use_model=False)
        )
        assert result.category == Category.PERSONAL
        assert model.calls == 0

    def test_confident_model_overrides_default_rule(self) -> None:
        model = _StaticModel(_vote(Category.LEGAL, 0.8, VoteSource.MODEL))
        result = asyncio.run(ClassificationArbiter(model=model).classify("Shopping list"))
        assert result.category == Category.LEGAL
        assert result.alternatives == ((Category.PERSONAL, 0.4),)
