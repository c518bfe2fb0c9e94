"""Arbitration between the rule vote and the model vote."""

from docintel.models import Category, ClassificationResult, ClassificationVote
from docintel.utils.logger import get_logger

from .model_classifier import ZeroShotClassifier
from .rules import RuleClassifier

logger = get_logger(__name__)


def arbitrate(
    rule_vote: ClassificationVote,
    model_vote: ClassificationVote | None,
    max_alternatives: int = 3,
) -> ClassificationResult:
    """Select the winning vote.

    The vote with the strictly higher confidence wins outright, ties go to
    the rule vote, and without a model vote the rule vote is
    authoritative. When both votes exist the losing side and the model's
    own ranking are reported as alternatives.

    Args:
        rule_vote: Vote from the keyword rules.
        model_vote: Vote from the probabilistic classifier, if any.
        max_alternatives: Upper bound on reported alternatives.

    Returns:
        The selected classification.
    """
    if model_vote is None:
        return ClassificationResult.from_vote(rule_vote)

    winner = model_vote if model_vote.confidence > rule_vote.confidence else rule_vote
    loser = rule_vote if winner is model_vote else model_vote

    candidates: list[tuple[Category, float]] = [(loser.category, loser.confidence)]
    candidates.extend(model_vote.alternatives)

    alternatives: list[tuple[Category, float]] = []
    seen = {winner.category}
    for category, score in candidates:
        if category in seen:
            continue
        seen.add(category)
        alternatives.append((category, score))

    logger.info(
        "Arbitration: rule=%s(%.2f) model=%s(%.2f) -> %s",
        rule_vote.category.value,
        rule_vote.confidence,
        model_vote.category.value,
        model_vote.confidence,
        winner.source.value,
    )
    return ClassificationResult.from_vote(
        winner, alternatives=tuple(alternatives[:max_alternatives])
    )


class ClassificationArbiter:
    """Runs both classifiers and arbitrates between their votes.

    Args:
        rules: Rule classifier producing the rule vote.
        model: Model classifier; ``None`` disables the model vote.
        max_alternatives: Upper bound on reported alternatives.
    """

    def __init__(
        self,
        rules: RuleClassifier | None = None,
        model: ZeroShotClassifier | None = None,
        max_alternatives: int = 3,
    ) -> None:
        self.rules = rules or RuleClassifier()
        self.model = model
        self.max_alternatives = max_alternatives

    async def model_vote(self, text: str) -> ClassificationVote | None:
        """Ask the model classifier; any failure yields no vote."""
        if self.model is None:
            return None
        try:
            return await self.model.classify(text)
        except Exception as exc:
            logger.warning("Model classification (%s) failed: %s", self.model.name, exc)
            return None

    async def classify(self, text: str, use_model: bool = True) -> ClassificationResult:
        """Classify ``text``.

        Args:
            text: Fused document text.
            use_model: Whether to request a model vote (cloud path).
        """
        rule_vote = self.rules.vote(text)
        model_vote = await self.model_vote(text) if use_model else None
        return arbitrate(rule_vote, model_vote, self.max_alternatives)
