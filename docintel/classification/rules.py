"""Rule-based document classifier.

Rules are plain data, evaluated in order, and the first rule whose
conditions hold produces the vote. Order matters because vocabulary
overlaps across categories: the insurance and certificate rules must be
tried before the generic banking, education and government rules.
"""

from dataclasses import dataclass

from docintel.models import Category, ClassificationVote, VoteSource
from docintel.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CATEGORY = Category.PERSONAL
DEFAULT_SCORE = 0.4

_INSURANCE_TERMS = ("assurance", "insurance", "prime", "police")
_CERTIFICATE_TERMS = ("attestation", "certificat")
_EDUCATION_TERMS = ("université", "university", "универзитет", "школа", "formation")
_GOVERNMENT_TERMS = ("gouvernement", "government", "official", "municipal")


@dataclass(frozen=True)
class Rule:
    """One classification rule.

    The rule matches when every group in ``all_of`` has at least one term
    present and no term of ``none_of`` is present. Terms are matched as
    substrings of the lower-cased text.
    """

    name: str
    category: Category
    score: float
    all_of: tuple[tuple[str, ...], ...]
    none_of: tuple[str, ...] = ()

    def matches(self, lowered: str) -> bool:
        if any(term in lowered for term in self.none_of):
            return False
        return all(any(term in lowered for term in group) for group in self.all_of)


RULES: tuple[Rule, ...] = (
    Rule(
        "css-insurance",
        Category.INSURANCE,
        0.95,
        all_of=(("css",), _INSURANCE_TERMS),
    ),
    Rule(
        "macedonian-it-certificate",
        Category.CERTIFICATE,
        0.98,
        all_of=(("уверение",), ("информатика", "контролен испит", "универзитет")),
    ),
    Rule(
        "macedonian-certificate",
        Category.CERTIFICATE,
        0.95,
        all_of=(("уверение",),),
    ),
    Rule(
        "french-training-certificate",
        Category.CERTIFICATE,
        0.95,
        all_of=(_CERTIFICATE_TERMS, ("informatique", "formation", "université")),
    ),
    Rule(
        "french-certificate",
        Category.CERTIFICATE,
        0.9,
        all_of=(_CERTIFICATE_TERMS,),
    ),
    Rule(
        "banking",
        Category.FINANCIAL,
        0.95,
        all_of=(
            (
                "ubs",
                "banking",
                "account holder",
                "bank",
                "financial",
                "credit",
                "debit",
            ),
        ),
    ),
    Rule(
        "invoice",
        Category.FINANCIAL,
        0.9,
        all_of=(("facture", "invoice", "bill", "payment", "фактура"),),
    ),
    Rule(
        "education-certificate",
        Category.CERTIFICATE,
        0.95,
        all_of=(
            _EDUCATION_TERMS,
            ("attestation", "уверение", "certificate", "certificat"),
        ),
    ),
    Rule(
        "education",
        Category.EDUCATION,
        0.85,
        all_of=(_EDUCATION_TERMS,),
    ),
    Rule(
        "medical",
        Category.MEDICAL,
        0.9,
        all_of=(("médical", "medical", "hospital", "patient"),),
    ),
    Rule(
        "legal",
        Category.LEGAL,
        0.9,
        all_of=(("contrat", "contract", "agreement", "legal"),),
    ),
    Rule(
        "government",
        Category.GOVERNMENT,
        0.75,
        all_of=(_GOVERNMENT_TERMS,),
        none_of=("css", "assurance", "уверение", "attestation"),
    ),
    # Government vocabulary next to insurance or certificate words.
    Rule(
        "government-excluded",
        Category.PERSONAL,
        0.3,
        all_of=(_GOVERNMENT_TERMS,),
    ),
)


class RuleClassifier:
    """Deterministic keyword classifier producing the rule vote.

    Args:
        rules: Ordered rules; the first match wins.
    """

    def __init__(self, rules: tuple[Rule, ...] = RULES) -> None:
        self.rules = rules

    def match(self, text: str) -> Rule | None:
        """Return the first rule matching ``text``, if any."""
        lowered = text.lower()
        for rule in self.rules:
            if rule.matches(lowered):
                return rule
        return None

    def vote(self, text: str) -> ClassificationVote:
        """Classify ``text``.

        Returns:
            The first matching rule's vote, or ``(personal, 0.4)``.
        """
        rule = self.match(text)
        if rule is None:
            logger.debug("No classification rule matched")
            return ClassificationVote(
                category=DEFAULT_CATEGORY,
                confidence=DEFAULT_SCORE,
                reasoning="No classification rule matched; default category",
                source=VoteSource.RULE,
            )

        logger.info(
            "Rule '%s' classified document as %s (%.2f)",
            rule.name,
            rule.category.value,
            rule.score,
        )
        return ClassificationVote(
            category=rule.category,
            confidence=rule.score,
            reasoning=f"Rule '{rule.name}' matched",
            source=VoteSource.RULE,
        )
