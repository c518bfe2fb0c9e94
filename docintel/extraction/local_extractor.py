"""Pattern-based entity extraction.

Deterministic regexes for the seven entity kinds. Every pattern carries a
fixed confidence so that the offline path is predictable and testable.
Entities are deduplicated within a kind by their literal text, keeping
the first occurrence; the same text may appear under several kinds.
"""

import re
from collections.abc import Iterable

from docintel.models import Entity, EntityKind
from docintel.utils.logger import get_logger

logger = get_logger(__name__)

_UPPER_ACCENTED = "ÁÉÍÓÚÀÈÌÒÙÂÊÎÔÛ"
_LOWER_ACCENTED = "áéíóúàèìòùâêîôû"
_UPPER = "A-Z" + _UPPER_ACCENTED
_LOWER = "a-z" + _LOWER_ACCENTED

# Pattern definitions: (kind, regex, confidence)
_PATTERNS: list[tuple[EntityKind, re.Pattern[str], float]] = [
    (
        EntityKind.EMAIL,
        re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"),
        0.95,
    ),
    (
        EntityKind.PHONE,
        re.compile(
            r"[+]?[0-9]{1,4}[-.\s]?(\([0-9]{1,3}\))?[0-9]{1,3}[-.\s]?"
            r"[0-9]{3,4}[-.\s]?[0-9]{3,4}"
        ),
        0.85,
    ),
    (
        EntityKind.MONEY,
        re.compile(
            r"[€$£¥₹]\s*[\d,]+\.?\d*|[\d,]+\.?\d*\s*[€$£¥₹]|CHF\s*[\d,]+\.?\d*"
        ),
        0.9,
    ),
    (
        EntityKind.DOCUMENT_NUMBER,
        re.compile(r"\b[A-Z]{2,}\d{4,}|\b\d{4,}[A-Z]{2,}|\b[A-Z]+[-_]\d+[-_][A-Z\d]+"),
        0.8,
    ),
    (
        EntityKind.PERSON,
        re.compile(rf"\b[{_UPPER}][{_LOWER}]+[ \t]+[{_UPPER}][{_LOWER}]+\b"),
        0.7,
    ),
    (
        EntityKind.ORG,
        re.compile(
            rf"\b[{_UPPER}][a-zA-Z{_UPPER_ACCENTED}{_LOWER_ACCENTED}\s]*\s*"
            r"(University|Université|Institut|Corporation|Corp|Inc|Ltd|LLC|SA|"
            r"GmbH|AG|SRL|SARL|CSS|UBS|Bank)\b"
        ),
        0.8,
    ),
    (
        EntityKind.LOCATION,
        re.compile(
            r"\b(Paris|London|Berlin|Madrid|Rome|Geneva|Zurich|Basel|Bern|Skopje|"
            r"Belgrade|Sofia|Moscow|New York|Toronto|Montreal)\b"
        ),
        0.85,
    ),
]

# Capitalized pairs naming institutions rather than people.
_PERSON_DENYLIST = re.compile(
    r"\b(University|Université|Institut|Department|Service|Document|Certificate)\b",
    re.IGNORECASE,
)


def dedupe_entities(entities: Iterable[Entity]) -> list[Entity]:
    """Drop repeated ``(kind, text)`` pairs, keeping the first occurrence."""
    seen: set[tuple[EntityKind, str]] = set()
    unique: list[Entity] = []
    for entity in entities:
        key = (entity.kind, entity.text)
        if key in seen:
            continue
        seen.add(key)
        unique.append(entity)
    return unique


class PatternEntityExtractor:
    """Extracts typed entities with fixed regexes.

    Args:
        kinds: Restrict extraction to these kinds; all kinds when ``None``.
    """

    def __init__(self, kinds: Iterable[EntityKind] | None = None) -> None:
        self.kinds = frozenset(kinds) if kinds is not None else frozenset(EntityKind)

    def extract_entities(self, text: str) -> list[Entity]:
        """Run every enabled pattern over ``text``.

        Args:
            text: Document text.

        Returns:
            Entities grouped by kind in pattern order, deduplicated within
            each kind.
        """
        found: list[Entity] = []
        for kind, pattern, confidence in _PATTERNS:
            if kind not in self.kinds:
                continue
            for match in pattern.finditer(text):
                value = match.group(0).strip()
                if not value:
                    continue
                if kind == EntityKind.PERSON and _PERSON_DENYLIST.search(value):
                    continue
                found.append(Entity(text=value, kind=kind, confidence=confidence))

        entities = dedupe_entities(found)
        logger.debug("Pattern extraction found %d entities", len(entities))
        return entities
