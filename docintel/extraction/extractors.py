"""Entity and date extractors sharing one output contract.

The local extractor is pure regex work and never fails. The two remote
extractors raise on failure so that the pipeline can fall back to the
local one and record the fallback.
"""

from abc import ABC, abstractmethod
from typing import Any

from docintel.exceptions import MalformedResponseError
from docintel.models import DateMention, Entity, EntityKind, ExtractionResult
from docintel.services.completion import CompletionClient
from docintel.services.inference import InferenceClient
from docintel.utils.logger import get_logger
from docintel.utils.resilience import RetryPolicy, call_with_retry

from .dates import DateExtractor, normalize_date
from .local_extractor import PatternEntityExtractor, dedupe_entities

logger = get_logger(__name__)

# Kinds a general-purpose NER model does not produce.
PATTERN_ONLY_KINDS = (
    EntityKind.MONEY,
    EntityKind.DOCUMENT_NUMBER,
    EntityKind.EMAIL,
    EntityKind.PHONE,
)

_NER_LABELS: dict[str, EntityKind] = {
    "PER": EntityKind.PERSON,
    "PERSON": EntityKind.PERSON,
    "ORG": EntityKind.ORG,
    "ORGANIZATION": EntityKind.ORG,
    "LOC": EntityKind.LOCATION,
    "LOCATION": EntityKind.LOCATION,
    "MONEY": EntityKind.MONEY,
    "DOCUMENT_NUMBER": EntityKind.DOCUMENT_NUMBER,
    "EMAIL": EntityKind.EMAIL,
    "PHONE": EntityKind.PHONE,
}


def entity_kind_for(label: str) -> EntityKind | None:
    """Map a service label (``B-PER``, ``ORGANIZATION`` ...) onto a kind."""
    key = label.upper()
    if key[:2] in ("B-", "I-"):
        key = key[2:]
    return _NER_LABELS.get(key)


class EntityExtractor(ABC):
    """Contract shared by every extractor."""

    name: str = "extractor"

    @abstractmethod
    async def extract(self, text: str) -> ExtractionResult:
        """Return the entities and dates found in ``text``."""


class LocalEntityExtractor(EntityExtractor):
    """Regex entity extraction plus local date extraction.

    Args:
        max_dates: Upper bound on returned date mentions.
    """

    name = "local"

    def __init__(self, max_dates: int = 5) -> None:
        self.patterns = PatternEntityExtractor()
        self.dates = DateExtractor(max_dates)

    def extract_sync(self, text: str) -> ExtractionResult:
        return ExtractionResult(
            entities=tuple(self.patterns.extract_entities(text)),
            dates=tuple(self.dates.extract(text)),
        )

    async def extract(self, text: str) -> ExtractionResult:
        return self.extract_sync(text)


_COMPLETION_PROMPT = """Extract key entities from this document. Focus on:

ENTITIES TO EXTRACT:
- PERSON: Names of individuals (first name, last name, full names)
- ORGANIZATION: Companies, institutions, government bodies, universities
- DATE: All dates (normalize to ISO format YYYY-MM-DD when possible)
- LOCATION: Cities, countries, addresses, postal codes
- MONEY: Amounts, currencies (€, $, £, etc.)
- DOCUMENT_NUMBER: ID numbers, reference numbers, policy numbers, invoice numbers
- EMAIL: Email addresses
- PHONE: Phone numbers (international format when possible)

DOCUMENT TEXT:
{text}

For dates, handle multiple formats:
- DD.MM.YYYY, DD/MM/YYYY (European format)
- French months: janvier, février, mars, avril, mai, juin, juillet, août, septembre, octobre, novembre, décembre
- Macedonian Cyrillic dates and months
- Written dates: "15th of March 2024", "March 15, 2024"

Respond with JSON:
{{
  "entities": {{
    "PERSON": [{{"text": "John Doe", "confidence": 0.9}}],
    "ORGANIZATION": [{{"text": "ABC Corp", "confidence": 0.85}}],
    "DATE": [{{"text": "2024-03-15", "original": "15.03.2024", "confidence": 0.95}}],
    "LOCATION": [{{"text": "Paris, France", "confidence": 0.9}}],
    "MONEY": [{{"text": "€1,250.00", "confidence": 0.88}}],
    "DOCUMENT_NUMBER": [{{"text": "INV-2024-001", "confidence": 0.92}}],
    "EMAIL": [{{"text": "user@example.com", "confidence": 1.0}}],
    "PHONE": [{{"text": "+33 1 23 45 67 89", "confidence": 0.85}}]
  }}
}}"""


class CompletionEntityExtractor(EntityExtractor):
    """Entity extraction by a generative completion model.

    Args:
        client: Completion capability.
        policy: Timeout and retry budget.
        max_chars: Characters of document text included in the prompt.
        max_dates: Upper bound on returned date mentions.
    """

    name = "completion"

    def __init__(
        self,
        client: CompletionClient,
        policy: RetryPolicy,
        max_chars: int = 1500,
        max_dates: int = 5,
    ) -> None:
        self.client = client
        self.policy = policy
        self.max_chars = max_chars
        self.max_dates = max_dates

    async def extract(self, text: str) -> ExtractionResult:
        snippet = text[: self.max_chars] + ("..." if len(text) > self.max_chars else "")
        data = await call_with_retry(
            lambda: self.client.complete_json(
                _COMPLETION_PROMPT.format(text=snippet), temperature=0.1
            ),
            self.policy,
            label="completion entity extraction",
        )
        groups = data.get("entities")
        if not isinstance(groups, dict):
            raise MalformedResponseError("Extraction reply has no 'entities' object")

        entities: list[Entity] = []
        dates: list[DateMention] = []
        for label, items in groups.items():
            for item in _as_items(items):
                if label.upper() == "DATE":
                    raw = str(item.get("original") or item["text"])
                    dates.append(
                        DateMention(
                            raw=raw,
                            normalized=normalize_date(str(item["text"])),
                            confidence=_score(item, 0.8),
                            script_or_locale="model",
                        )
                    )
                    continue
                kind = entity_kind_for(label)
                if kind is None:
                    continue
                entities.append(
                    Entity(text=str(item["text"]).strip(), kind=kind, confidence=_score(item, 0.8))
                )

        unique_dates: list[DateMention] = []
        for mention in dates:
            if all(mention.raw != kept.raw for kept in unique_dates):
                unique_dates.append(mention)

        logger.info(
            "Completion extraction found %d entities and %d dates",
            len(entities),
            len(unique_dates),
        )
        return ExtractionResult(
            entities=tuple(dedupe_entities(entities)),
            dates=tuple(unique_dates[: self.max_dates]),
        )


class InferenceEntityExtractor(EntityExtractor):
    """NER model for people, organizations and places, patterns for the rest.

    The hosted model only knows ``PER``/``ORG``/``LOC``; money, document
    numbers, e-mails, phones and dates come from the local patterns.

    Args:
        client: Inference capability.
        model: NER model identifier.
        policy: Timeout and retry budget.
        max_chars: Characters of text sent to the model.
        max_dates: Upper bound on returned date mentions.
    """

    name = "inference"

    def __init__(
        self,
        client: InferenceClient,
        model: str,
        policy: RetryPolicy,
        max_chars: int = 2000,
        max_dates: int = 5,
    ) -> None:
        self.client = client
        self.model = model
        self.policy = policy
        self.max_chars = max_chars
        self.patterns = PatternEntityExtractor(kinds=PATTERN_ONLY_KINDS)
        self.dates = DateExtractor(max_dates)

    async def extract(self, text: str) -> ExtractionResult:
        payload = {
            "inputs": text[: self.max_chars],
            "parameters": {"aggregation_strategy": "simple"},
        }
        body = await call_with_retry(
            lambda: self.client.post(self.model, payload),
            self.policy,
            label=f"NER {self.model}",
        )
        if not isinstance(body, list):
            raise MalformedResponseError("NER response is not a list")

        entities: list[Entity] = []
        for item in body:
            if not isinstance(item, dict):
                continue
            kind = entity_kind_for(str(item.get("entity_group") or item.get("entity") or ""))
            word = str(item.get("word") or "").strip()
            if kind is None or not word or word.startswith("##"):
                continue
            entities.append(Entity(text=word, kind=kind, confidence=_score(item, 0.5, "score")))

        entities.extend(self.patterns.extract_entities(text))
        logger.info("NER extraction found %d entities", len(entities))
        return ExtractionResult(
            entities=tuple(dedupe_entities(entities)),
            dates=tuple(self.dates.extract(text)),
        )


def _as_items(items: Any) -> list[dict[str, Any]]:
    if not isinstance(items, list):
        return []
    return [i for i in items if isinstance(i, dict) and i.get("text")]


def _score(item: dict[str, Any], default: float, key: str = "confidence") -> float:
    try:
        return max(0.0, min(1.0, float(item.get(key, default))))
    except (TypeError, ValueError):
        return default
