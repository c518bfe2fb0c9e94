"""Shared value types produced and consumed by the pipeline stages.

Every type here is frozen: a stage builds a new object instead of
editing one it received, so a stage that fails simply produces nothing.
"""

from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class Category(StrEnum):
    """Closed set of document categories."""

    CERTIFICATE = "certificate"
    FINANCIAL = "financial"
    INSURANCE = "insurance"
    LEGAL = "legal"
    MEDICAL = "medical"
    EDUCATION = "education"
    GOVERNMENT = "government"
    PERSONAL = "personal"
    OTHER = "other"

    @classmethod
    def parse(cls, value: str | None) -> "Category":
        """Map a free-form label onto a category, defaulting to ``other``."""
        if not value:
            return cls.OTHER
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.OTHER


class EntityKind(StrEnum):
    """Kinds of entities the extractors emit."""

    PERSON = "PERSON"
    ORG = "ORG"
    LOCATION = "LOCATION"
    MONEY = "MONEY"
    DOCUMENT_NUMBER = "DOCUMENT_NUMBER"
    EMAIL = "EMAIL"
    PHONE = "PHONE"


class ProcessingMethod(StrEnum):
    """Which branch of the cascade produced a result."""

    CLOUD = "cloud"
    LOCAL = "local"
    EMERGENCY = "emergency"


class VoteSource(StrEnum):
    """Origin of a classification vote."""

    RULE = "rule"
    MODEL = "model"


@dataclass(frozen=True)
class RecognitionResult:
    """Output of one recognition engine call."""

    text: str
    confidence: float
    engine_id: str
    latency_ms: int = 0

    def is_valid(self, min_confidence: float = 0.1) -> bool:
        """Whether the result may take part in fusion."""
        return self.confidence > min_confidence and bool(self.text.strip())


@dataclass(frozen=True)
class FusedText:
    """The single text handed to the downstream stages."""

    text: str
    confidence: float
    source: str
    corrections: tuple[str, ...] = ()


@dataclass(frozen=True)
class ClassificationVote:
    """A single classifier's opinion about the document category."""

    category: Category
    confidence: float
    reasoning: str
    source: VoteSource
    alternatives: tuple[tuple[Category, float], ...] = ()


@dataclass(frozen=True)
class ClassificationResult:
    """The vote selected by the arbiter."""

    category: Category
    confidence: float
    reasoning: str
    source: VoteSource
    alternatives: tuple[tuple[Category, float], ...] = ()

    @classmethod
    def from_vote(
        cls,
        vote: ClassificationVote,
        alternatives: tuple[tuple[Category, float], ...] = (),
    ) -> "ClassificationResult":
        return cls(
            category=vote.category,
            confidence=vote.confidence,
            reasoning=vote.reasoning,
            source=vote.source,
            alternatives=alternatives,
        )


@dataclass(frozen=True)
class Entity:
    """A typed span of text found in the document."""

    text: str
    kind: EntityKind
    confidence: float


@dataclass(frozen=True)
class DateMention:
    """A date found in the document with its normalized form."""

    raw: str
    normalized: str
    confidence: float
    script_or_locale: str


@dataclass(frozen=True)
class ExtractionResult:
    """Entities and dates produced by one extractor."""

    entities: tuple[Entity, ...] = ()
    dates: tuple[DateMention, ...] = ()

    def of_kind(self, kind: EntityKind) -> list[Entity]:
        return [e for e in self.entities if e.kind == kind]


@dataclass(frozen=True)
class DocumentMetadata:
    """Derived filing metadata for a document."""

    tags: tuple[str, ...]
    suggested_name: str
    summary: str
    language: str
    language_confidence: float
    word_count: int
    quality_score: float
    notes: tuple[str, ...] = ()


@dataclass(frozen=True)
class ProcessingResult:
    """Aggregate root returned by ``process_document``."""

    corrected_text: str
    text_confidence: float
    classification: ClassificationResult
    entities: tuple[Entity, ...]
    dates: tuple[DateMention, ...]
    tags: tuple[str, ...]
    suggested_name: str
    summary: str
    language: str
    word_count: int
    quality_score: float
    processing_method: ProcessingMethod
    processing_notes: tuple[str, ...] = ()
    recognition: tuple[RecognitionResult, ...] = ()
    processing_time_ms: int = 0

    @property
    def category(self) -> Category:
        return self.classification.category

    def entities_of_kind(self, kind: EntityKind) -> list[Entity]:
        return [e for e in self.entities if e.kind == kind]

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable representation."""
        return {
            "corrected_text": self.corrected_text,
            "text_confidence": self.text_confidence,
            "category": self.classification.category.value,
            "classification_confidence": self.classification.confidence,
            "classification_reasoning": self.classification.reasoning,
            "classification_source": self.classification.source.value,
            "alternative_categories": [
                {"category": c.value, "confidence": s}
                for c, s in self.classification.alternatives
            ],
            "entities": [
                {"text": e.text, "kind": e.kind.value, "confidence": e.confidence}
                for e in self.entities
            ],
            "dates": [
                {
                    "raw": d.raw,
                    "normalized": d.normalized,
                    "confidence": d.confidence,
                    "script_or_locale": d.script_or_locale,
                }
                for d in self.dates
            ],
            "tags": list(self.tags),
            "suggested_name": self.suggested_name,
            "summary": self.summary,
            "language": self.language,
            "word_count": self.word_count,
            "quality_score": self.quality_score,
            "processing_method": self.processing_method.value,
            "processing_notes": list(self.processing_notes),
            "recognition": [
                {
                    "engine_id": r.engine_id,
                    "confidence": r.confidence,
                    "latency_ms": r.latency_ms,
                    "characters": len(r.text),
                }
                for r in self.recognition
            ],
            "processing_time_ms": self.processing_time_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProcessingResult":
        """Rebuild a result from :meth:`to_dict` output.

        Engine texts are not part of the serialized form, so
        ``recognition`` comes back empty.
        """
        classification = ClassificationResult(
            category=Category.parse(data.get("category")),
            confidence=float(data.get("classification_confidence", 0.0)),
            reasoning=data.get("classification_reasoning", ""),
            source=VoteSource(data.get("classification_source", "rule")),
            alternatives=tuple(
                (Category.parse(a.get("category")), float(a.get("confidence", 0.0)))
                for a in data.get("alternative_categories", [])
            ),
        )
        return cls(
            corrected_text=data.get("corrected_text", ""),
            text_confidence=float(data.get("text_confidence", 0.0)),
            classification=classification,
            entities=tuple(
                Entity(
                    text=e["text"],
                    kind=EntityKind(e["kind"]),
                    confidence=float(e.get("confidence", 0.0)),
                )
                for e in data.get("entities", [])
            ),
            dates=tuple(
                DateMention(
                    raw=d["raw"],
                    normalized=d["normalized"],
                    confidence=float(d.get("confidence", 0.0)),
                    script_or_locale=d.get("script_or_locale", "unknown"),
                )
                for d in data.get("dates", [])
            ),
            tags=tuple(data.get("tags", [])),
            suggested_name=data.get("suggested_name", ""),
            summary=data.get("summary", ""),
            language=data.get("language", "unknown"),
            word_count=int(data.get("word_count", 0)),
            quality_score=float(data.get("quality_score", 0.0)),
            processing_method=ProcessingMethod(data.get("processing_method", "local")),
            processing_notes=tuple(data.get("processing_notes", [])),
            processing_time_ms=int(data.get("processing_time_ms", 0)),
        )


@dataclass(frozen=True)
class QAAnswer:
    """Answer to a question about an already processed document."""

    answer: str
    confidence: float
    method: str
    sources: tuple[str, ...] = ()
