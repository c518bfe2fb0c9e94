"""Filing metadata: tags, suggested file name, summary and quality score.

The local generator derives everything from the category, the extracted
entities and keywords in the text. The completion generator asks a model
for the name, tags and summary and falls back to the local generator on
any failure.
"""

import json
import re

from docintel.models import (
    Category,
    ClassificationResult,
    DocumentMetadata,
    EntityKind,
    ExtractionResult,
)
from docintel.services.completion import CompletionClient
from docintel.utils.logger import get_logger
from docintel.utils.resilience import RetryPolicy, call_with_retry

from .language import detect_language

logger = get_logger(__name__)

MAX_NAME_LENGTH = 50
MAX_QUALITY_SCORE = 0.95

_CYRILLIC = re.compile(r"[Ѐ-ӿ]")
_FRENCH_ACCENTS = re.compile(r"[àâäéèêëïîôöùûüÿç]", re.IGNORECASE)
_UNSAFE_NAME_CHARS = re.compile(r"[^\w\-.]")

CATEGORY_NAMES: dict[Category, str] = {
    Category.CERTIFICATE: "Attestation",
    Category.FINANCIAL: "Financial_Document",
    Category.LEGAL: "Legal_Document",
    Category.MEDICAL: "Medical_Document",
    Category.EDUCATION: "Education_Certificate",
    Category.GOVERNMENT: "Government_Document",
    Category.INSURANCE: "Insurance_Document",
    Category.PERSONAL: "Personal_Document",
}

CATEGORY_SUMMARIES: dict[Category, str] = {
    Category.CERTIFICATE: "Educational or professional certificate document.",
    Category.FINANCIAL: "Financial document such as invoice, bill, or banking statement.",
    Category.INSURANCE: "Insurance policy, claim, or billing document.",
    Category.GOVERNMENT: "Official government or administrative document.",
}

# (all of these terms, tags added)
_KEYWORD_TAGS: tuple[tuple[tuple[str, ...], tuple[str, ...]], ...] = (
    (("уверение",), ("certificate", "attestation")),
    (("attestation",), ("certificate", "attestation")),
    (("информатика",), ("it", "computer-science")),
    (("informatique",), ("it", "computer-science")),
    (("универзитет",), ("university", "education")),
    (("université",), ("university", "education")),
    (("university",), ("university", "education")),
    (("css", "assurance"), ("css-insurance", "health-insurance")),
    (("insurance",), ("insurance",)),
    (("prime",), ("premium",)),
    (("premium",), ("premium",)),
    (("formation",), ("training", "professional-development")),
    (("training",), ("training", "professional-development")),
    (("diploma",), ("diploma",)),
    (("diplôme",), ("diploma",)),
    (("диплома",), ("diploma",)),
    (("invoice",), ("invoice",)),
    (("facture",), ("invoice",)),
    (("фактура",), ("invoice",)),
    (("passport",), ("passport",)),
    (("пасош",), ("passport",)),
    (("ubs",), ("ubs", "banking")),
    (("municipal",), ("municipal", "government")),
)


def word_count(text: str) -> int:
    return len(text.split())


def quality_score(text_confidence: float, classification_confidence: float) -> float:
    """Average of OCR and classification confidence, capped at 0.95."""
    return min((text_confidence + classification_confidence) / 2, MAX_QUALITY_SCORE)


def sanitize_name(name: str) -> str:
    """Make ``name`` safe to use as a file name."""
    cleaned = _UNSAFE_NAME_CHARS.sub("_", name)
    cleaned = re.sub(r"_+", "_", cleaned).strip("_")
    return cleaned[:MAX_NAME_LENGTH] or "Document"


def generate_tags(
    text: str, category: Category, extraction: ExtractionResult, max_tags: int = 8
) -> list[str]:
    """Build the tag list: category first, then script and keyword tags."""
    tags = [category.value]
    lowered = text.lower()

    if _CYRILLIC.search(text):
        tags.extend(("macedonian", "cyrillic"))
    if _FRENCH_ACCENTS.search(text):
        tags.extend(("french", "accented"))

    for terms, added in _KEYWORD_TAGS:
        if all(term in lowered for term in terms):
            tags.extend(added)

    if extraction.of_kind(EntityKind.PERSON):
        tags.append("person")
    if extraction.of_kind(EntityKind.ORG):
        tags.append("organization")

    return list(dict.fromkeys(tags))[:max_tags]


def suggest_name(text: str, category: Category, extraction: ExtractionResult) -> str:
    """Compose a file name from category, first person and first date.

    Insurance and certificate documents get dedicated prefixes (CSS
    insurance, Macedonian or French IT certificates); other categories use
    ``<Person>_<Category>_<Date>``.
    """
    people = extraction.of_kind(EntityKind.PERSON)
    person = people[0].text if people else ""
    date = extraction.dates[0].normalized if extraction.dates else ""
    lowered = text.lower()

    if category == Category.INSURANCE:
        prefix = "CSS_Insurance" if "css" in lowered else "Insurance_Document"
        parts = [prefix, person, date] if "css" in lowered else [prefix, date]
    elif category == Category.CERTIFICATE or "attestation" in lowered:
        if "уверение" in lowered and "информатика" in lowered:
            prefix = "Уверение_Информатика"
        elif "informatique" in lowered:
            prefix = "Attestation_Informatique"
        else:
            prefix = "Attestation"
        parts = [prefix, person, date]
    else:
        parts = [person, CATEGORY_NAMES.get(category, "Document"), date]

    return sanitize_name("_".join(p for p in parts if p))


def summarize(text: str, category: Category) -> str:
    """One-sentence summary from script, keywords and category."""
    lowered = text.lower()

    if _CYRILLIC.search(text):
        if "уверение" in lowered and "информатика" in lowered:
            return "Macedonian IT certificate or attestation document."
        if "универзитет" in lowered:
            return "Macedonian university document or certificate."
        return "Macedonian document in Cyrillic script."

    if "attestation" in lowered and "informatique" in lowered:
        return "French IT training attestation or certificate."
    if "université" in lowered and "formation" in lowered:
        return "French university training or continuing education document."
    if "css" in lowered and "assurance" in lowered:
        return "CSS health insurance document or bill."

    return CATEGORY_SUMMARIES.get(
        category, f"Document classified as {category.value} by local processing."
    )


class LocalMetadataGenerator:
    """Rule-based metadata generator.

    Args:
        max_tags: Upper bound on generated tags.
    """

    name = "local"

    def __init__(self, max_tags: int = 8) -> None:
        self.max_tags = max_tags

    def generate_sync(
        self,
        text: str,
        classification: ClassificationResult,
        extraction: ExtractionResult,
        text_confidence: float,
    ) -> DocumentMetadata:
        language = detect_language(text)
        return DocumentMetadata(
            tags=tuple(generate_tags(text, classification.category, extraction, self.max_tags)),
            suggested_name=suggest_name(text, classification.category, extraction),
            summary=summarize(text, classification.category),
            language=language.language,
            language_confidence=language.confidence,
            word_count=word_count(text),
            quality_score=quality_score(text_confidence, classification.confidence),
        )

    async def generate(
        self,
        text: str,
        classification: ClassificationResult,
        extraction: ExtractionResult,
        text_confidence: float,
    ) -> DocumentMetadata:
        return self.generate_sync(text, classification, extraction, text_confidence)


_COMPLETION_PROMPT = """Generate metadata for this document based on the text, classification, and extracted entities.

DOCUMENT TEXT SAMPLE:
{text}

CLASSIFICATION:
{classification}

EXTRACTED ENTITIES:
{entities}

Generate metadata including:
- Smart document name (format: Person_DocumentType_Category or Organization_DocumentType)
- Relevant tags based on content
- Brief summary (2-3 sentences)

Respond with JSON:
{{
  "suggestedName": "John_Doe_Diploma_Certificate",
  "tags": ["education", "certificate", "university", "diploma"],
  "summary": "Brief 2-3 sentence summary of the document content and purpose"
}}"""


class CompletionMetadataGenerator:
    """Metadata from a completion model with a rule-based fallback.

    Language, word count and quality score are always computed locally;
    the model supplies the name, tags and summary.

    Args:
        client: Completion capability.
        policy: Timeout and retry budget.
        fallback: Generator used when the model call fails.
        max_chars: Characters of document text included in the prompt.
    """

    name = "completion"

    def __init__(
        self,
        client: CompletionClient,
        policy: RetryPolicy,
        fallback: LocalMetadataGenerator | None = None,
        max_chars: int = 800,
    ) -> None:
        self.client = client
        self.policy = policy
        self.fallback = fallback or LocalMetadataGenerator()
        self.max_chars = max_chars

    def _prompt(
        self, text: str, classification: ClassificationResult, extraction: ExtractionResult
    ) -> str:
        snippet = text[: self.max_chars] + ("..." if len(text) > self.max_chars else "")
        entities: dict[str, list[str]] = {}
        for entity in extraction.entities:
            entities.setdefault(entity.kind.value, []).append(entity.text)
        if extraction.dates:
            entities["DATE"] = [d.normalized for d in extraction.dates]
        return _COMPLETION_PROMPT.format(
            text=snippet,
            classification=json.dumps(
                {
                    "category": classification.category.value,
                    "confidence": classification.confidence,
                    "reasoning": classification.reasoning,
                },
                ensure_ascii=False,
                indent=2,
            ),
            entities=json.dumps(entities, ensure_ascii=False, indent=2),
        )

    async def generate(
        self,
        text: str,
        classification: ClassificationResult,
        extraction: ExtractionResult,
        text_confidence: float,
    ) -> DocumentMetadata:
        local = self.fallback.generate_sync(text, classification, extraction, text_confidence)
        try:
            data = await call_with_retry(
                lambda: self.client.complete_json(
                    self._prompt(text, classification, extraction), temperature=0.2
                ),
                self.policy,
                label="completion metadata",
            )
            name = str(data.get("suggestedName") or "").strip()
            summary = str(data.get("summary") or "").strip()
            model_tags = [str(t).strip().lower() for t in data.get("tags") or [] if str(t).strip()]
        except Exception as exc:
            logger.warning("Metadata generation failed, using local rules: %s", exc)
            return DocumentMetadata(
                tags=local.tags,
                suggested_name=local.suggested_name,
                summary=local.summary,
                language=local.language,
                language_confidence=local.language_confidence,
                word_count=local.word_count,
                quality_score=local.quality_score,
                notes=("Metadata generation fell back to local rules",),
            )

        tags = list(dict.fromkeys([classification.category.value, *model_tags]))
        return DocumentMetadata(
            tags=tuple(tags[: self.fallback.max_tags]) if model_tags else local.tags,
            suggested_name=sanitize_name(name) if name else local.suggested_name,
            summary=summary or local.summary,
            language=local.language,
            language_confidence=local.language_confidence,
            word_count=local.word_count,
            quality_score=local.quality_score,
        )
