"""Question answering over an already processed document.

Answers come only from the stored :class:`ProcessingResult`; recognition
is never re-run. The local responder matches topic keywords in a fixed
priority order, the completion responder asks a generative model and
falls back to the local responder.
"""

import json
import re
from abc import ABC, abstractmethod
from collections.abc import Callable

from docintel.models import EntityKind, ProcessingResult, QAAnswer
from docintel.services.completion import CompletionClient
from docintel.utils.logger import get_logger
from docintel.utils.resilience import RetryPolicy, call_with_retry

logger = get_logger(__name__)

FALLBACK_CONFIDENCE = 0.6
ERROR_ANSWER = "I encountered an error while processing your question. Please try rephrasing it."


class QAResponder(ABC):
    """Contract for question answering back-ends."""

    @abstractmethod
    async def answer(self, question: str, context: ProcessingResult) -> QAAnswer:
        """Answer ``question`` about the processed document ``context``."""


def _answer_dates(context: ProcessingResult) -> QAAnswer | None:
    if not context.dates:
        return None
    found = [d.raw for d in context.dates]
    return QAAnswer(
        f"I found these dates in the document: {', '.join(found)}.", 0.85, "local", tuple(found)
    )


def _entity_answer(
    kind: EntityKind, label: str, confidence: float
) -> Callable[[ProcessingResult], QAAnswer | None]:
    def answer(context: ProcessingResult) -> QAAnswer | None:
        found = [e.text for e in context.entities_of_kind(kind)]
        if not found:
            return None
        return QAAnswer(
            f"I found these {label}: {', '.join(found)}.", confidence, "local", tuple(found)
        )

    return answer


def _answer_type(context: ProcessingResult) -> QAAnswer:
    text = f"This document is classified as: {context.category.value}. {context.summary}"
    return QAAnswer(text.strip(), 0.9, "local")


def _answer_language(context: ProcessingResult) -> QAAnswer:
    return QAAnswer(f"The document is in {context.language} language.", 0.9, "local")


# Checked in order; a topic without supporting data lets later topics answer.
TOPICS: tuple[tuple[re.Pattern[str], Callable[[ProcessingResult], QAAnswer | None]], ...] = (
    (re.compile(r"\b(dates?|when|quand)\b", re.IGNORECASE), _answer_dates),
    (
        re.compile(r"\b(names?|who|nom|qui)\b", re.IGNORECASE),
        _entity_answer(EntityKind.PERSON, "names", 0.8),
    ),
    (
        re.compile(r"\b(organi[sz]ations?|company|companies|university|université)\b", re.IGNORECASE),
        _entity_answer(EntityKind.ORG, "organizations", 0.8),
    ),
    (
        re.compile(r"\b(amounts?|money|cost|price)\b", re.IGNORECASE),
        _entity_answer(EntityKind.MONEY, "amounts", 0.85),
    ),
    (
        re.compile(r"\b(type|category|kind)\b|\bwhat is (this|it)\b", re.IGNORECASE),
        _answer_type,
    ),
    (re.compile(r"\b(language|langue)\b", re.IGNORECASE), _answer_language),
)


class LocalQAResponder(QAResponder):
    """Keyword-driven answers from extracted entities and metadata."""

    def answer_sync(self, question: str, context: ProcessingResult) -> QAAnswer:
        for pattern, responder in TOPICS:
            if not pattern.search(question):
                continue
            answer = responder(context)
            if answer is not None:
                return answer

        summary = context.summary or "It contains information extracted during processing."
        return QAAnswer(
            f"This is a {context.category.value} document. {summary} You can ask me about "
            "specific details like dates, names, organizations, or amounts.",
            FALLBACK_CONFIDENCE,
            "local",
        )

    async def answer(self, question: str, context: ProcessingResult) -> QAAnswer:
        return self.answer_sync(question, context)


_COMPLETION_PROMPT = """You are an intelligent document assistant. Answer questions about this document accurately and helpfully.

DOCUMENT CONTENT:
{text}

DOCUMENT METADATA:
- Type: {category}
- Language: {language}
- Key Entities: {entities}

USER QUESTION: {question}

Guidelines:
- Answer based only on the document content
- Be precise and cite specific information when possible
- If information isn't in the document, say so clearly
- Handle multilingual queries (English, French, Macedonian)
- Keep answers concise but complete

Answer the question naturally and conversationally:"""


def relevance(question: str, text: str) -> float:
    """Share of the question's words (longer than two letters) found in ``text``."""
    words = [w for w in question.lower().split() if len(w) > 2]
    if not words:
        return 0.5
    lowered = text.lower()
    return min(sum(1 for w in words if w in lowered) / len(words), 1.0)


class CompletionQAResponder(QAResponder):
    """Answers with a completion model, falling back to local matching.

    Args:
        client: Completion capability.
        policy: Timeout and retry budget.
        fallback: Responder used when the model call fails.
        max_chars: Characters of document text included in the prompt.
    """

    def __init__(
        self,
        client: CompletionClient,
        policy: RetryPolicy,
        fallback: LocalQAResponder | None = None,
        max_chars: int = 2000,
    ) -> None:
        self.client = client
        self.policy = policy
        self.fallback = fallback or LocalQAResponder()
        self.max_chars = max_chars

    async def answer(self, question: str, context: ProcessingResult) -> QAAnswer:
        text = context.corrected_text
        entities: dict[str, list[str]] = {}
        for entity in context.entities:
            entities.setdefault(entity.kind.value, []).append(entity.text)
        prompt = _COMPLETION_PROMPT.format(
            text=text[: self.max_chars] + ("..." if len(text) > self.max_chars else ""),
            category=context.category.value,
            language=context.language,
            entities=json.dumps(entities, ensure_ascii=False),
            question=question,
        )
        try:
            reply = await call_with_retry(
                lambda: self.client.complete(prompt, temperature=0.3, max_tokens=1000),
                self.policy,
                label="completion Q&A",
            )
        except Exception as exc:
            logger.warning("Completion Q&A failed, answering locally: %s", exc)
            return self.fallback.answer_sync(question, context)

        if not reply.strip():
            return self.fallback.answer_sync(question, context)
        return QAAnswer(reply.strip(), relevance(question, text), "completion")


async def answer_question(
    question: str,
    context: ProcessingResult,
    responder: QAResponder | None = None,
) -> QAAnswer:
    """Answer a question about a processed document; never raises.

    Args:
        question: Free-text question.
        context: Result of an earlier ``process_document`` call.
        responder: Back-end to use; local matching when ``None``.

    Returns:
        The answer, or a zero-confidence apology if answering failed.
    """
    try:
        return await (responder or LocalQAResponder()).answer(question, context)
    except Exception:
        logger.exception("Question answering failed")
        return QAAnswer(ERROR_ANSWER, 0.0, "fallback")
