"""End-to-end document processing with graceful degradation.

Each invocation walks an explicit state machine::

    START -> OCR -> CLOUD_PATH | LOCAL_PATH -> ASSEMBLED
                    CLOUD_PATH -> LOCAL_PATH
    any state -> EMERGENCY

The cloud path uses the completion and inference capabilities; each of
its stages has its own deterministic fallback. If the cloud path fails as
a whole the local path runs instead, and anything that still escapes
turns into the emergency result. :meth:`DocumentPipeline.process_document`
therefore always returns a :class:`ProcessingResult`.
"""

import asyncio
import time
from dataclasses import replace
from enum import StrEnum

from docintel.classification.arbiter import ClassificationArbiter
from docintel.classification.model_classifier import (
    CompletionClassifier,
    InferenceZeroShotClassifier,
    TransformersZeroShotClassifier,
    ZeroShotClassifier,
)
from docintel.correction.corrector import CorrectionResult, TextCorrector, best_result
from docintel.exceptions import DocIntelError
from docintel.extraction.extractors import (
    CompletionEntityExtractor,
    EntityExtractor,
    InferenceEntityExtractor,
    LocalEntityExtractor,
)
from docintel.metadata.generator import CompletionMetadataGenerator, LocalMetadataGenerator
from docintel.models import (
    Category,
    ClassificationResult,
    FusedText,
    ProcessingMethod,
    ProcessingResult,
    QAAnswer,
    RecognitionResult,
    VoteSource,
)
from docintel.ocr.base import RecognitionEngine
from docintel.ocr.orchestrator import EngineOrchestrator
from docintel.ocr.pdf_handler import DocumentType
from docintel.ocr.tesseract_engine import TesseractEngine
from docintel.ocr.vision_engine import VisionOCREngine
from docintel.qa.responder import (
    CompletionQAResponder,
    LocalQAResponder,
    QAResponder,
    answer_question,
)
from docintel.services.completion import OpenAICompletionClient
from docintel.services.inference import InferenceClient
from docintel.utils.config import AppConfig
from docintel.utils.logger import get_logger
from docintel.utils.resilience import RetryPolicy

logger = get_logger(__name__)


class PipelineState(StrEnum):
    """States of a single ``process_document`` invocation."""

    START = "start"
    OCR = "ocr"
    CLOUD_PATH = "cloud_path"
    LOCAL_PATH = "local_path"
    ASSEMBLED = "assembled"
    EMERGENCY = "emergency"


TRANSITIONS: dict[PipelineState, frozenset[PipelineState]] = {
    PipelineState.START: frozenset({PipelineState.OCR}),
    PipelineState.OCR: frozenset(
        {PipelineState.CLOUD_PATH, PipelineState.LOCAL_PATH, PipelineState.ASSEMBLED}
    ),
    PipelineState.CLOUD_PATH: frozenset({PipelineState.LOCAL_PATH, PipelineState.ASSEMBLED}),
    PipelineState.LOCAL_PATH: frozenset({PipelineState.ASSEMBLED}),
    PipelineState.ASSEMBLED: frozenset(),
    PipelineState.EMERGENCY: frozenset(),
}


class InvalidTransitionError(DocIntelError):
    """Raised when the pipeline attempts an undeclared state change."""


def advance(current: PipelineState, target: PipelineState) -> PipelineState:
    """Move from ``current`` to ``target``; ``EMERGENCY`` is always allowed.

    Raises:
        InvalidTransitionError: If the edge is not declared.
    """
    if target != PipelineState.EMERGENCY and target not in TRANSITIONS[current]:
        raise InvalidTransitionError(f"Cannot move from {current} to {target}")
    logger.debug("Pipeline state %s -> %s", current.value, target.value)
    return target


def no_text_result(
    recognition: list[RecognitionResult], elapsed_ms: int = 0
) -> ProcessingResult:
    """Result for a document no engine could read."""
    return ProcessingResult(
        corrected_text="",
        text_confidence=0.0,
        classification=ClassificationResult(
            category=Category.OTHER,
            confidence=0.0,
            reasoning="No usable text was recognized",
            source=VoteSource.RULE,
        ),
        entities=(),
        dates=(),
        tags=(Category.OTHER.value,),
        suggested_name="Document",
        summary="No usable text could be recognized in the document.",
        language="unknown",
        word_count=0,
        quality_score=0.0,
        processing_method=ProcessingMethod.LOCAL,
        processing_notes=("No usable text recognized by any OCR engine",),
        recognition=tuple(recognition),
        processing_time_ms=elapsed_ms,
    )


def emergency_result(error: BaseException, elapsed_ms: int = 0) -> ProcessingResult:
    """The fixed degraded result returned when processing fails unexpectedly."""
    return ProcessingResult(
        corrected_text="",
        text_confidence=0.0,
        classification=ClassificationResult(
            category=Category.OTHER,
            confidence=0.0,
            reasoning="Emergency fallback after processing failure",
            source=VoteSource.RULE,
        ),
        entities=(),
        dates=(),
        tags=("error",),
        suggested_name="Document",
        summary="Document processing failed.",
        language="unknown",
        word_count=0,
        quality_score=0.0,
        processing_method=ProcessingMethod.EMERGENCY,
        processing_notes=(f"Processing failed: {error}",),
        processing_time_ms=elapsed_ms,
    )


class DocumentPipeline:
    """Orchestrates recognition, correction, classification, extraction and metadata.

    All collaborators are injected; :func:`build_pipeline` wires them from
    configuration. The pipeline holds no per-document state, so concurrent
    invocations are independent.

    Args:
        orchestrator: OCR fan-out.
        arbiter: Classification arbiter; its model classifier, if any, is
            only consulted on the cloud path.
        corrector: Text correction stage (cloud path).
        extractor: Remote entity extractor (cloud path).
        metadata: Remote metadata generator (cloud path).
        qa: Question answering back-end.
        mode: ``auto`` picks the cloud path when a cloud capability is
            configured, ``local`` always runs the local path, ``cloud``
            prefers the cloud path and warns when none is configured.
        max_dates: Upper bound on date mentions.
        max_tags: Upper bound on tags.
        batch_concurrency: Documents processed at once by ``process_batch``.
        clients: Network clients closed by :meth:`aclose`.
    """

    def __init__(
        self,
        orchestrator: EngineOrchestrator,
        arbiter: ClassificationArbiter | None = None,
        corrector: TextCorrector | None = None,
        extractor: EntityExtractor | None = None,
        metadata: CompletionMetadataGenerator | None = None,
        qa: QAResponder | None = None,
        mode: str = "auto",
        max_dates: int = 5,
        max_tags: int = 8,
        batch_concurrency: int = 4,
        clients: tuple[OpenAICompletionClient | InferenceClient, ...] = (),
    ) -> None:
        self.orchestrator = orchestrator
        self.arbiter = arbiter or ClassificationArbiter()
        self.corrector = corrector
        self.extractor = extractor
        self.metadata = metadata
        self.qa = qa or LocalQAResponder()
        self.mode = mode
        self.local_extractor = LocalEntityExtractor(max_dates)
        self.local_metadata = LocalMetadataGenerator(max_tags)
        self.batch_concurrency = max(1, batch_concurrency)
        self.clients = clients

        if mode == "cloud" and not self.cloud_configured:
            logger.warning("Cloud mode requested but no cloud capability is configured")

    @property
    def cloud_configured(self) -> bool:
        return any(
            stage is not None
            for stage in (self.corrector, self.arbiter.model, self.extractor, self.metadata)
        )

    @property
    def use_cloud(self) -> bool:
        return self.mode != "local" and self.cloud_configured

    async def process_document(
        self, source: str | bytes, doc_type: DocumentType = "auto"
    ) -> ProcessingResult:
        """Process one document into a structured result; never raises.

        Args:
            source: Document URL or raw bytes.
            doc_type: ``pdf``, ``image`` or ``auto``.

        Returns:
            The assembled result, a "no usable text" result, or the
            emergency result.
        """
        start = time.monotonic()
        state = PipelineState.START
        try:
            state = advance(state, PipelineState.OCR)
            recognition = await self.orchestrator.extract_text(source, doc_type)

            if not recognition:
                state = advance(state, PipelineState.ASSEMBLED)
                logger.warning("No usable text recognized; returning empty result")
                return no_text_result(recognition, _elapsed_ms(start))

            result: ProcessingResult | None = None
            cloud_error = ""
            if self.use_cloud:
                state = advance(state, PipelineState.CLOUD_PATH)
                try:
                    result = await self._cloud_path(recognition)
                except Exception as exc:
                    logger.exception("Cloud path failed; switching to local path")
                    cloud_error = f"Cloud processing failed ({exc}); used local path"

            if result is None:
                state = advance(state, PipelineState.LOCAL_PATH)
                result = await self._local_path(recognition)
                if cloud_error:
                    result = replace(
                        result, processing_notes=(cloud_error, *result.processing_notes)
                    )

            state = advance(state, PipelineState.ASSEMBLED)
            result = replace(result, processing_time_ms=_elapsed_ms(start))
            logger.info(
                "Processed document: category=%s method=%s quality=%.2f in %dms",
                result.category.value,
                result.processing_method.value,
                result.quality_score,
                result.processing_time_ms,
            )
            return result
        except Exception as exc:
            logger.exception("Processing failed in state %s; returning emergency result", state)
            advance(state, PipelineState.EMERGENCY)
            return emergency_result(exc, _elapsed_ms(start))

    async def process_batch(
        self, sources: list[str | bytes], doc_type: DocumentType = "auto"
    ) -> list[ProcessingResult]:
        """Process several documents concurrently with isolated state.

        Returns:
            One result per source, in input order.
        """
        semaphore = asyncio.Semaphore(self.batch_concurrency)

        async def run(source: str | bytes) -> ProcessingResult:
            async with semaphore:
                return await self.process_document(source, doc_type)

        return list(await asyncio.gather(*(run(s) for s in sources)))

    async def answer_question(self, question: str, context: ProcessingResult) -> QAAnswer:
        """Answer a question about an earlier result; never raises."""
        return await answer_question(question, context, self.qa)

    async def aclose(self) -> None:
        await self.orchestrator.aclose()
        for client in self.clients:
            await client.aclose()

    async def _cloud_path(self, recognition: list[RecognitionResult]) -> ProcessingResult:
        notes: list[str] = []

        if self.corrector is not None:
            correction = await self.corrector.correct(recognition)
            if correction.fell_back:
                notes.append("Text correction unavailable; used best OCR result verbatim")
            else:
                notes.append(f"Text corrected ({len(correction.corrections)} corrections)")
        else:
            best = best_result(recognition)
            correction = CorrectionResult(
                text=best.text,
                confidence=best.confidence,
                corrections=(),
                engine_id=best.engine_id,
                fell_back=True,
            )
            notes.append("Text correction not configured; used best OCR result")

        fused = FusedText(
            text=correction.text,
            confidence=correction.confidence,
            source=correction.engine_id,
            corrections=correction.corrections,
        )

        classification = await self.arbiter.classify(fused.text, use_model=True)
        notes.append(_classification_note(classification))

        extraction = None
        if self.extractor is not None:
            try:
                extraction = await self.extractor.extract(fused.text)
                notes.append(f"Entities extracted by {self.extractor.name} service")
            except Exception as exc:
                logger.warning("Entity extraction failed, using local patterns: %s", exc)
                notes.append("Entity extraction fell back to local patterns")
        local_extraction = self.local_extractor.extract_sync(fused.text)
        if extraction is None:
            extraction = local_extraction
        elif not extraction.dates:
            extraction = replace(extraction, dates=local_extraction.dates)

        if self.metadata is not None:
            metadata = await self.metadata.generate(
                fused.text, classification, extraction, fused.confidence
            )
        else:
            metadata = self.local_metadata.generate_sync(
                fused.text, classification, extraction, fused.confidence
            )
        notes.extend(metadata.notes)

        return ProcessingResult(
            corrected_text=fused.text,
            text_confidence=fused.confidence,
            classification=classification,
            entities=extraction.entities,
            dates=extraction.dates,
            tags=metadata.tags,
            suggested_name=metadata.suggested_name,
            summary=metadata.summary,
            language=metadata.language,
            word_count=metadata.word_count,
            quality_score=metadata.quality_score,
            processing_method=ProcessingMethod.CLOUD,
            processing_notes=tuple(notes),
            recognition=tuple(recognition),
        )

    async def _local_path(self, recognition: list[RecognitionResult]) -> ProcessingResult:
        best = best_result(recognition)
        classification = await self.arbiter.classify(best.text, use_model=False)
        extraction = self.local_extractor.extract_sync(best.text)
        metadata = self.local_metadata.generate_sync(
            best.text, classification, extraction, best.confidence
        )

        return ProcessingResult(
            corrected_text=best.text,
            text_confidence=best.confidence,
            classification=classification,
            entities=extraction.entities,
            dates=extraction.dates,
            tags=metadata.tags,
            suggested_name=metadata.suggested_name,
            summary=metadata.summary,
            language=metadata.language,
            word_count=metadata.word_count,
            quality_score=metadata.quality_score,
            processing_method=ProcessingMethod.LOCAL,
            processing_notes=(
                f"Processed locally from {best.engine_id} text",
                f"OCR confidence: {round(best.confidence * 100)}%",
                _classification_note(classification),
            ),
            recognition=tuple(recognition),
        )


def _classification_note(classification: ClassificationResult) -> str:
    return (
        f"Classified as {classification.category.value} by {classification.source.value} "
        f"vote ({round(classification.confidence * 100)}%)"
    )


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def build_engines(config: AppConfig) -> list[RecognitionEngine]:
    engines: list[RecognitionEngine] = []
    if config.ocr.vision_enabled:
        engines.append(VisionOCREngine(config.ocr))
    if config.ocr.tesseract_enabled:
        engines.append(TesseractEngine(config.ocr, config.preprocessing))
    return engines


def build_model_classifier(
    config: AppConfig,
    completion: OpenAICompletionClient,
    inference: InferenceClient,
) -> ZeroShotClassifier | None:
    """Pick the model classifier named by ``pipeline.classifier``, if usable."""
    max_alternatives = config.pipeline.max_alternatives
    if config.pipeline.classifier == "completion":
        if not completion.is_configured:
            return None
        return CompletionClassifier(
            completion,
            RetryPolicy.from_config(config.retry, config.completion.timeout_seconds),
            max_alternatives=max_alternatives,
        )

    if not config.inference.enabled:
        return None
    if config.inference.backend == "transformers":
        return TransformersZeroShotClassifier(
            model_name=config.inference.classifier_models[-1],
            max_chars=config.inference.max_input_chars,
            max_alternatives=max_alternatives,
        )
    if not inference.is_configured:
        return None
    return InferenceZeroShotClassifier(
        inference,
        config.inference.classifier_models,
        RetryPolicy.from_config(config.retry, config.inference.timeout_seconds),
        max_chars=config.inference.max_input_chars,
        max_alternatives=max_alternatives,
    )


def build_pipeline(config: AppConfig) -> DocumentPipeline:
    """Wire a :class:`DocumentPipeline` from configuration.

    Cloud stages are only created for capabilities that are enabled and
    have credentials; everything else runs on local rules.
    """
    completion = OpenAICompletionClient(config.completion)
    inference = InferenceClient(config.inference)
    completion_policy = RetryPolicy.from_config(config.retry, config.completion.timeout_seconds)
    inference_policy = RetryPolicy.from_config(config.retry, config.inference.timeout_seconds)
    pipeline_config = config.pipeline

    corrector = None
    metadata = None
    qa: QAResponder = LocalQAResponder()
    if completion.is_configured:
        corrector = TextCorrector(completion, completion_policy)
        metadata = CompletionMetadataGenerator(
            completion, completion_policy, LocalMetadataGenerator(pipeline_config.max_tags)
        )
        qa = CompletionQAResponder(completion, completion_policy)

    extractor: EntityExtractor | None = None
    if pipeline_config.extractor == "completion" and completion.is_configured:
        extractor = CompletionEntityExtractor(
            completion, completion_policy, max_dates=pipeline_config.max_dates
        )
    elif pipeline_config.extractor == "inference" and inference.is_configured:
        extractor = InferenceEntityExtractor(
            inference,
            config.inference.ner_model,
            inference_policy,
            max_chars=config.inference.max_input_chars,
            max_dates=pipeline_config.max_dates,
        )

    arbiter = ClassificationArbiter(
        model=build_model_classifier(config, completion, inference),
        max_alternatives=pipeline_config.max_alternatives,
    )
    pipeline = DocumentPipeline(
        EngineOrchestrator.from_config(build_engines(config), config.ocr, config.retry),
        arbiter=arbiter,
        corrector=corrector,
        extractor=extractor,
        metadata=metadata,
        qa=qa,
        mode=pipeline_config.mode,
        max_dates=pipeline_config.max_dates,
        max_tags=pipeline_config.max_tags,
        batch_concurrency=pipeline_config.batch_concurrency,
        clients=(completion, inference),
    )
    logger.info(
        "Pipeline ready: mode=%s cloud=%s engines=%s",
        pipeline.mode,
        pipeline.use_cloud,
        [e.engine_id for e in pipeline.orchestrator.engines],
    )
    return pipeline
