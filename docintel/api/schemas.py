"""Pydantic request/response schemas for the FastAPI endpoints."""

from enum import StrEnum

from pydantic import BaseModel, Field

from docintel.models import EntityKind, ProcessingMethod, ProcessingResult, VoteSource


class DocumentType(StrEnum):
    """Format hint for the recognition engines."""

    PDF = "pdf"
    IMAGE = "image"
    AUTO = "auto"


class EntityResponse(BaseModel):
    """Response schema for a single extracted entity."""

    text: str
    kind: EntityKind
    confidence: float


class DateResponse(BaseModel):
    """Response schema for a date mention."""

    raw: str
    normalized: str
    confidence: float
    script_or_locale: str


class AlternativeCategory(BaseModel):
    """A runner-up category with its score."""

    category: str
    confidence: float


class EngineResponse(BaseModel):
    """Summary of one recognition engine's contribution."""

    engine_id: str
    confidence: float
    latency_ms: int
    characters: int


class ProcessingResponse(BaseModel):
    """Response schema for a processed document."""

    document_id: str
    corrected_text: str
    text_confidence: float
    category: str
    classification_confidence: float
    classification_reasoning: str
    classification_source: VoteSource
    alternative_categories: list[AlternativeCategory]
    entities: list[EntityResponse]
    dates: list[DateResponse]
    tags: list[str]
    suggested_name: str
    summary: str
    language: str
    word_count: int
    quality_score: float
    processing_method: ProcessingMethod
    processing_notes: list[str]
    recognition: list[EngineResponse]
    processing_time_ms: int

    @classmethod
    def from_result(cls, document_id: str, result: ProcessingResult) -> "ProcessingResponse":
        return cls(document_id=document_id, **result.to_dict())


class ProcessURLRequest(BaseModel):
    """Request schema for processing a document by URL."""

    url: str
    doc_type: DocumentType = DocumentType.AUTO


class BatchItemResponse(BaseModel):
    """Response schema for a single item in a batch."""

    filename: str
    result: ProcessingResponse | None = None
    error: str | None = None


class BatchProcessingResponse(BaseModel):
    """Response schema for batch processing of multiple documents."""

    total_documents: int
    processed: int
    degraded: int
    rejected: int
    results: list[BatchItemResponse]


class QuestionRequest(BaseModel):
    """Question about a previously processed document."""

    question: str = Field(min_length=1)
    document: ProcessingResponse


class AnswerResponse(BaseModel):
    """Response schema for a question answer."""

    answer: str
    confidence: float
    method: str
    sources: list[str] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Response schema for the health check endpoint."""

    status: str
    version: str
    tesseract_available: bool
    gpu_available: bool
    cloud_enabled: bool
    engines: list[str]
