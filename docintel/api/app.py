"""FastAPI application for the Document Intelligence API.

Provides REST endpoints for processing uploaded or remote documents,
batch processing, question answering over processed documents, and
health checks.
"""

import shutil
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated

import torch
from fastapi import FastAPI, File, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware

from docintel.models import ProcessingMethod, ProcessingResult
from docintel.pipeline.processor import DocumentPipeline, build_pipeline
from docintel.utils.config import load_config
from docintel.utils.logger import get_logger

from .schemas import (
    AnswerResponse,
    BatchItemResponse,
    BatchProcessingResponse,
    DocumentType,
    HealthResponse,
    ProcessingResponse,
    ProcessURLRequest,
    QuestionRequest,
)

logger = get_logger(__name__)

VERSION = "1.0.0"

_pipeline: DocumentPipeline | None = None


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    """Close the shared pipeline's network clients on shutdown."""
    global _pipeline
    yield
    if _pipeline is not None:
        await _pipeline.aclose()
        _pipeline = None


app = FastAPI(
    title="Document Intelligence API",
    description="Recognize, classify and extract metadata from personal and administrative documents",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _get_pipeline() -> DocumentPipeline:
    """Return the shared pipeline, building it on first use.

    The pipeline holds only read-only clients, so one instance serves all
    requests.
    """
    global _pipeline
    if _pipeline is None:
        _pipeline = build_pipeline(load_config())
    return _pipeline


_ALLOWED_CONTENT_TYPES = {
    "image/png",
    "image/jpeg",
    "image/tiff",
    "image/webp",
    "application/pdf",
    "application/octet-stream",
}


def _check_content_type(file: UploadFile) -> None:
    if file.content_type and file.content_type not in _ALLOWED_CONTENT_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type: {file.content_type}",
        )


def _is_degraded(result: ProcessingResult) -> bool:
    return result.processing_method == ProcessingMethod.EMERGENCY or not result.corrected_text


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Return system health status."""
    pipeline = _get_pipeline()
    return HealthResponse(
        status="healthy",
        version=VERSION,
        tesseract_available=shutil.which("tesseract") is not None,
        gpu_available=torch.cuda.is_available(),
        cloud_enabled=pipeline.use_cloud,
        engines=[engine.engine_id for engine in pipeline.orchestrator.engines],
    )


@app.post("/process", response_model=ProcessingResponse)
async def process_document(
    file: Annotated[UploadFile, File(...)],
    doc_type: Annotated[DocumentType, Query()] = DocumentType.AUTO,
) -> ProcessingResponse:
    """Process an uploaded document.

    Args:
        file: Uploaded document file (PNG, JPEG, TIFF, WEBP, or PDF).
        doc_type: Format hint for the recognition engines.

    Returns:
        The structured processing result. Processing failures come back
        as a degraded result, not as an error status.
    """
    _check_content_type(file)
    content = await file.read()
    result = await _get_pipeline().process_document(content, doc_type.value)
    return ProcessingResponse.from_result(str(uuid.uuid4()), result)


@app.post("/process/url", response_model=ProcessingResponse)
async def process_url(request: ProcessURLRequest) -> ProcessingResponse:
    """Download and process a document by URL."""
    result = await _get_pipeline().process_document(request.url, request.doc_type.value)
    return ProcessingResponse.from_result(str(uuid.uuid4()), result)


@app.post("/process/batch", response_model=BatchProcessingResponse)
async def process_batch(
    files: Annotated[list[UploadFile], File(...)],
    doc_type: Annotated[DocumentType, Query()] = DocumentType.AUTO,
) -> BatchProcessingResponse:
    """Process multiple uploaded documents concurrently.

    Files with an unsupported content type are rejected individually; the
    rest are processed in parallel.
    """
    accepted: list[tuple[str, bytes]] = []
    results: dict[int, BatchItemResponse] = {}

    for index, file in enumerate(files):
        filename = file.filename or "unknown"
        try:
            _check_content_type(file)
        except HTTPException as exc:
            results[index] = BatchItemResponse(filename=filename, error=exc.detail)
            continue
        accepted.append((filename, await file.read()))

    processed = await _get_pipeline().process_batch(
        [content for _, content in accepted], doc_type.value
    )

    degraded = 0
    accepted_iter = iter(zip(accepted, processed, strict=True))
    for index in range(len(files)):
        if index in results:
            continue
        (filename, _), result = next(accepted_iter)
        degraded += _is_degraded(result)
        results[index] = BatchItemResponse(
            filename=filename,
            result=ProcessingResponse.from_result(str(uuid.uuid4()), result),
        )

    logger.info(
        "Batch of %d: %d processed, %d degraded", len(files), len(processed), degraded
    )
    return BatchProcessingResponse(
        total_documents=len(files),
        processed=len(processed),
        degraded=degraded,
        rejected=len(files) - len(processed),
        results=[results[i] for i in range(len(files))],
    )


@app.post("/ask", response_model=AnswerResponse)
async def ask(request: QuestionRequest) -> AnswerResponse:
    """Answer a question about a previously processed document."""
    context = ProcessingResult.from_dict(request.document.model_dump())
    answer = await _get_pipeline().answer_question(request.question, context)
    return AnswerResponse(
        answer=answer.answer,
        confidence=answer.confidence,
        method=answer.method,
        sources=list(answer.sources),
    )
