"""Configuration management for the document intelligence pipeline.

Loads and validates YAML configuration with defaults for recognition
engines, external AI services, retry budgets, and pipeline behavior.
Secrets never live in the YAML file; each service names the environment
variable that holds its credential.
"""

import logging
import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class PreprocessingConfig(BaseModel):
    """Image cleanup applied before classical OCR."""

    enabled: bool = True
    denoise_enabled: bool = True
    contrast_enabled: bool = True
    clahe_clip_limit: float = 2.0
    clahe_tile_size: int = 8
    binarize_enabled: bool = True
    binarize_block_size: int = 31
    binarize_c: int = 10


class OCRConfig(BaseModel):
    """Configuration for the recognition engines."""

    tesseract_enabled: bool = True
    tesseract_cmd: str | None = None
    tesseract_languages: str = "eng+fra+mkd"
    tesseract_psm: int = 1
    tesseract_timeout_seconds: float = 20.0
    pdf_dpi: int = 300

    vision_enabled: bool = True
    vision_endpoints: list[str] = Field(
        default_factory=lambda: [
            "https://prithivmlmods-multimodal-ocr.hf.space/run/predict",
            "https://prithivmlmods-multimodal-ocr.hf.space/api/predict",
        ]
    )
    vision_model: str = "olmOCR-7B-0725"
    vision_prompt: str = "Extract the full page."
    vision_timeout_seconds: float = 45.0

    fetch_timeout_seconds: float = 30.0
    min_confidence: float = 0.1


class CompletionConfig(BaseModel):
    """Generative completion service (OpenAI-compatible chat API)."""

    enabled: bool = True
    base_url: str = "https://openrouter.ai/api/v1"
    api_key_env: str = "OPENROUTER_API_KEY"
    model: str = "deepseek/deepseek-chat"
    temperature: float = 0.1
    max_tokens: int = 4000
    timeout_seconds: float = 45.0

    @property
    def api_key(self) -> str | None:
        return os.environ.get(self.api_key_env) or None


class InferenceConfig(BaseModel):
    """NLP inference service for zero-shot classification and NER."""

    enabled: bool = True
    backend: Literal["remote", "transformers"] = "remote"
    base_url: str = "https://api-inference.huggingface.co/models"
    api_token_env: str = "HF_API_TOKEN"
    classifier_models: list[str] = Field(
        default_factory=lambda: [
            "MoritzLaurer/DeBERTa-v3-base-mnli-fever-anli",
            "facebook/bart-large-mnli",
        ]
    )
    ner_model: str = "dbmdz/bert-large-cased-finetuned-conll03-english"
    max_input_chars: int = 2000
    timeout_seconds: float = 45.0

    @property
    def api_token(self) -> str | None:
        return os.environ.get(self.api_token_env) or None


class RetryConfig(BaseModel):
    """Retry budget applied to every external call."""

    max_attempts: int = 3
    backoff_seconds: float = 2.0
    backoff: Literal["linear", "exponential"] = "linear"
    warmup_wait_seconds: float = 10.0


class PipelineConfig(BaseModel):
    """Pipeline-level switches and output bounds."""

    mode: Literal["auto", "local", "cloud"] = "auto"
    classifier: Literal["inference", "completion"] = "inference"
    extractor: Literal["inference", "completion"] = "completion"
    max_dates: int = 5
    max_alternatives: int = 3
    max_tags: int = 8
    batch_concurrency: int = 4


class AppConfig(BaseModel):
    """Top-level application configuration."""

    ocr: OCRConfig = Field(default_factory=OCRConfig)
    preprocessing: PreprocessingConfig = Field(default_factory=PreprocessingConfig)
    completion: CompletionConfig = Field(default_factory=CompletionConfig)
    inference: InferenceConfig = Field(default_factory=InferenceConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    log_level: str = "INFO"


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from a YAML file.

    Args:
        path: Path to the YAML configuration file.
            Defaults to configs/config.yaml.

    Returns:
        Validated application configuration.
    """
    if path is None:
        path = Path(os.environ.get("DOCINTEL_CONFIG", "configs/config.yaml"))

    if path.exists():
        logger.info("Loading configuration from %s", path)
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        return AppConfig(**raw)

    logger.info("No config file found at %s, using defaults", path)
    return AppConfig()
