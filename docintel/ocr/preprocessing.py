"""Image cleanup ahead of classical OCR.

Converts a page to grayscale, then optionally denoises it, boosts local
contrast with CLAHE, and binarizes it with an adaptive threshold.
"""

import cv2
import numpy as np

from docintel.utils.config import PreprocessingConfig
from docintel.utils.logger import get_logger

logger = get_logger(__name__)


def to_grayscale(image: np.ndarray) -> np.ndarray:
    """Return a single-channel copy of ``image``."""
    if image.ndim == 2:
        return image.copy()
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_RGBA2GRAY)
    return cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)


def enhance_contrast(gray: np.ndarray, clip_limit: float, tile_size: int) -> np.ndarray:
    clahe = cv2.createCLAHE(clipLimit=clip_limit, tileGridSize=(tile_size, tile_size))
    return clahe.apply(gray)


def binarize(gray: np.ndarray, block_size: int, c: int) -> np.ndarray:
    """Adaptive Gaussian threshold; ``block_size`` is forced odd."""
    if block_size % 2 == 0:
        block_size += 1
    return cv2.adaptiveThreshold(
        gray,
        255,
        cv2.ADAPTIVE_THRESH_GAUSSIAN_C,
        cv2.THRESH_BINARY,
        block_size,
        c,
    )


def preprocess_page(image: np.ndarray, config: PreprocessingConfig) -> np.ndarray:
    """Apply the configured cleanup steps to one page image.

    Args:
        image: RGB, RGBA or grayscale page.
        config: Which steps to run and their parameters.

    Returns:
        Processed grayscale (or binary) image; the input when disabled.
    """
    if not config.enabled:
        return image

    result = to_grayscale(image)
    if config.denoise_enabled:
        result = cv2.fastNlMeansDenoising(result, h=10)
    if config.contrast_enabled:
        result = enhance_contrast(result, config.clahe_clip_limit, config.clahe_tile_size)
    if config.binarize_enabled:
        result = binarize(result, config.binarize_block_size, config.binarize_c)

    logger.debug("Preprocessed page of shape %s", image.shape)
    return result
