"""Validation utilities for FluxEdit inputs.

All checks are pure and fail fast with a :class:`FluxEditError` carrying the
``VALIDATION_ERROR`` code.  Messages are written to be shown to the user
as-is.
"""

import logging
import numbers

from .errors import FluxEditError
from .models import SUPPORTED_MIME_TYPES, ImageFile, ProcessingParams

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 10 * 1024 * 1024
MIN_PROMPT_LENGTH = 3
MAX_PROMPT_LENGTH = 1000
PROMPT_DENYLIST = ("nsfw", "explicit", "violence", "illegal")


def validate_image_file(file: ImageFile | None, max_size: int = MAX_FILE_SIZE) -> None:
    """Check that an upload is a supported image within the size limit.

    Args:
        file: Candidate image file
        max_size: Largest accepted size in bytes (default: 10 MiB)

    Raises:
        FluxEditError: If no file is given, it is too large, or its MIME type
            is not JPEG, PNG or WebP
    """
    if file is None:
        raise FluxEditError.validation("Please select an image file", field="image")

    if file.size > max_size:
        raise FluxEditError.validation(
            f"Image too large. Maximum size is {max_size // (1024 * 1024)}MB", field="image"
        )

    if file.mime_type not in SUPPORTED_MIME_TYPES:
        raise FluxEditError.validation(
            f"Unsupported format. Please use: {', '.join(SUPPORTED_MIME_TYPES)}", field="image"
        )


def validate_prompt(prompt: str | None) -> None:
    """Check prompt length bounds and the content denylist.

    Args:
        prompt: Edit description entered by the user

    Raises:
        FluxEditError: If the trimmed prompt is empty, shorter than 3 or
            longer than 1000 characters, or contains a denied word
    """
    if not prompt or not prompt.strip():
        raise FluxEditError.validation(
            "Please enter a description of what you want to do", field="prompt"
        )

    trimmed = prompt.strip()
    if len(trimmed) < MIN_PROMPT_LENGTH:
        raise FluxEditError.validation(
            f"Description must be at least {MIN_PROMPT_LENGTH} characters long", field="prompt"
        )
    if len(trimmed) > MAX_PROMPT_LENGTH:
        raise FluxEditError.validation(
            f"Description must be less than {MAX_PROMPT_LENGTH} characters", field="prompt"
        )

    lowered = prompt.lower()
    for word in PROMPT_DENYLIST:
        if word in lowered:
            logger.info(f"Prompt rejected by content denylist: {word!r}")
            raise FluxEditError.validation(
                "Please use appropriate content descriptions", field="prompt"
            )


def _is_number(value) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def validate_processing_params(params: ProcessingParams) -> None:
    """Check strength, guidance and seed bounds.

    Raises:
        FluxEditError: If strength is outside [0, 1], guidance outside
            [0, 10], or seed is present but not a non-negative integer
    """
    if not _is_number(params.strength) or not 0 <= params.strength <= 1:
        raise FluxEditError.validation("Strength must be between 0 and 1", field="strength")

    if not _is_number(params.guidance) or not 0 <= params.guidance <= 10:
        raise FluxEditError.validation("Guidance must be between 0 and 10", field="guidance")

    if params.seed is not None:
        if not isinstance(params.seed, int) or isinstance(params.seed, bool) or params.seed < 0:
            raise FluxEditError.validation("Seed must be a positive integer", field="seed")


def validate_image_dimensions(
    width: int,
    height: int,
    min_width: int = 100,
    min_height: int = 100,
    max_width: int = 4096,
    max_height: int = 4096,
) -> bool:
    """Return True when decoded dimensions fall inside the accepted range."""
    return min_width <= width <= max_width and min_height <= height <= max_height
