"""Processing-time estimates shown while an edit is in flight.

The estimate is a coarse heuristic: a base duration, bumped for large
uploads, scaled by a keyword-bucketed prompt complexity.  The bucket
thresholds are kept stable so estimates stay comparable across releases.
"""

from typing import Literal

Complexity = Literal["simple", "medium", "complex"]

BASE_TIME_MS = 10_000
LARGE_FILE_PENALTY_MS = 5_000

COMPLEX_KEYWORDS = (
    "detailed",
    "intricate",
    "complex",
    "artistic",
    "professional",
    "dramatic",
    "cinematic",
    "photorealistic",
    "high-quality",
)
SIMPLE_KEYWORDS = ("simple", "basic", "clean", "minimal", "quick")

COMPLEXITY_MULTIPLIERS: dict[str, float] = {
    "simple": 1.0,
    "medium": 1.3,
    "complex": 1.6,
}
FALLBACK_MULTIPLIER = 1.2


def complexity_from_prompt(prompt: str) -> Complexity:
    """Bucket a prompt into simple, medium or complex.

    Words are split on single spaces and matched by substring, so
    ``"high-quality,"`` still counts as a complex word.
    """
    words = prompt.lower().split(" ")

    complex_count = sum(1 for word in words if any(k in word for k in COMPLEX_KEYWORDS))
    simple_count = sum(1 for word in words if any(k in word for k in SIMPLE_KEYWORDS))

    if complex_count > simple_count and complex_count > 1:
        return "complex"
    if simple_count > 0:
        return "simple"
    if len(words) > 15:
        return "complex"
    if len(words) < 5:
        return "simple"
    return "medium"


def estimate_processing_time(image_size: int, complexity: str) -> int:
    """Estimate processing duration in milliseconds.

    Args:
        image_size: Upload size in bytes
        complexity: Bucket from :func:`complexity_from_prompt`

    Returns:
        Rounded estimate in milliseconds
    """
    base_time = BASE_TIME_MS

    size_mb = image_size / (1024 * 1024)
    if size_mb > 5:
        base_time += LARGE_FILE_PENALTY_MS
    if size_mb > 8:
        base_time += LARGE_FILE_PENALTY_MS

    multiplier = COMPLEXITY_MULTIPLIERS.get(complexity, FALLBACK_MULTIPLIER)
    return round(base_time * multiplier)
