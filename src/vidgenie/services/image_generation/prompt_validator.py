"""Prompt validation and derivation for the generation workflow.

Validates user prompts before anything is charged, and derives the per-stage
prompts sent to the image and video providers.
"""

import re

from vidgenie.services.exceptions import ValidationError

PROMPT_MIN_LENGTH = 10
PROMPT_MAX_LENGTH = 2000
VIDEO_PROMPT_MAX_LENGTH = 1000

# Content-policy blocklist, matched on word boundaries
BLOCKED_TERMS = (
    "nsfw",
    "nude",
    "naked",
    "gore",
    "beheading",
    "child abuse",
    "terrorist attack",
)

_BLOCKED_PATTERN = re.compile(
    r"\b(" + "|".join(re.escape(term) for term in BLOCKED_TERMS) + r")\b", re.IGNORECASE
)

# Appended to image prompts so the still works as a first video frame
IMAGE_COMPOSITION_HINTS = "cinematic composition, clear subject, suitable as a video keyframe"


def validate_prompt(
    prompt: str,
    *,
    min_length: int = PROMPT_MIN_LENGTH,
    max_length: int = PROMPT_MAX_LENGTH,
    field: str = "prompt",
) -> str:
    """Validate prompt text.

    Args:
        prompt: Text prompt from the user
        min_length: Minimum length after stripping whitespace
        max_length: Maximum length after stripping whitespace
        field: Field name used in error messages

    Returns:
        The stripped prompt

    Raises:
        ValidationError: If the prompt is empty, out of bounds, or blocked
    """
    if not prompt or not isinstance(prompt, str):
        raise ValidationError(f"{field} cannot be empty")

    stripped = prompt.strip()
    if len(stripped) < min_length:
        raise ValidationError(
            f"{field} must be at least {min_length} characters (got {len(stripped)})"
        )
    if len(stripped) > max_length:
        raise ValidationError(
            f"{field} exceeds maximum length of {max_length} characters (got {len(stripped)})"
        )

    match = _BLOCKED_PATTERN.search(stripped)
    if match:
        raise ValidationError(f"{field} violates content policy ({match.group(0).lower()!r})")

    return stripped


def validate_video_prompt(prompt: str) -> str:
    return validate_prompt(prompt, max_length=VIDEO_PROMPT_MAX_LENGTH, field="video_prompt")


def derive_image_prompt(prompt: str) -> str:
    """Image-stage prompt: the user's prompt plus composition hints."""
    return f"{prompt.rstrip('. ')}. {IMAGE_COMPOSITION_HINTS}"
