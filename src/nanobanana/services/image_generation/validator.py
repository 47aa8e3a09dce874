"""Parameter validation for image generation.

Validates request parameters before any cache lookup or provider call.
"""

from typing import Any

from nanobanana.services.image_generation.params import (
    GenerationParams,
    is_absent,
    parse_float,
    parse_int,
)

MIN_DIMENSION = 64
MAX_DIMENSION = 2048
MIN_STRENGTH = 0.1
MAX_STRENGTH = 1.0
# Gemini takes a signed 32-bit seed
MIN_SEED = -(2**31)
MAX_SEED = 2**31 - 1
# Width of the style and composition_style columns
MAX_TAG_LENGTH = 100


def validate_params(params: GenerationParams) -> list[str]:
    """Validate generation parameters.

    Every check runs independently so callers see all violations at once.

    Args:
        params: Raw request parameters

    Returns:
        Violation codes, empty when the parameters are valid:
        missing_prompt, invalid_width, invalid_height, invalid_seed, invalid_strength,
        invalid_style, invalid_composition_style
    """
    violations = []

    if not params.prompt_text:
        violations.append("missing_prompt")

    width = parse_int(params.width)
    if width is None or not MIN_DIMENSION <= width <= MAX_DIMENSION:
        violations.append("invalid_width")

    height = parse_int(params.height)
    if height is None or not MIN_DIMENSION <= height <= MAX_DIMENSION:
        violations.append("invalid_height")

    if not is_absent(params.seed):
        seed = parse_int(params.seed)
        if seed is None or not MIN_SEED <= seed <= MAX_SEED:
            violations.append("invalid_seed")

    if not is_absent(params.strength):
        strength = parse_float(params.strength)
        if strength is None or not MIN_STRENGTH <= strength <= MAX_STRENGTH:
            violations.append("invalid_strength")

    if not _is_valid_tag(params.style):
        violations.append("invalid_style")

    if not _is_valid_tag(params.composition_style):
        violations.append("invalid_composition_style")

    return violations


def _is_valid_tag(value: Any) -> bool:
    return value is None or (isinstance(value, str) and len(value) <= MAX_TAG_LENGTH)
