"""Request parameter types shared by the validator, cache key builder and provider."""

import base64
import binascii
import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

DATA_URL_PATTERN = re.compile(r"^data:(image/[^;]+);base64,", re.IGNORECASE)

TRUE_STRINGS = {"1", "true", "yes", "on"}


class OperationType(str, Enum):
    """Operation label inferred from which image inputs are present."""

    GENERATE = "generate"
    EDIT = "edit"
    COMPOSE = "compose"


@dataclass(frozen=True)
class ImageInput:
    """An uploaded image forwarded to the provider as inline data."""

    data: bytes
    mime_type: str = "image/png"

    @classmethod
    def from_base64(cls, value: str) -> "ImageInput":
        """Decode plain base64 or a data URL (data:image/jpeg;base64,...).

        Raises:
            ValueError: If the value is not valid base64
        """
        mime_type = "image/png"
        match = DATA_URL_PATTERN.match(value)
        if match:
            mime_type = match.group(1).lower()
            value = value[match.end() :]
        try:
            data = base64.b64decode(value, validate=True)
        except binascii.Error as e:
            raise ValueError(f"Invalid base64 image data: {e}") from e
        if not data:
            raise ValueError("Empty image data")
        return cls(data=data, mime_type=mime_type)

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


@dataclass(frozen=True)
class ActorContext:
    """Who asked for a generation. Both fields are optional (no auth on image routes)."""

    user_id: str | None = None
    app_id: str | None = None


@dataclass
class GenerationParams:
    """Raw request parameters.

    Numeric fields keep the caller's raw values (query strings, form fields or
    JSON numbers) so the validator can report unparseable input.
    """

    prompt: str | None
    width: Any
    height: Any
    seed: Any = None
    strength: Any = None
    style: str | None = None
    type: str = "image"
    preserve_composition: bool = False
    composition_style: str | None = None
    base_image: ImageInput | None = None
    reference_images: list[ImageInput] = field(default_factory=list)

    @property
    def prompt_text(self) -> str:
        return (self.prompt or "").strip()

    @property
    def has_base_image(self) -> bool:
        return self.base_image is not None

    @property
    def reference_count(self) -> int:
        return len(self.reference_images)

    @property
    def has_reference_images(self) -> bool:
        return self.reference_count > 0

    @property
    def width_value(self) -> int | None:
        return parse_int(self.width)

    @property
    def height_value(self) -> int | None:
        return parse_int(self.height)

    @property
    def seed_value(self) -> int | None:
        return None if is_absent(self.seed) else parse_int(self.seed)

    @property
    def strength_value(self) -> float | None:
        return None if is_absent(self.strength) else parse_float(self.strength)


def is_absent(value: Any) -> bool:
    """True for None and blank strings (empty query/form fields)."""
    return value is None or (isinstance(value, str) and not value.strip())


def parse_int(value: Any) -> int | None:
    """Parse value as an integer, returning None when it is not one."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def parse_float(value: Any) -> float | None:
    """Parse value as a finite float, returning None when it is not one."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value.strip() if isinstance(value, str) else value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def parse_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in TRUE_STRINGS
    return bool(value)


def detect_operation_type(params: GenerationParams) -> OperationType:
    """Classify the request: base image -> edit, 2+ references -> compose."""
    if params.has_base_image:
        return OperationType.EDIT
    if params.reference_count >= 2:
        return OperationType.COMPOSE
    return OperationType.GENERATE
