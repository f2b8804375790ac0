"""Input validation helpers shared by the service layer."""

import math
import re
from numbers import Real
from typing import Any

from workshop.core.exceptions import ValidationError

# Criteria keys are free-form but kept short and printable
CRITERIA_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.\- ]{1,64}$")


def sanitize_string(value: str | None, max_length: int = 1000) -> str:
    """
    Sanitize string input.

    Truncates to max_length, removes null bytes and strips surrounding
    whitespace. None becomes an empty string.
    """
    if not value:
        return ""

    value = value[:max_length]
    value = value.replace("\x00", "")
    return value.strip()


def is_number(value: Any) -> bool:
    """True for finite ints/floats. Booleans are not numbers here."""
    if isinstance(value, bool) or not isinstance(value, Real):
        return False
    return math.isfinite(float(value))


def validate_criteria(criteria: dict[str, Any] | None) -> dict[str, float | int]:
    """
    Validate a candidate activity's criteria map.

    Keys must be non-empty strings, values finite numbers. The returned dict is
    a clean copy safe to serialize as a JSON object.
    """
    if criteria is None:
        return {}
    if not isinstance(criteria, dict):
        raise ValidationError("Criteria must be an object of name -> number")

    cleaned: dict[str, float | int] = {}
    for key, value in criteria.items():
        if not isinstance(key, str) or not CRITERIA_KEY_PATTERN.match(key):
            raise ValidationError(
                f"Invalid criterion name: {key!r}", {"field": "criteria"}
            )
        if not is_number(value):
            raise ValidationError(
                f"Criterion {key!r} must be numeric", {"field": f"criteria.{key}"}
            )
        cleaned[key] = value
    return cleaned


def clamp_percentage(value: float) -> float:
    """Clamp a percentage into [0, 100]."""
    if not is_number(value):
        raise ValidationError("Percentage must be a number", {"field": "percentage"})
    return max(0.0, min(100.0, float(value)))


def check_range(value: Any, low: int, high: int, field: str) -> int:
    """Require an integer within [low, high] inclusive."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer", {"field": field})
    if value < low or value > high:
        raise ValidationError(
            f"{field} {value} is out of range. Must be between {low} and {high}.",
            {"field": field, "min": low, "max": high},
        )
    return value
