"""Error taxonomy for the quantization and height-mapping stages.

Every error carries a ``kind`` tag plus the offending value and the
expected range, so callers can render a message without parsing text.
"""

from typing import Any


class HeightFieldError(Exception):
    """Base class for all errors raised by the height field pipeline."""

    kind = "error"

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        expected: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.field = field
        self.value = value
        self.expected = expected

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "message": self.message,
            "field": self.field,
            "value": self.value,
            "expected": self.expected,
        }


class InvalidInputError(HeightFieldError, ValueError):
    """Absent or malformed pixel buffer."""

    kind = "invalid_input"


class InvalidParameterError(HeightFieldError, ValueError):
    """A configuration value is outside its documented range."""

    kind = "invalid_parameter"


class InvalidDimensionsError(HeightFieldError, ValueError):
    """Zero, negative or oversized image dimensions."""

    kind = "invalid_dimensions"


class EmptyColorSpaceError(HeightFieldError):
    """No clusterable pixels, e.g. a fully transparent image."""

    kind = "empty_color_space"


class ProcessingCancelled(HeightFieldError):
    """Cooperative cancellation was observed at a stage boundary.

    Kept apart from the other kinds so callers know not to retry.
    """

    kind = "cancelled"

    def __init__(self, stage: str):
        super().__init__(f"Processing cancelled during {stage}", field="stage", value=stage)
        self.stage = stage


class InvariantViolationError(HeightFieldError, RuntimeError):
    """A computed height field failed its post-condition check (a bug)."""

    kind = "invariant_violation"
