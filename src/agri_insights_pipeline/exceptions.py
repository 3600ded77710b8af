from __future__ import annotations

from typing import Optional


class AgriPipelineError(RuntimeError):
    """Base class for all errors raised by the pipeline."""


class DataLoadError(AgriPipelineError):
    """Raised when reading from or writing to an external system fails."""


class SchemaError(AgriPipelineError):
    """Raised when the input header is missing required columns."""


class RowError(AgriPipelineError):
    """A single input row could not be accepted."""

    def __init__(
        self,
        message: str,
        line_number: Optional[int] = None,
        field: Optional[str] = None,
        value: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.line_number = line_number
        self.field = field
        self.value = value


class ParseError(RowError):
    """Raised for a malformed row (wrong field count, non-numeric value)."""


class RangeError(RowError):
    """Raised for a value outside its documented domain."""
