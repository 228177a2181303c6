"""
Error types raised by the correlation stages.

Recoverable conditions (a missing or corrupt cached artifact, a point at
infinity) are absorbed where they are detected and never reach these types.
"""

from typing import Optional


class StereoCorrelationError(Exception):
    """Base class for correlation errors."""


class ConfigurationError(StereoCorrelationError, ValueError):
    """Contradictory or incomplete configuration; no output is produced."""


class MatchingError(StereoCorrelationError):
    """Interest-point matching could not establish a search range."""


class StageError(StereoCorrelationError):
    """A pipeline stage failed; carries the stage name and the cause."""

    def __init__(self, stage: str, original_error: Optional[Exception] = None):
        message = f"Stage '{stage}' failed"
        if original_error is not None:
            message += f": {original_error}"
        super().__init__(message)
        self.stage = stage
        self.original_error = original_error
