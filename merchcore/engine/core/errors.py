"""
Exception types raised by the calculation engine.

All engine errors derive from ``ValueError`` so callers that already guard
service calls with ``except ValueError`` keep treating them as bad input.
"""

from __future__ import annotations

from typing import Any, Optional


class EngineError(ValueError):
    """Base class for engine errors.

    Attributes:
        code: Machine readable error code (e.g. ``"INVALID_CONFIGURATION"``)
        message: Human-readable message
        details: Additional context
    """

    code: str = "ENGINE_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Return the error in the shape used by error payloads."""
        return {"error": self.code, "message": self.message, "details": self.details}


class ConfigurationError(EngineError):
    """A forecast or optimisation configuration is inconsistent."""

    code = "INVALID_CONFIGURATION"


class EmptyInputError(EngineError):
    """A calculation received a series with no observations."""

    code = "EMPTY_INPUT"
