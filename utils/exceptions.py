"""
Unified exception hierarchy for the Quick Study pipeline.

All domain exceptions inherit from QuickStudyError and carry:
- error_code: machine-readable string (e.g. "SESSION_NOT_FOUND")
- status_code: HTTP status code
- message: human-readable description
- context: optional structured metadata dict
"""

from typing import Optional, Dict, Any


class QuickStudyError(Exception):
    """Base exception for all Quick Study domain errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "INTERNAL_ERROR",
        status_code: int = 500,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error_code,
            "message": self.message,
            "context": self.context,
        }


class ValidationError(QuickStudyError):
    """400-level validation / bad-request errors. Never retried."""

    def __init__(
        self,
        message: str,
        error_code: str = "INVALID_REQUEST",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, error_code=error_code, status_code=400, context=context)


class NotFoundError(QuickStudyError):
    """404 errors for unknown sessions, sources, outputs and jobs."""

    def __init__(
        self,
        message: str,
        error_code: str = "NOT_FOUND",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, error_code=error_code, status_code=404, context=context)


class JobStateError(QuickStudyError):
    """Illegal job transition, e.g. mutating a job that already finished."""

    def __init__(
        self,
        message: str,
        error_code: str = "INVALID_JOB_TRANSITION",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, error_code=error_code, status_code=409, context=context)


class UpstreamError(QuickStudyError):
    """Completion provider call failed or timed out."""

    def __init__(
        self,
        message: str,
        error_code: str = "UPSTREAM_FAILED",
        context: Optional[Dict[str, Any]] = None,
    ):
        status_code = 504 if error_code == "UPSTREAM_TIMEOUT" else 502
        super().__init__(message, error_code=error_code, status_code=status_code, context=context)


class SchemaError(QuickStudyError):
    """Provider returned a structure that could not be parsed or validated."""

    def __init__(
        self,
        message: str,
        error_code: str = "INVALID_MODEL_OUTPUT",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, error_code=error_code, status_code=502, context=context)


class GenerationError(QuickStudyError):
    """500-level generation failures."""

    def __init__(
        self,
        message: str,
        error_code: str = "GENERATION_FAILED",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, error_code=error_code, status_code=500, context=context)
