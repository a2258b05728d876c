from typing import Optional, Dict, Any
from fastapi import HTTPException

from .errors import ErrorDetail, ErrorCode, ErrorKind


class ModelServiceError(Exception):
    """
    Structured failure raised by the model subsystem.

    `kind` places the failure in the ErrorKind taxonomy; `context` carries the
    diagnostics gathered at the failure site (file path, size, readability,
    elapsed time, exception class...). Human formatting happens in describe(),
    which only the HTTP boundary and logs call.
    """

    def __init__(self, kind: ErrorKind, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})

    def describe(self) -> str:
        lines = [f"{self.kind.value}: {self.message}"]
        for key, value in self.context.items():
            lines.append(f"  {key}: {value}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"ModelServiceError(kind={self.kind.value!r}, message={self.message!r}, context={self.context!r})"


class CaptureError(Exception):
    """The capture collaborator could not produce an image."""


class APIError(HTTPException):
    def __init__(
        self,
        error: ErrorDetail,
        details: Optional[Dict[str, Any]] = None,
        override_message: Optional[str] = None,
    ):
        self.error_code = error.code
        self.details = details or {}
        message = override_message or error.message
        super().__init__(status_code=error.status_code, detail=message)

    @classmethod
    def from_service_error(cls, exc: ModelServiceError) -> "APIError":
        details = {"kind": exc.kind.value}
        details.update({k: v if isinstance(v, (int, float, bool, str, type(None))) else str(v)
                        for k, v in exc.context.items()})
        return cls(error=ErrorCode.for_kind(exc.kind), details=details, override_message=exc.message)
