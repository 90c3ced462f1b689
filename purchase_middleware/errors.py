"""Application error type shared by every layer.

`AppError` is the only exception that crosses component boundaries. The
HTTP client classifies transport failures into it, adapters add domain
classification on top, and the HTTP layer renders it.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Closed set of error categories."""

    INTERNAL_ERROR = "INTERNAL_ERROR"
    VALIDATION = "VALIDATION"
    UPSTREAM_4XX = "UPSTREAM_4XX"
    UPSTREAM_5XX = "UPSTREAM_5XX"
    TIMEOUT = "TIMEOUT"
    RATE_LIMIT = "RATE_LIMIT"
    RETRY_EXHAUSTED = "RETRY_EXHAUSTED"


class AppError(Exception):
    """A classified failure with an HTTP-equivalent status.

    Args:
        message: Human readable description.
        kind: Category from `ErrorKind`.
        status_code: Status the HTTP layer should answer with.
        details: Optional diagnostic payload (upstream method/url/status...).
            The HTTP layer may drop it when error masking is enabled.
        cause: The original exception, if any. Also set as `__cause__`.
    """

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.status_code = status_code
        self.details = details
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def __repr__(self) -> str:
        return f"AppError(kind={self.kind.value}, status_code={self.status_code}, message={self.message!r})"
