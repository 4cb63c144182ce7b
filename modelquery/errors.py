"""
Error taxonomy for modelquery.

Every failure raised by the query pipeline derives from ModelQueryError so
callers (and the HTTP layer) can handle them uniformly. Each kind carries an
HTTP-ish status code used by the FastAPI surface.
"""

from __future__ import annotations

from typing import Any


class ModelQueryError(Exception):
    """Base exception for query pipeline errors."""

    status_code: int = 500

    def __init__(self, message: str, *, model: str | None = None):
        super().__init__(message)
        self.model = model

    @property
    def message(self) -> str:
        return self.args[0]

    def __str__(self) -> str:
        if self.model:
            return f"[{self.model}] {self.args[0]}"
        return self.args[0]

    def to_dict(self) -> dict[str, Any]:
        """Serialize error for logging/API response."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "model": self.model,
        }


class InvalidRequest(ModelQueryError):
    """Raised when a query request has a bad shape. Fails before any I/O."""

    status_code = 400


class ModelNotFoundError(InvalidRequest):
    """Raised when a model name is not present in the registry."""

    pass


class AccessDenied(ModelQueryError):
    """Raised when the access policy grants no usable scope."""

    status_code = 403

    def __init__(
        self,
        message: str,
        *,
        model: str | None = None,
        action: str | None = None,
        audit: Any = None,
    ):
        super().__init__(message, model=model)
        self.action = action
        self.audit = audit

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["action"] = self.action
        return data


class QueryError(ModelQueryError):
    """
    Raised when the store fails to execute a statement.

    Carries the request arguments and statement for diagnostics. The
    original store error is chained as __cause__.
    """

    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        model: str | None = None,
        args: dict[str, Any] | None = None,
        statement: Any = None,
    ):
        super().__init__(message, model=model)
        self.query_args = args or {}
        self.statement = statement

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["args"] = self.query_args
        if self.statement is not None:
            data["sql"] = getattr(self.statement, "sql", str(self.statement))
        return data


class InvalidResolveTarget(ModelQueryError):
    """Raised when an explicit resolve entry names an unknown model."""

    status_code = 400


class InvalidViewConfig(ModelQueryError):
    """Raised when model views are misconfigured (unknown type, name or alias loop)."""

    status_code = 500


class NotFound(ModelQueryError):
    """Raised when `required` was set and the query returned no rows."""

    status_code = 404


__all__ = [
    "ModelQueryError",
    "InvalidRequest",
    "ModelNotFoundError",
    "AccessDenied",
    "QueryError",
    "InvalidResolveTarget",
    "InvalidViewConfig",
    "NotFound",
]
