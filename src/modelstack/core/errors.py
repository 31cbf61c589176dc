"""
Custom exceptions for the modelstack system.

Every error carries an HTTP status code and a short kind name so the REST
layer can render it without knowing the concrete class.
"""

from __future__ import annotations

from typing import Optional


class ModelStackError(Exception):
    """Base exception for all modelstack errors."""

    status_code: int = 500
    name: str = "error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "status": self.status_code,
            "name": self.name,
            "message": self.message,
        }


# =============================================================================
# Configuration
# =============================================================================


class ModelConfigError(ModelStackError):
    """Raised when model or datasource configuration is invalid."""

    name = "config"

    def __init__(self, message: str, errors: Optional[list[str]] = None):
        self.errors = errors or []
        if self.errors:
            message = f"{message}: " + "; ".join(self.errors)
        super().__init__(message)


class ModelNotFoundError(ModelConfigError):
    """Raised when a model name is not registered."""

    def __init__(self, model_name: str):
        self.model_name = model_name
        super().__init__(f"Model '{model_name}' is not registered")


class RegistryNotResolvedError(ModelConfigError):
    """Raised when a model is used before the registry resolution pass."""

    def __init__(self, model_name: str):
        super().__init__(f"Model '{model_name}' used before registry.resolve()")


# =============================================================================
# Datasource
# =============================================================================


class InvalidConnectorError(ModelStackError):
    name = "invalid-connector"


class DisconnectionError(ModelStackError):
    """Raised when the connector has lost its backend for good."""

    status_code = 503
    name = "disconnection"

    def __init__(self, message: str = "client is disconnected"):
        super().__init__(message)


class DatasourceConnectionError(DisconnectionError):
    """Raised when the initial connect or ping fails."""


class DeleteManyLookupError(ModelStackError):
    status_code = 400
    name = "delete-many-bad-lookup"


class CacheUnsupportedError(ModelStackError):
    name = "cache-unsupported"


class KeyNotFoundError(ModelStackError):
    status_code = 404
    name = "not-found"

    def __init__(self, message: str = "key not found"):
        super().__init__(message)


# =============================================================================
# Operations
# =============================================================================


class NotFoundError(ModelStackError):
    status_code = 404
    name = "not-found"

    def __init__(self, message: str = "Document not found"):
        super().__init__(message)


class InvalidFilterError(ModelStackError):
    status_code = 400
    name = "invalid-filter"


class IncludeCycleError(InvalidFilterError):
    name = "cycle-in-include"

    def __init__(self, path: list[str]):
        self.path = path
        super().__init__(f"Cycle detected in include path: {' -> '.join(path)}")


class InvalidInputError(ModelStackError):
    status_code = 400
    name = "invalid-input"


class UnauthorizedError(ModelStackError):
    """Raised when the authorizer denies an operation."""

    status_code = 401
    name = "unauthorised"

    def __init__(self, message: str = "Unauthorized", status_code: int = 401):
        super().__init__(message, status_code)


class TypeMismatchError(ModelStackError):
    """Raised when a short-circuit result does not match the operation shape."""

    name = "type-mismatch"


class DuplicateRelatedDocumentError(ModelStackError):
    name = "duplicate-related"


class InternalError(ModelStackError):
    name = "internal"

    def __init__(self, message: str = "Internal error", cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class OperationTimeoutError(ModelStackError):
    """Raised when an operation exceeds its context deadline."""

    status_code = 504
    name = "timeout"
