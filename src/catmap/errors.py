"""Error taxonomy shared by every component.

Each error carries the HTTP status the dispatcher maps it to and a stable
machine-readable ``code``. Only ``StorageUnavailableError`` is retryable.
"""

from __future__ import annotations


class CatMapError(Exception):
    """Base class for all domain errors."""

    status_code = 500
    code = "internal_error"
    retryable = False

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class ValidationError(CatMapError, ValueError):
    """Malformed input. The caller's fault; never retried."""

    status_code = 422
    code = "validation_error"


class NotFoundError(CatMapError):
    """Referenced entity does not exist."""

    status_code = 404
    code = "not_found"


class ConflictError(CatMapError):
    """Uniqueness violation."""

    status_code = 409
    code = "conflict"


class InvalidStateError(CatMapError):
    """Operation not allowed in the entity's current lifecycle state."""

    status_code = 409
    code = "invalid_state"


class TokenError(CatMapError):
    """Visit token cannot be used. The caller must request a new one."""

    status_code = 403
    code = "token_error"


class TokenExpiredError(TokenError):
    code = "token_expired"


class TokenAlreadyUsedError(TokenError):
    code = "token_already_used"


class TokenNotFoundError(TokenError):
    code = "token_not_found"


class TokenScopeError(TokenError):
    code = "token_scope_mismatch"


class StorageUnavailableError(CatMapError):
    """Transient backend failure. Safe to retry idempotent operations."""

    status_code = 503
    code = "storage_unavailable"
    retryable = True
