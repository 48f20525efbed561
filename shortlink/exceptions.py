"""Domain exceptions for the shortlink service.

Services and stores raise these; the HTTP layer maps each family to a status
code in one place (``shortlink.routes``). Cache failures never surface as
exceptions: the cache layer absorbs them and reports "no cache".

Hierarchy
=========
::
    ShortLinkError
    ├─ ValidationError             -> 422
    ├─ DuplicateError              -> 409
    │  ├─ DuplicateCodeError
    │  └─ DuplicateAliasError
    ├─ NotFoundError               -> 404
    ├─ AuthRequiredError           -> 401
    ├─ AuthDeniedError             -> 403
    └─ DependencyUnavailableError  -> 503
"""

__all__ = [
    "ShortLinkError",
    "ValidationError",
    "DuplicateError",
    "DuplicateCodeError",
    "DuplicateAliasError",
    "NotFoundError",
    "AuthRequiredError",
    "AuthDeniedError",
    "DependencyUnavailableError",
]


class ShortLinkError(Exception):
    """Base class for every error the service raises on purpose."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ShortLinkError):
    status_code = 422
    default_message = "Validation failed"


class DuplicateError(ShortLinkError):
    status_code = 409
    default_message = "Resource already exists"


class DuplicateCodeError(DuplicateError):
    default_message = "Short code already exists"


class DuplicateAliasError(DuplicateError):
    default_message = "Custom alias already exists"


class NotFoundError(ShortLinkError):
    status_code = 404
    default_message = "Short URL not found"


class AuthRequiredError(ShortLinkError):
    status_code = 401
    default_message = "Authentication required"


class AuthDeniedError(ShortLinkError):
    status_code = 403
    default_message = "Access denied"


class DependencyUnavailableError(ShortLinkError):
    status_code = 503
    default_message = "Service temporarily unavailable"
