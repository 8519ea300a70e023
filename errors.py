"""Exception hierarchy for the marketplace API.

Each error carries the HTTP status it is reported with; ``main`` turns them
into ``{"detail": ...}`` responses.
"""


class MarketplaceError(Exception):
    """Base exception for all marketplace errors."""

    status_code = 500


class UnauthorizedError(MarketplaceError):
    """Raised when a request carries no bearer credential."""

    status_code = 401


class ForbiddenError(MarketplaceError):
    """Raised when a credential is invalid or a business rule denies access."""

    status_code = 403


class NotFoundError(MarketplaceError):
    """Raised when an addressed document does not exist."""

    status_code = 404


class ConflictError(MarketplaceError):
    """Raised when a document is in the wrong state for the operation."""

    status_code = 409


class ValidationError(MarketplaceError):
    """Raised when request data is malformed."""

    status_code = 400


class InvalidIdError(ValidationError):
    """Raised when a path id is not a valid ObjectId."""


class GatewayError(MarketplaceError):
    """Raised when the payment processor or identity provider fails."""

    status_code = 502


class ConfigurationError(MarketplaceError):
    """Raised when configuration is invalid or missing."""
