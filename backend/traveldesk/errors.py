"""Typed billing errors: raised by the lifecycle services, mapped to HTTP in routers."""


class BillingError(Exception):
    """Base class for errors surfaced to API callers verbatim."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BillingError, ValueError):
    """Malformed or out-of-range input, or a business-rule violation."""

    status_code = 422


class NotFoundError(BillingError, LookupError):
    """A referenced lead, package, itinerary or document does not exist."""

    status_code = 404


class ConflictError(BillingError):
    """Another operation on the same resource is still in flight."""

    status_code = 409


class UpstreamUnavailable(BillingError):
    """A persistence or lookup dependency failed after the allowed retry."""

    status_code = 503
