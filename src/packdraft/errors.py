"""Exception types shared across the engine, venues, and surfaces."""

from __future__ import annotations


class PackdraftError(Exception):
    """Base class for all packdraft errors."""

    code = "error"


class ValidationError(PackdraftError):
    """Input rejected synchronously (bad pick set, bad probability, ...)."""

    code = "invalid_input"


class VenueError(PackdraftError):
    """Market venue call failed (timeout, transport, non-2xx). Always recoverable."""

    code = "venue_error"


class DataIntegrityError(PackdraftError):
    """Stored rows contradict each other. Fatal for the item, never for a sweep."""

    code = "data_integrity"


class PackNotFoundError(PackdraftError):
    code = "pack_not_found"


class PoolNotFoundError(PackdraftError):
    code = "pool_not_found"


class PaymentRejectedError(PackdraftError):
    code = "payment_rejected"


class PackLimitReachedError(PackdraftError):
    code = "weekly_limit_reached"
