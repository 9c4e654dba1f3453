"""Typed failures raised by the marketplace core.

Every error derives from MarketplaceError, which is itself a ValueError,
so callers that guard a whole operation with ``except ValueError`` keep
working. The message is a short human-readable reason and never carries
internal diagnostics.
"""

from __future__ import annotations


class MarketplaceError(ValueError):
    """Base class for every failure the core raises."""


class NotFoundError(MarketplaceError):
    """A referenced user, task, bid, resume, profile or escrow is absent."""


class AuthorizationError(MarketplaceError):
    """A permission or ownership check failed."""


class InvalidStateError(MarketplaceError):
    """The target task, bid or escrow is in a status that forbids the call."""


class ValidationError(MarketplaceError):
    """Malformed input: non-positive price or time, unknown value, blank field."""


class AuditTrailError(MarketplaceError):
    """The audit event for a mutation could not be recorded; nothing was committed."""
