"""
Error taxonomy for the content-delivery engine.

Engine code branches on these types, never on error message text:
- SchemaMismatchError: the store is mid-migration (missing column/table).
  Callers degrade to empty results or defaults and keep going.
- UpstreamError: any other data-access failure. Propagated unchanged.
"""

from __future__ import annotations


class DeliveryEngineError(Exception):
    """Base class for all engine errors."""


class SchemaMismatchError(DeliveryEngineError):
    """The persistence layer reported a missing column or table."""

    def __init__(self, message: str, *, operation: str | None = None):
        super().__init__(message)
        self.operation = operation


class UpstreamError(DeliveryEngineError):
    """A data-access failure that is not a schema mismatch."""

    def __init__(self, message: str, *, operation: str | None = None):
        super().__init__(message)
        self.operation = operation


class UnknownDeliveryMethodError(DeliveryEngineError, KeyError):
    """No strategy is registered for the requested delivery method."""


class DuplicateStrategyError(DeliveryEngineError, ValueError):
    """A strategy for this delivery method is already registered."""


class UnknownQuestionError(DeliveryEngineError, LookupError):
    """An attempt referenced a question the repository does not know."""
