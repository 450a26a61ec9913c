"""Exceptions raised by the quote pricing engine."""


class QuoteEngineError(Exception):
    """Base exception for all pricing engine errors."""

    def __init__(self, message="Quote engine error", payload=None):
        super().__init__(message)
        self.message = message
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv["message"] = self.message
        rv["error"] = type(self).__name__
        return rv


class ValidationError(QuoteEngineError, ValueError):
    """Malformed or out-of-range input; the whole computation is rejected."""


class CatalogReferenceError(ValidationError):
    """A line item references a catalog entry that the snapshot does not hold."""

    def __init__(self, category, catalog_id, item_id=None):
        message = f"No {category} catalog entry with id '{catalog_id}'"
        if item_id:
            message += f" (line item '{item_id}')"
        super().__init__(message, payload={"category": category, "catalog_id": catalog_id})


class DistributionUndefined(QuoteEngineError):
    """Ancillary cost present but there are no product lines to receive it."""


class ReconciliationMismatch(QuoteEngineError):
    """Redistributed lines do not sum to the authoritative total."""

    def __init__(self, expected, actual, delta):
        message = (
            f"Breakdown does not reconcile: lines sum to {actual:.2f}, "
            f"total is {expected:.2f} (delta {delta:+.2f})"
        )
        super().__init__(message, payload={"expected": expected, "actual": actual, "delta": delta})
