"""
Error types for the form graph engine.

Structural graph problems never show up here: traversal resolves them to
"no further step". These types cover malformed input, persistence and
submission failures.
"""


class FormFlowError(Exception):
    """Base class for domain errors."""
    pass


class GraphValidationError(FormFlowError, ValueError):
    """
    Raised when a raw graph payload cannot be turned into a FormGraph.

    Attributes:
        errors: Every problem found, not just the first one
    """

    def __init__(self, errors):
        self.errors = list(errors)
        message = "Graph validation failed:\n  - " + "\n  - ".join(self.errors)
        super().__init__(message)


class PersistenceError(FormFlowError):
    # Save/fetch failures. Retried by the coordinators, never fatal to a session.
    pass


class StorageQuotaExceeded(PersistenceError):
    # Local storage refused a write.
    pass


class InventoryUnavailable(PersistenceError):
    # Fresh stock snapshot could not be fetched.
    pass


class SubmissionFailed(FormFlowError):
    # Submission sink rejected the booking after all retries.
    pass
