"""Error types raised by the sync engine.

Every error carries a stable ``code`` and the HTTP status an outer API layer
should map it to. Per-record structural problems are never raised; they are
counted as skipped records instead.
"""

from typing import Any


class AppError(Exception):
    """Base class for errors the sync engine raises deliberately."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": {"code": self.code, "message": self.message},
        }


class ValidationError(AppError):
    """The caller passed input the engine refuses to act on.

    Raised for a batch that is not a list, an unknown webhook resource, or a
    retry request against a sync log that is not in the failed state.
    """

    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(AppError):
    """The referenced sync log does not exist for this tenant."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message)


class SyncError(AppError):
    """A batch failed at the storage level and was rolled back as a whole.

    The underlying exception is always chained as ``__cause__``.
    """

    code = "SYNC_ERROR"
    status_code = 500
