"""
Error taxonomy for the statement import pipeline.

Service modules raise these; main.py turns any StatementError into a JSON
response carrying its status code.
"""


class StatementError(Exception):
    """Base class. `status_code` is the HTTP status the API answers with."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(StatementError):
    """Bad input at the boundary (empty file, unknown category, bad date range)."""

    status_code = 400


class NotFoundError(StatementError):
    status_code = 404


class InvalidTransitionError(StatementError):
    """Illegal upload or line state change requested by a caller."""

    status_code = 409


class ConcurrentImportError(StatementError):
    """An import is already running for this upload."""

    status_code = 409


class UnparsableDocumentError(StatementError):
    """Raised by the document parser for unrecognized or empty statements."""

    status_code = 422


class LedgerValidationError(StatementError):
    """The ledger rejected one posting (closed period, invalid account...)."""

    status_code = 422


class LedgerUnavailableError(StatementError):
    """The ledger could not be reached at all."""

    status_code = 503
