class LedgerError(Exception):
    """Base class for errors raised by ledger operations."""

    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(LedgerError):
    status_code = 400


class ForbiddenError(LedgerError):
    status_code = 403


class NotFoundError(LedgerError):
    status_code = 404


class ConflictError(LedgerError):
    status_code = 409
