from __future__ import annotations


class LedgerError(Exception):
    pass


class ValidationError(LedgerError):
    pass


class NotFoundError(LedgerError):
    pass


class InvalidTransitionError(LedgerError):
    pass


class DeclinedError(LedgerError):
    """Expected refusal raised inside an atomic scope to abort it without writes."""

    reason = "declined"


class InsufficientFundsError(DeclinedError):
    reason = "insufficient_funds"


class AlreadyOwnedError(DeclinedError):
    reason = "already_owned"


class TransactionConflictError(LedgerError):
    pass


class BackendUnavailableError(LedgerError):
    pass
