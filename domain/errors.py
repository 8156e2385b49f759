from __future__ import annotations

from enum import Enum


class RejectionKind(str, Enum):
    """Why an action was refused. Every kind is surfaced to the user as a reply."""

    NOT_REGISTERED = "not_registered"
    DUPLICATE_IDENTITY = "duplicate_identity"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    INELIGIBLE_WINDOW = "ineligible_window"
    ALREADY_ACTED_TODAY = "already_acted_today"
    LIMIT_EXCEEDED = "limit_exceeded"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    INACTIVE_ACCOUNT = "inactive_account"
    SESSION_LOST = "session_lost"
    STORAGE_FAILURE = "storage_failure"


class LedgerError(Exception):
    """Base class for errors raised below the application layer."""


class StorageError(LedgerError):
    """The underlying persistence call failed; nothing was committed."""


class DuplicateIdentityError(LedgerError):
    """A user with the same uid or username already exists."""


class InsufficientFundsError(LedgerError):
    """A conditional debit was refused because the balance would go negative."""


class SessionLostError(LedgerError):
    """A dialog session existed but expired before the user finished it."""
