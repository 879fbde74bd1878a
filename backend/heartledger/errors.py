"""
Ledger error taxonomy.

Store failures travel as exceptions inside the storage layer and are turned
into a LedgerResult at the ledger boundary, so callers branch on
`result.error` instead of catching.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    NOT_AUTHENTICATED = "not_authenticated"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    STORE_UNAVAILABLE = "store_unavailable"
    WRITE_FAILED = "write_failed"
    CONFLICT = "conflict"
    LEADERBOARD_SYNC_FAILED = "leaderboard_sync_failed"


class LedgerStoreError(Exception):
    """Base class for all persistence failures."""
    kind: ErrorKind = ErrorKind.WRITE_FAILED


class StoreUnavailableError(LedgerStoreError):
    kind = ErrorKind.STORE_UNAVAILABLE


class WriteFailedError(LedgerStoreError):
    kind = ErrorKind.WRITE_FAILED


class NotFoundError(WriteFailedError):
    """Record vanished between read and write."""


class AlreadyExistsError(WriteFailedError):
    pass


class VersionConflictError(LedgerStoreError):
    """Conditional update lost to a newer write."""
    kind = ErrorKind.CONFLICT


@dataclass(frozen=True)
class LedgerResult:
    ok: bool
    error: ErrorKind | None = None
    amount: int = 0
    leaderboard_synced: bool = True

    def __bool__(self) -> bool:
        return self.ok

    @classmethod
    def success(cls, amount: int = 0, leaderboard_synced: bool = True) -> LedgerResult:
        return cls(ok=True, amount=amount, leaderboard_synced=leaderboard_synced)

    @classmethod
    def failure(cls, error: ErrorKind) -> LedgerResult:
        return cls(ok=False, error=error)
