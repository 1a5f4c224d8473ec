"""
Error taxonomy and the result envelope returned by league operations.

Core operations never let a LeagueError escape: they return a ServiceResult
and the caller branches on `success`. The HTTP layer turns `result.error`
into an HTTPException using `http_status`.
"""

from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.exc import DBAPIError, SQLAlchemyError

# Postgres SQLSTATEs for serialization failure, deadlock and lock timeout
_CONCURRENCY_SQLSTATES = {"40001", "40P01", "55P03"}


class LeagueError(Exception):
    """Base class for matchmaking and match-lifecycle errors."""

    code = "league_error"
    http_status = 500
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "retryable": self.retryable}


class ValidationError(LeagueError):
    code = "validation_error"
    http_status = 400


class UnauthorizedError(LeagueError):
    code = "unauthorized"
    http_status = 401


class ForbiddenError(LeagueError):
    code = "forbidden"
    http_status = 403


class NotFoundError(LeagueError):
    code = "not_found"
    http_status = 404


class InvalidStateError(LeagueError):
    code = "invalid_state"
    http_status = 400


class SelfConfirmError(InvalidStateError):
    code = "self_confirm"


class ConflictError(LeagueError):
    """Optimistic-concurrency loss. Safe for the caller to retry."""

    code = "conflict"
    http_status = 409
    retryable = True


class NoOpponentError(LeagueError):
    """Search exhausted. A normal negative outcome, not a failure of the system."""

    code = "no_opponent"
    http_status = 404


class PersistenceError(LeagueError):
    code = "persistence_error"
    http_status = 500


@dataclass
class ServiceResult:
    """Outcome of a league operation: success flag plus value or error."""

    success: bool
    value: Any = None
    error: Optional[LeagueError] = None

    @classmethod
    def ok(cls, value: Any = None) -> "ServiceResult":
        return cls(success=True, value=value)

    @classmethod
    def fail(cls, error: LeagueError) -> "ServiceResult":
        return cls(success=False, error=error)

    @property
    def message(self) -> Optional[str]:
        return self.error.message if self.error else None


def is_concurrency_failure(exc: SQLAlchemyError) -> bool:
    """True when a driver error means another transaction won a race for the same rows."""
    if not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _CONCURRENCY_SQLSTATES:
        return True
    # SQLite reports writer contention as "database is locked"
    return "locked" in str(orig).lower()


def error_from_db(exc: SQLAlchemyError, conflict_message: str) -> LeagueError:
    """Map a driver error raised inside a transaction to the taxonomy."""
    if is_concurrency_failure(exc):
        return ConflictError(conflict_message)
    return PersistenceError("The operation could not be saved. Please try again.")
