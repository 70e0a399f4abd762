"""Error taxonomy for watch status operations."""

from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError


class WatchStatusError(Exception):
    """Base class carrying the failing operation and the underlying cause."""

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        if self.operation:
            return f"{self.message} [{self.operation}]"
        return self.message


class NotFoundError(WatchStatusError):
    """The referenced show, season, episode or movie does not exist."""


class InvalidStatusError(WatchStatusError):
    """The status is unknown or not allowed for the entity kind."""


class NoAffectedRowsError(WatchStatusError):
    """A write that had to touch a status row touched none."""


class StatusUpdateError(WatchStatusError):
    """A cascade reported ``success=False``."""


class DatabaseError(WatchStatusError):
    """The database or connection failed underneath an operation."""


def handle_database_error(error: BaseException, context: str) -> WatchStatusError:
    """Return the error to raise for a failure while ``context`` was running.

    Domain errors pass through untouched; anything else becomes a
    :class:`DatabaseError` with the context in its message.
    """

    if isinstance(error, WatchStatusError):
        return error
    if isinstance(error, SQLAlchemyError):
        return DatabaseError(f"Database error {context}: {error}", cause=error)
    return DatabaseError(f"Unknown database error {context}: {error}", cause=error)


def handle_service_error(error: BaseException, operation: str) -> WatchStatusError:
    """Tag ``error`` with the service operation that triggered it."""

    wrapped = handle_database_error(error, f"in {operation}")
    if wrapped.operation is None:
        wrapped.operation = operation
    return wrapped
