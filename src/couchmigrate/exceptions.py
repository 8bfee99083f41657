"""Exception hierarchy for couchmigrate.

Every error raised by the package derives from :class:`CouchMigrateError`,
which carries an optional context dictionary with structured details about
the failure (row keys, HTTP status, attempt numbers, ...).

Example:
    ```python
    from couchmigrate.exceptions import CouchMigrateError, StoreError

    try:
        progress = await migrate(store, source_design_doc="app", ...)
    except StoreError as e:
        logger.error("Store failed: %s", e)
        if e.context:
            logger.error("Context: %s", e.context)
    except CouchMigrateError as e:
        logger.error("Migration failed: %s", e)
    ```
"""

from __future__ import annotations

from typing import Any


class CouchMigrateError(Exception):
    """Base exception for all couchmigrate errors.

    Attributes:
        context: Dictionary containing contextual information about the error

    Args:
        message: Human-readable error message
        context: Optional dictionary with error context
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.context = context or {}


class ConfigurationError(CouchMigrateError):
    """Raised when migration or store configuration is invalid."""

    def __init__(self, parameter: str, message: str):
        self.parameter = parameter
        super().__init__(
            f"Configuration error for '{parameter}': {message}", context={"parameter": parameter}
        )


class StoreError(CouchMigrateError):
    """Raised when a document store operation fails.

    Covers view query, multi-get and bulk-write failures. Per-document
    conflicts are *not* store errors; they come back as write results.
    """

    def __init__(
        self,
        operation: str,
        message: str,
        status: int | None = None,
        body: Any = None,
    ):
        self.operation = operation
        self.status = status
        self.body = body
        context: dict[str, Any] = {"operation": operation}
        if status is not None:
            context["status"] = status
        super().__init__(f"Store operation '{operation}' failed: {message}", context=context)


class StoreConnectionError(StoreError):
    """Raised when the store cannot be reached."""

    def __init__(self, operation: str, message: str):
        super().__init__(operation, f"connection error: {message}")


class StoreProtocolError(StoreError):
    """Raised when a store response violates the expected protocol."""

    pass


class CallbackError(CouchMigrateError):
    """Raised when a user-supplied row callback fails.

    The original exception is available as ``__cause__``.
    """

    def __init__(self, callback: str, row: Any, error: Exception):
        self.callback = callback
        self.row = row
        self.error = error
        row_id = getattr(row, "id", None)
        row_key = getattr(row, "key", None)
        super().__init__(
            f"Callback '{callback}' failed for row {row_id or row_key!r}: {error}",
            context={"callback": callback, "row_id": row_id, "row_key": row_key},
        )


class MigrationAbortedError(CouchMigrateError):
    """Raised by the driver when a fatal error stops the migration.

    The fatal cause is chained as ``__cause__`` and also kept in ``cause``.
    ``cursor`` is the start of the page that failed; passing it to a new
    driver resumes the scan there.
    """

    def __init__(self, cause: Exception, page: int, migrated: int, cursor: Any = None):
        self.cause = cause
        self.page = page
        self.migrated = migrated
        self.cursor = cursor
        super().__init__(
            f"Migration aborted on page {page} after {migrated} migrated rows: {cause}",
            context={"page": page, "migrated": migrated, "cause_type": type(cause).__name__},
        )


__all__ = [
    "CouchMigrateError",
    "ConfigurationError",
    "StoreError",
    "StoreConnectionError",
    "StoreProtocolError",
    "CallbackError",
    "MigrationAbortedError",
]
