"""Migration progress tracking and reporting, separate from migration logic."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.progress import BarColumn, Progress, TaskID, TextColumn

if TYPE_CHECKING:
    from .rows import Row

logger = logging.getLogger(__name__)


@dataclass
class MigrationProgress:
    """Track migration progress and statistics.

    ``migrated`` is the cumulative count of rows whose changes were applied;
    ``page_rows``/``page_done`` describe the page currently in flight.
    """

    pages: int = 0
    total: int = 0
    migrated: int = 0
    failed: int = 0
    filtered: int = 0
    bulk_writes: int = 0
    retries: int = 0
    page_rows: int = 0
    page_done: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    start_time: float | None = None
    end_time: float | None = None

    def start(self) -> MigrationProgress:
        """Mark migration as started.

        Returns:
            Self for chaining
        """
        self.start_time = time.time()
        return self

    def finish(self) -> MigrationProgress:
        """Mark migration as finished.

        Returns:
            Self for chaining
        """
        self.end_time = time.time()
        return self

    @property
    def duration(self) -> float:
        """Migration duration in seconds, or 0 if not started."""
        if self.start_time is None:
            return 0.0
        end = self.end_time if self.end_time else time.time()
        return end - self.start_time

    @property
    def has_errors(self) -> bool:
        return self.failed > 0 or len(self.errors) > 0

    def begin_page(self, rows: int) -> MigrationProgress:
        self.pages += 1
        self.total += rows
        self.page_rows = rows
        self.page_done = 0
        return self

    def record_attempt(self, attempt: int, succeeded: int) -> MigrationProgress:
        """Count the rows that succeeded in one sub-batch attempt."""
        if attempt > 0:
            self.retries += 1
        self.migrated += succeeded
        self.page_done += succeeded
        return self

    def record_failure(
        self,
        error: str,
        row: Row | None = None,
        exception: Exception | None = None,
    ) -> MigrationProgress:
        """Record a row that was not migrated.

        Args:
            error: Error message
            row: Optional failed row
            exception: Optional exception that caused failure

        Returns:
            Self for chaining
        """
        self.failed += 1
        error_info: dict[str, Any] = {
            "error": error,
            "row_id": row.id if row is not None else None,
            "row_key": row.key if row is not None else None,
            "timestamp": time.time(),
        }
        if exception:
            error_info["exception"] = str(exception)
            error_info["exception_type"] = type(exception).__name__
        self.errors.append(error_info)
        return self

    def add_warning(self, warning: str) -> MigrationProgress:
        self.warnings.append(warning)
        return self

    def get_summary(self) -> str:
        """Get a human-readable summary of the migration progress."""
        lines = [
            f"Pages: {self.pages} | Rows: {self.total}",
            f"Migrated: {self.migrated} | Failed: {self.failed} | Filtered: {self.filtered}",
            f"Bulk writes: {self.bulk_writes} | Retries: {self.retries}",
        ]
        if self.duration > 0:
            rate = self.migrated / self.duration
            lines.append(f"Duration: {self.duration:.2f}s | Rate: {rate:.1f} rows/s")
        if self.warnings:
            lines.append(f"Warnings: {len(self.warnings)}")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pages": self.pages,
            "total": self.total,
            "migrated": self.migrated,
            "failed": self.failed,
            "filtered": self.filtered,
            "bulk_writes": self.bulk_writes,
            "retries": self.retries,
            "duration": self.duration,
            "errors": self.errors,
            "warnings": self.warnings,
            "has_errors": self.has_errors,
        }

    def __str__(self) -> str:
        return self.get_summary()

    def __repr__(self) -> str:
        return (
            f"MigrationProgress(pages={self.pages}, total={self.total}, "
            f"migrated={self.migrated}, failed={self.failed})"
        )


class ProgressReporter:
    """Receives progress events from the driver. Methods default to no-ops."""

    def page_started(self, progress: MigrationProgress) -> None:  # noqa: B027
        pass

    def attempt_finished(self, progress: MigrationProgress, succeeded: int) -> None:  # noqa: B027
        pass

    def row_failed(self, row: Row, reason: Any) -> None:  # noqa: B027
        pass

    def finished(self, progress: MigrationProgress, error: Exception | None) -> None:  # noqa: B027
        pass


class LoggingReporter(ProgressReporter):
    """Reports progress through the module logger."""

    def page_started(self, progress: MigrationProgress) -> None:
        logger.info("Batch %d, %d rows", progress.pages, progress.page_rows)

    def attempt_finished(self, progress: MigrationProgress, succeeded: int) -> None:
        logger.debug(
            "Batch %d: %d/%d rows, total %d rows migrated",
            progress.pages, progress.page_done, progress.page_rows, progress.migrated,
        )

    def row_failed(self, row: Row, reason: Any) -> None:
        logger.error("Failed migrating row %r: %s", row, reason)

    def finished(self, progress: MigrationProgress, error: Exception | None) -> None:
        if error is not None:
            logger.error("Critical error running migration: %s", error)
        else:
            logger.info("Migration finished: %d rows migrated", progress.migrated)


class RichProgressReporter(ProgressReporter):
    """Renders a progress bar per page with the cumulative migrated count.

    Example:
        ```python
        with RichProgressReporter() as reporter:
            await MigrationDriver(store, config, reporter=reporter).run()
        ```
    """

    def __init__(self, console: Console | None = None):
        self.console = console or Console(stderr=True)
        self._progress: Progress = Progress(
            TextColumn("Batch {task.fields[batch]}, {task.total:.0f} rows"),
            BarColumn(bar_width=15),
            TextColumn("Total {task.fields[migrated]} rows migrated"),
            console=self.console,
        )
        self._task: TaskID | None = None

    def __enter__(self) -> RichProgressReporter:
        self._progress.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self._progress.stop()

    def page_started(self, progress: MigrationProgress) -> None:
        if self._task is not None:
            self._progress.remove_task(self._task)
        self._task = self._progress.add_task(
            "migrate", total=progress.page_rows, batch=progress.pages, migrated=progress.migrated
        )

    def attempt_finished(self, progress: MigrationProgress, succeeded: int) -> None:
        if self._task is not None:
            self._progress.update(
                self._task, completed=progress.page_done, migrated=progress.migrated
            )

    def row_failed(self, row: Row, reason: Any) -> None:
        self.console.print(f"[red]Failed migrating row {row!r}: {reason}[/red]")

    def finished(self, progress: MigrationProgress, error: Exception | None) -> None:
        if error is not None:
            self.console.print(f"[red]Critical error running migration: {error}[/red]")
