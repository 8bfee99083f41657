"""Migration orchestration.

The driver pages through the source view, filters and truncates each page,
splits it into sub-batches and resolves every sub-batch (enrich, generate,
apply, retry conflicts) before fetching the next page. Exactly one store
call is in flight at any time.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from typing import TYPE_CHECKING, Any

from .applier import BulkApplier
from .batching import chunked
from .callbacks import as_async
from .changes import ChangeGenerator
from .config import MigrationConfig
from .enricher import RowEnricher
from .exceptions import MigrationAbortedError
from .progress import LoggingReporter, MigrationProgress, ProgressReporter
from .retry import ConflictRetrier
from .scanner import ViewScanner

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .rows import Cursor, Row
    from .stores.base import DocumentStore

logger = logging.getLogger(__name__)


class MigrationDriver:
    """Runs one migration over a document store.

    Args:
        store: Document store to read from and write to
        config: Migration options
        reporter: Progress reporter, defaults to :class:`LoggingReporter`
        cursor: Optional position to resume the view scan from

    Example:
        ```python
        def changes(row, docs):
            return {**row.doc, "migrated": True}

        config = MigrationConfig("app", "by_type", changes, {"include_docs": True})
        async with MemoryDocumentStore(documents=docs) as store:
            progress = await MigrationDriver(store, config).run()
        print(progress.migrated)
        ```
    """

    def __init__(
        self,
        store: DocumentStore,
        config: MigrationConfig,
        reporter: ProgressReporter | None = None,
        cursor: Cursor | None = None,
    ):
        self.store = store
        self.config = config
        self.reporter = reporter or LoggingReporter()
        self.progress = MigrationProgress()

        self.scanner = ViewScanner(
            store,
            config.source_design_doc,
            config.source_view,
            config.source_params,
            page_size=config.page_size,
            cursor=cursor,
        )
        self.enricher = RowEnricher(store, config.fetch_keys)
        self.applier = BulkApplier(store)
        self.retrier = ConflictRetrier(
            ChangeGenerator(config.changes),
            self.applier,
            retry_conflicts=config.retry_conflicts,
            resubmit=config.resubmit,
            on_attempt=self._attempt_finished,
            on_failure=self._row_failed,
        )
        self.source_filter = (
            as_async(config.source_filter) if config.source_filter is not None else None
        )
        self._on_complete = (
            as_async(config.on_complete) if config.on_complete is not None else None
        )

    async def run(self) -> MigrationProgress:
        """Run the migration to completion.

        ``on_complete`` is invoked exactly once, with the fatal error or None.

        Returns:
            Final progress statistics

        Raises:
            MigrationAbortedError: On any fatal error; the cause is chained
        """
        self.progress.start()
        logger.info(
            "Starting migration of %s/%s (batch size %d, limit %s)",
            self.config.source_design_doc, self.config.source_view,
            self.config.batch_size, self.config.limit,
        )

        error: MigrationAbortedError | None = None
        try:
            await self._run()
        except Exception as e:
            error = MigrationAbortedError(
                e,
                page=self.scanner.requests,
                migrated=self.progress.migrated,
                cursor=self.scanner.cursor,
            )

        self.progress.bulk_writes = self.applier.writes
        self.progress.finish()
        self.reporter.finished(self.progress, error)
        if self._on_complete is not None:
            try:
                await self._on_complete(error)
            except Exception as hook_error:
                if error is None:
                    raise
                # The fatal cause wins over a failing completion hook
                logger.error("on_complete failed after a fatal error: %s", hook_error)
                error.context["on_complete_error"] = repr(hook_error)

        if error is not None:
            raise error from error.cause
        logger.info("Migration complete:\n%s", self.progress.get_summary())
        return self.progress

    async def _run(self) -> None:
        remaining = self.config.limit
        if remaining == 0:
            logger.info("Row limit is 0, nothing to migrate")
            return

        async with aclosing(self.scanner.pages()) as pages:
            async for page in pages:
                rows = await self._filter(page)

                exhausted = False
                if remaining is not None:
                    if len(rows) >= remaining:
                        rows = rows[:remaining]
                        exhausted = True
                    remaining -= len(rows)

                if rows:
                    await self._process_page(rows)

                if exhausted:
                    logger.info("Row limit of %d reached", self.config.limit)
                    break

    async def _filter(self, page: Sequence[Row]) -> list[Row]:
        if self.source_filter is None:
            return list(page)

        kept = []
        for row in page:
            try:
                keep = await self.source_filter(row)
            except Exception as e:
                # A failing filter excludes the row and never aborts the run
                self.progress.record_failure(f"source_filter failed: {e}", row, e)
                self.reporter.row_failed(row, e)
                continue
            if keep:
                kept.append(row)
            else:
                self.progress.filtered += 1
        return kept

    async def _process_page(self, rows: list[Row]) -> None:
        self.progress.begin_page(len(rows))
        self.reporter.page_started(self.progress)

        for batch in chunked(rows, self.config.batch_size):
            await self.enricher.enrich(batch)
            outcome = await self.retrier.process(batch)
            self.progress.bulk_writes = self.applier.writes
            for row, result in outcome.write_errors:
                self.progress.add_warning(
                    f"Row {row!r}: write of {result.id} failed with {result.error}"
                )

    def _attempt_finished(self, attempt: int, size: int, succeeded: int) -> None:
        self.progress.record_attempt(attempt, succeeded)
        self.reporter.attempt_finished(self.progress, succeeded)

    def _row_failed(self, row: Row, reason: str) -> None:
        self.progress.record_failure(reason, row)
        self.reporter.row_failed(row, reason)


async def migrate(
    store: DocumentStore,
    config: MigrationConfig | None = None,
    reporter: ProgressReporter | None = None,
    cursor: Cursor | None = None,
    **options: Any,
) -> MigrationProgress:
    """Run a migration; options are :class:`MigrationConfig` fields.

    Example:
        ```python
        progress = await migrate(
            store,
            source_design_doc="orders",
            source_view="by_customer",
            changes=lambda row, docs: {**row.doc, "customer": docs[0]["name"]},
            fetch_keys=lambda row: row.value["customer_id"],
            source_params={"include_docs": True},
        )
        ```
    """
    if config is None:
        config = MigrationConfig(**options)
    elif options:
        raise TypeError("pass either a MigrationConfig or keyword options, not both")
    return await MigrationDriver(store, config, reporter=reporter, cursor=cursor).run()


def migrate_sync(
    store: DocumentStore,
    config: MigrationConfig | None = None,
    reporter: ProgressReporter | None = None,
    cursor: Cursor | None = None,
    **options: Any,
) -> MigrationProgress:
    """Blocking wrapper around :func:`migrate` for non-async callers."""
    return asyncio.run(migrate(store, config, reporter=reporter, cursor=cursor, **options))
