"""Conflict-aware retry of sub-batches.

A row is retried when any of its write results is a conflict. Retrying
re-derives the row's changes from scratch (the enriched documents fetched for
the first attempt are reused) and submits them in a new bulk write that only
contains the conflicting rows. After ``retry_conflicts`` retries the rows
that still conflict are reported as permanent failures.

Resubmission policies:

- ``"row"``: every change the row regenerates is submitted again, including
  changes that already wrote in an earlier attempt. The store must accept
  those writes (they normally fail with a conflict of their own unless the
  callback produces fresh revisions).
- ``"conflicted"``: regenerated changes whose ``_id`` already wrote
  successfully for that row are dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from .applier import BulkApplier
    from .changes import ChangeGenerator
    from .rows import DocumentChange, Row, WriteResult

logger = logging.getLogger(__name__)

DEFAULT_RETRY_CONFLICTS = 2
RESUBMIT_POLICIES = ("row", "conflicted")


@dataclass
class BatchOutcome:
    """Final state of a resolved sub-batch."""

    succeeded: list[Row] = field(default_factory=list)
    failed: list[Row] = field(default_factory=list)
    write_errors: list[tuple[Row, WriteResult]] = field(default_factory=list)
    attempts: int = 0


class ConflictRetrier:
    """Drives a sub-batch through change generation and bulk writes until it is resolved.

    Args:
        generator: Produces the changes of each row
        applier: Writes the changes
        retry_conflicts: Retry ceiling; ``0`` disables retries
        resubmit: ``"row"`` or ``"conflicted"`` (see module docs)
        on_attempt: Called after every attempt with
            ``(attempt, attempt_size, succeeded_count)``
        on_failure: Called once per permanently failed row with the reason
    """

    def __init__(
        self,
        generator: ChangeGenerator,
        applier: BulkApplier,
        retry_conflicts: int = DEFAULT_RETRY_CONFLICTS,
        resubmit: str = "row",
        on_attempt: Callable[[int, int, int], None] | None = None,
        on_failure: Callable[[Row, str], None] | None = None,
    ):
        if retry_conflicts < 0:
            raise ValueError("retry_conflicts must be non-negative")
        if resubmit not in RESUBMIT_POLICIES:
            raise ValueError(f"resubmit must be one of {RESUBMIT_POLICIES}")
        self.generator = generator
        self.applier = applier
        self.retry_conflicts = retry_conflicts
        self.resubmit = resubmit
        self.on_attempt = on_attempt
        self.on_failure = on_failure

    async def process(self, rows: Sequence[Row]) -> BatchOutcome:
        """Resolve ``rows``: every row ends up succeeded or failed.

        Raises:
            CallbackError: If the changes callback fails
            StoreError: If the bulk write fails
        """
        outcome = BatchOutcome()
        pending = list(rows)
        written: dict[int, set[str]] = {}
        attempt = 0

        while pending:
            outcome.attempts += 1
            changes = await self.generator.generate(pending)
            if self.resubmit == "conflicted":
                changes = [
                    self._drop_written(group, written.get(id(row), set()))
                    for row, group in zip(pending, changes)
                ]
            results = await self.applier.apply(changes)

            retry = []
            for row, group in zip(pending, results):
                if any(result.is_conflict for result in group):
                    retry.append(row)
                    written.setdefault(id(row), set()).update(
                        result.id for result in group if result.ok and result.id
                    )
                    continue
                outcome.succeeded.append(row)
                for result in group:
                    if not result.ok:
                        logger.warning(
                            "Write error for row %r, document %s: %s (%s)",
                            row, result.id, result.error, result.reason,
                        )
                        outcome.write_errors.append((row, result))

            if self.on_attempt is not None:
                self.on_attempt(attempt, len(pending), len(pending) - len(retry))

            if retry and attempt >= self.retry_conflicts:
                for row in retry:
                    logger.error("Failed migrating row %r: conflict after %d attempts",
                                 row, attempt + 1)
                    outcome.failed.append(row)
                    if self.on_failure is not None:
                        self.on_failure(row, "Conflict")
                break

            if retry:
                logger.info("Retrying %d conflicting rows (retry %d of %d)",
                            len(retry), attempt + 1, self.retry_conflicts)
            pending = retry
            attempt += 1

        return outcome

    @staticmethod
    def _drop_written(
        group: list[DocumentChange], written_ids: set[str]
    ) -> list[DocumentChange]:
        if not written_ids:
            return group
        return [change for change in group if change.get("_id") not in written_ids]
