"""Bulk application of document changes."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .batching import grouped_call

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .rows import DocumentChange, WriteResult
    from .stores.base import DocumentStore

logger = logging.getLogger(__name__)


class BulkApplier:
    """Writes a sub-batch's changes with a single bulk write.

    Changes are submitted in row order, then in change order within a row,
    and the write results are regrouped per row with the same counts.
    Per-document errors (including conflicts) are returned, not raised.
    """

    def __init__(self, store: DocumentStore):
        self.store = store
        self.writes = 0

    async def apply(
        self, changes: Sequence[Sequence[DocumentChange]]
    ) -> list[list[WriteResult]]:
        """Submit all changes and return the results grouped per row.

        Raises:
            StoreError: If the bulk write itself fails
            StoreProtocolError: If the result count does not match
        """
        if not any(changes):
            return [[] for _ in changes]

        self.writes += 1
        results = await grouped_call(changes, self.store.bulk_write, operation="bulk_write")
        logger.debug(
            "Bulk write %d: %d documents for %d rows",
            self.writes, sum(len(group) for group in changes), len(changes),
        )
        return results
