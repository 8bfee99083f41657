"""Per-row enrichment with related documents."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .batching import grouped_call
from .callbacks import as_async, as_list
from .exceptions import CallbackError

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from .rows import Row
    from .stores.base import DocumentStore

logger = logging.getLogger(__name__)


class RowEnricher:
    """Fetches the extra documents each row asks for.

    ``fetch_keys(row)`` returns a document id, a list of ids, or ``None``.
    It is called sequentially in row order. All ids of a sub-batch are
    fetched with one multi-get and handed back to their rows in request
    order, ``None`` marking a missing document.
    """

    def __init__(
        self,
        store: DocumentStore,
        fetch_keys: Callable[[Row], Any] | None = None,
    ):
        self.store = store
        self.fetch_keys = as_async(fetch_keys) if fetch_keys is not None else None

    async def enrich(self, rows: Sequence[Row]) -> None:
        """Set ``extra_keys`` and ``extra_docs`` on every row.

        Raises:
            CallbackError: If ``fetch_keys`` fails for any row
            StoreError: If the multi-get fails
        """
        if self.fetch_keys is None:
            for row in rows:
                row.extra_keys = []
                row.extra_docs = []
            return

        for row in rows:
            try:
                keys = await self.fetch_keys(row)
            except Exception as e:
                raise CallbackError("fetch_keys", row, e) from e
            row.extra_keys = as_list(keys)

        docs = await grouped_call(
            [row.extra_keys for row in rows], self.store.multi_get, operation="multi_get"
        )
        for row, row_docs in zip(rows, docs):
            row.extra_docs = row_docs

        logger.debug(
            "Enriched %d rows with %d documents", len(rows), sum(len(d) for d in docs)
        )
