"""Keyset-paginated view scanning."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .rows import Cursor, Row

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping

    from .stores.base import DocumentStore

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 1000


class ViewScanner:
    """Pages through a view with a startkey/startkey_docid cursor.

    Each request asks for ``page_size + 1`` rows. The extra row is never
    yielded; it tells whether more data exists and becomes the cursor for
    the next request. ``cursor`` names the start of the page being fetched
    or processed. It only moves when the consumer asks for the next page, so
    a failed request or a consumer that fails on a page leaves it there.

    The base parameters are copied for every request and never modified.

    Example:
        ```python
        scanner = ViewScanner(store, "app", "by_type", {"include_docs": True}, page_size=500)
        async for page in scanner.pages():
            await handle(page)
        ```
    """

    def __init__(
        self,
        store: DocumentStore,
        design_doc: str,
        view: str,
        params: Mapping[str, Any] | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        cursor: Cursor | None = None,
    ):
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self.store = store
        self.design_doc = design_doc
        self.view = view
        self.params: dict[str, Any] = dict(params or {})
        self.page_size = page_size
        self.cursor = cursor
        self.requests = 0

    def build_params(self, cursor: Cursor | None) -> dict[str, Any]:
        """Query parameters for the page starting at ``cursor``."""
        params = dict(self.params)
        params["limit"] = self.page_size + 1
        if cursor is not None:
            for name in ("start_key", "startkey_docid", "start_key_doc_id"):
                params.pop(name, None)
            params.update(cursor.to_params())
        return params

    async def pages(self) -> AsyncIterator[list[Row]]:
        """Yield pages of rows until the view is exhausted.

        Not restartable; create a new scanner with a cursor to resume.
        """
        cursor = self.cursor
        while True:
            self.cursor = cursor
            params = self.build_params(cursor)
            self.requests += 1
            result = await self.store.query_view(self.design_doc, self.view, params)
            rows = result.rows
            logger.debug(
                "Fetched %d rows from %s/%s (request %d)",
                len(rows), self.design_doc, self.view, self.requests,
            )

            page = [Row.from_view_row(row) for row in rows[:self.page_size]]
            lookahead = rows[self.page_size] if len(rows) > self.page_size else None

            if page:
                yield page

            if lookahead is None:
                return
            cursor = Cursor.after(Row.from_view_row(lookahead))
