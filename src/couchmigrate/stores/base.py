"""Abstract document store interface consumed by the migration engine."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from ..rows import DocumentChange, ViewResult, WriteResult


class DocumentStore(ABC):
    """Abstract base class for document store clients.

    The engine needs three operations: a paginated view query, a key-based
    multi-get and a bulk write. Implementations own connection handling and
    timeouts.

    Example:
        ```python
        from couchmigrate.stores import CouchDBStore

        async with CouchDBStore("http://localhost:5984", "orders") as store:
            result = await store.query_view("orders", "by_customer", {"limit": 10})
            docs = await store.multi_get([row["id"] for row in result.rows])
            results = await store.bulk_write([{**doc, "migrated": True} for doc in docs])
        ```
    """

    def __init__(self, config: dict[str, Any] | None = None):
        self.config = config or {}

    @abstractmethod
    async def query_view(
        self,
        design_doc: str,
        view: str,
        params: Mapping[str, Any] | None = None,
    ) -> ViewResult:
        """Query a view.

        Args:
            design_doc: Design document name (without the ``_design/`` prefix)
            view: View name
            params: View query parameters (``limit``, ``startkey``,
                ``startkey_docid``, ``include_docs``, ...)

        Returns:
            ViewResult with rows shaped ``{"key", "id", "value", "doc"}``
        """
        raise NotImplementedError

    @abstractmethod
    async def multi_get(self, keys: Sequence[str]) -> list[dict[str, Any] | None]:
        """Fetch documents by id.

        Args:
            keys: Document ids

        Returns:
            One entry per key in request order, ``None`` for missing documents
        """
        raise NotImplementedError

    @abstractmethod
    async def bulk_write(self, docs: Sequence[DocumentChange]) -> list[WriteResult]:
        """Write documents in one request.

        Args:
            docs: Document bodies including ``_id``/``_rev`` where known

        Returns:
            One WriteResult per document in submission order
        """
        raise NotImplementedError

    async def connect(self) -> None:  # noqa: B027
        """Open connections. Override in subclasses if needed."""

    async def close(self) -> None:  # noqa: B027
        """Release connections. Override in subclasses if needed."""

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
