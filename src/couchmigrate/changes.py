"""Derivation of document changes from rows."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .callbacks import as_async, as_list
from .exceptions import CallbackError

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from .rows import DocumentChange, Row


class ChangeGenerator:
    """Runs the ``changes(row, docs)`` callback over a sub-batch.

    Rows are processed one after another; row ``i`` finishes before row
    ``i + 1`` starts. Each result is normalized to a list of changes.
    """

    def __init__(self, changes: Callable[[Row, list[Any]], Any]):
        if changes is None:
            raise ValueError("changes callback is required")
        self.changes = as_async(changes)

    async def generate(self, rows: Sequence[Row]) -> list[list[DocumentChange]]:
        """Return the list of changes for each row.

        Raises:
            CallbackError: If the callback fails for any row
        """
        result = []
        for row in rows:
            try:
                changes = await self.changes(row, row.extra_docs)
            except Exception as e:
                raise CallbackError("changes", row, e) from e
            result.append(as_list(changes))
        return result
