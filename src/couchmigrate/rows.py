"""Data model shared by the migration pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

#: A document mutation as submitted to the bulk-write endpoint.
DocumentChange = dict[str, Any]

CONFLICT = "conflict"


@dataclass
class Row:
    """One row of a view page.

    ``extra_keys`` and ``extra_docs`` are filled in by enrichment and stay
    positionally aligned: ``extra_docs[i]`` is the document fetched for
    ``extra_keys[i]`` (``None`` when it does not exist).
    """

    key: Any
    value: Any = None
    id: str | None = None
    doc: dict[str, Any] | None = None
    extra_keys: list[Any] = field(default_factory=list)
    extra_docs: list[dict[str, Any] | None] = field(default_factory=list)

    @classmethod
    def from_view_row(cls, data: dict[str, Any]) -> Row:
        """Build a row from a raw view row mapping."""
        return cls(
            key=data.get("key"),
            value=data.get("value"),
            id=data.get("id"),
            doc=data.get("doc"),
        )

    def __repr__(self) -> str:
        return f"Row(id={self.id!r}, key={self.key!r})"


@dataclass(frozen=True)
class Cursor:
    """Keyset position of a paginated view scan.

    ``doc_id`` breaks ties between rows sharing the same key.
    """

    key: Any
    doc_id: str | None = None

    @classmethod
    def after(cls, row: Row) -> Cursor:
        """Cursor positioned at ``row`` (the first row of the next page)."""
        return cls(key=row.key, doc_id=row.id)

    def to_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {"startkey": self.key}
        if self.doc_id is not None:
            params["startkey_docid"] = self.doc_id
        return params


@dataclass
class ViewResult:
    """Result of a view query."""

    rows: list[dict[str, Any]]
    total_rows: int | None = None
    offset: int | None = None

    def __len__(self) -> int:
        return len(self.rows)


@dataclass(frozen=True)
class WriteResult:
    """Outcome of one document change in a bulk write."""

    id: str | None = None
    rev: str | None = None
    error: str | None = None
    reason: str | None = None

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> WriteResult:
        return cls(
            id=data.get("id"),
            rev=data.get("rev"),
            error=data.get("error"),
            reason=data.get("reason"),
        )

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def is_conflict(self) -> bool:
        return self.error == CONFLICT
