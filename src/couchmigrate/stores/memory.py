"""In-memory document store with CouchDB-like semantics."""

from __future__ import annotations

import copy
import hashlib
import json
import logging
import uuid
from typing import TYPE_CHECKING, Any

from ..exceptions import StoreError
from ..rows import CONFLICT, ViewResult, WriteResult
from .base import DocumentStore

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping, Sequence

    from ..rows import DocumentChange

    MapFunction = Callable[[dict[str, Any]], Iterable[tuple[Any, Any]]]

logger = logging.getLogger(__name__)


def collation_key(value: Any) -> tuple:
    """Sort key following CouchDB view collation.

    null < false < true < numbers < strings < arrays < objects. Strings
    compare by code point rather than ICU rules.
    """
    if value is None:
        return (0,)
    if value is False:
        return (1,)
    if value is True:
        return (2,)
    if isinstance(value, (int, float)):
        return (3, value)
    if isinstance(value, str):
        return (4, value)
    if isinstance(value, (list, tuple)):
        return (5, tuple(collation_key(item) for item in value))
    if isinstance(value, dict):
        return (6, tuple((collation_key(k), collation_key(v)) for k, v in value.items()))
    raise TypeError(f"Value of type {type(value).__name__} cannot be used as a view key")


def field_view(field_name: str) -> MapFunction:
    """Map function emitting ``(doc[field_name], None)`` for documents having the field."""

    def map_fn(doc: dict[str, Any]) -> list[tuple[Any, Any]]:
        if field_name in doc:
            return [(doc[field_name], None)]
        return []

    return map_fn


def _next_rev(current: str | None, doc: Mapping[str, Any]) -> str:
    generation = int(current.split("-", 1)[0]) + 1 if current else 1
    body = json.dumps(doc, sort_keys=True, default=str).encode("utf-8")
    return f"{generation}-{hashlib.md5(body).hexdigest()}"  # noqa: S324


class MemoryDocumentStore(DocumentStore):
    """Document store kept in a dictionary.

    Views are Python map functions registered with :meth:`define_view`;
    a map function receives a document and returns ``(key, value)`` pairs.
    Design documents (ids starting with ``_design/``) are not mapped.

    Example:
        ```python
        store = MemoryDocumentStore()
        store.put({"_id": "a", "type": "user"})
        store.define_view("app", "by_type", lambda doc: [(doc.get("type"), None)])

        result = await store.query_view("app", "by_type", {"include_docs": True})
        ```
    """

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        documents: Iterable[dict[str, Any]] | None = None,
    ):
        super().__init__(config)
        self._docs: dict[str, dict[str, Any]] = {}
        self._views: dict[tuple[str, str], MapFunction] = {}
        for doc in documents or self.config.get("documents", []):
            self.put(doc)
        for name, field_name in self.config.get("views", {}).items():
            design_doc, _, view = name.partition("/")
            self.define_view(design_doc, view, field_view(field_name))

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> MemoryDocumentStore:
        return cls(config)

    def __len__(self) -> int:
        return len(self._docs)

    def put(self, doc: dict[str, Any]) -> str:
        """Store ``doc`` unconditionally and return its new revision."""
        doc = copy.deepcopy(doc)
        doc_id = doc.setdefault("_id", uuid.uuid4().hex)
        current = self._docs.get(doc_id)
        doc.pop("_rev", None)
        doc["_rev"] = _next_rev(current["_rev"] if current else None, doc)
        self._docs[doc_id] = doc
        return doc["_rev"]

    def get(self, doc_id: str) -> dict[str, Any] | None:
        doc = self._docs.get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    def define_view(self, design_doc: str, view: str, map_fn: MapFunction) -> None:
        self._views[(design_doc, view)] = map_fn

    async def query_view(
        self,
        design_doc: str,
        view: str,
        params: Mapping[str, Any] | None = None,
    ) -> ViewResult:
        params = dict(params or {})
        try:
            map_fn = self._views[(design_doc, view)]
        except KeyError:
            raise StoreError(
                "query_view", f"view {design_doc}/{view} not found", status=404
            ) from None

        emitted = []
        for doc_id, doc in self._docs.items():
            if doc_id.startswith("_design/"):
                continue
            for key, value in map_fn(copy.deepcopy(doc)) or ():
                emitted.append((collation_key(key), doc_id, key, value))

        descending = bool(params.get("descending", False))
        emitted.sort(key=lambda item: (item[0], item[1]), reverse=descending)

        start = 0
        if "startkey" in params or "start_key" in params:
            startkey = params.get("startkey", params.get("start_key"))
            start_docid = params.get("startkey_docid", params.get("start_key_doc_id"))
            position = (collation_key(startkey), start_docid)
            start = next(
                (i for i, item in enumerate(emitted)
                 if not self._before(item, position, descending)),
                len(emitted),
            )
        rows = emitted[start:]

        if "key" in params:
            wanted = collation_key(params["key"])
            rows = [item for item in rows if item[0] == wanted]

        if "endkey" in params or "end_key" in params:
            end = collation_key(params.get("endkey", params.get("end_key")))
            inclusive = params.get("inclusive_end", True)
            rows = [
                item for item in rows
                if self._within_end(item[0], end, descending, inclusive)
            ]

        skip = int(params.get("skip", 0))
        rows = rows[skip:]
        if params.get("limit") is not None:
            rows = rows[:int(params["limit"])]

        include_docs = bool(params.get("include_docs", False))
        result_rows = []
        for _, doc_id, key, value in rows:
            row: dict[str, Any] = {"id": doc_id, "key": key, "value": value}
            if include_docs:
                row["doc"] = self.get(doc_id)
            result_rows.append(row)

        logger.debug(
            "query_view %s/%s returned %d rows", design_doc, view, len(result_rows)
        )
        return ViewResult(rows=result_rows, total_rows=len(emitted), offset=start + skip)

    @staticmethod
    def _before(item: tuple, position: tuple, descending: bool) -> bool:
        key, start_docid = position
        if item[0] != key:
            return item[0] > key if descending else item[0] < key
        if start_docid is None:
            return False
        return item[1] > start_docid if descending else item[1] < start_docid

    @staticmethod
    def _within_end(key: tuple, end: tuple, descending: bool, inclusive: bool) -> bool:
        if key == end:
            return bool(inclusive)
        return key > end if descending else key < end

    async def multi_get(self, keys: Sequence[str]) -> list[dict[str, Any] | None]:
        return [self.get(key) for key in keys]

    async def bulk_write(self, docs: Sequence[DocumentChange]) -> list[WriteResult]:
        results = []
        for change in docs:
            doc = copy.deepcopy(dict(change))
            doc_id = doc.setdefault("_id", uuid.uuid4().hex)
            rev = doc.pop("_rev", None)
            current = self._docs.get(doc_id)

            if current is None and (rev is not None or doc.get("_deleted")):
                results.append(WriteResult(id=doc_id, error="not_found", reason="missing"))
                continue
            if current is not None and rev != current["_rev"]:
                results.append(
                    WriteResult(id=doc_id, error=CONFLICT, reason="Document update conflict.")
                )
                continue

            new_rev = _next_rev(rev, doc)
            if doc.get("_deleted"):
                del self._docs[doc_id]
            else:
                doc["_rev"] = new_rev
                self._docs[doc_id] = doc
            results.append(WriteResult(id=doc_id, rev=new_rev))

        logger.debug(
            "bulk_write stored %d of %d documents",
            sum(1 for r in results if r.ok), len(results),
        )
        return results
