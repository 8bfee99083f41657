"""Pytest configuration and shared fixtures for couchmigrate tests."""

import sys
from pathlib import Path

import pytest

# Add the package source to path for testing
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from couchmigrate.rows import ViewResult, WriteResult  # noqa: E402
from couchmigrate.stores.base import DocumentStore  # noqa: E402


class ScriptedStore(DocumentStore):
    """Store double with a fixed, pre-sorted view and scripted write outcomes.

    ``conflicts`` maps a document id to the number of bulk writes in which
    that document conflicts before it succeeds (use a large number for
    "always"). ``errors`` maps a document id to a non-conflict error.
    Every call is recorded.
    """

    def __init__(self, rows=None, docs=None, conflicts=None, errors=None):
        super().__init__()
        self.rows = list(rows or [])
        self.docs = dict(docs or {})
        self.conflicts = dict(conflicts or {})
        self.errors = dict(errors or {})
        self.view_calls = []
        self.multi_get_calls = []
        self.bulk_calls = []
        self.log = []

    async def query_view(self, design_doc, view, params=None):
        params = dict(params or {})
        self.view_calls.append(params)
        self.log.append("query_view")
        rows = self.rows
        if "startkey" in params:
            position = (params["startkey"], params.get("startkey_docid", ""))
            rows = [r for r in rows if (r["key"], r.get("id", "")) >= position]
        if params.get("limit") is not None:
            rows = rows[:params["limit"]]
        return ViewResult(rows=[dict(r) for r in rows], total_rows=len(self.rows), offset=0)

    async def multi_get(self, keys):
        self.multi_get_calls.append(list(keys))
        self.log.append("multi_get")
        return [self.docs.get(key) for key in keys]

    async def bulk_write(self, docs):
        self.bulk_calls.append([dict(doc) for doc in docs])
        self.log.append("bulk_write")
        results = []
        for doc in docs:
            doc_id = doc.get("_id")
            if self.conflicts.get(doc_id, 0) > 0:
                self.conflicts[doc_id] -= 1
                results.append(WriteResult(id=doc_id, error="conflict", reason="Document update conflict."))
            elif doc_id in self.errors:
                results.append(WriteResult(id=doc_id, error=self.errors[doc_id], reason="rejected"))
            else:
                results.append(WriteResult(id=doc_id, rev="2-abc"))
        return results


def view_rows(*ids):
    """View rows keyed by their document id."""
    return [{"key": doc_id, "id": doc_id, "value": None} for doc_id in ids]


@pytest.fixture
def make_store():
    """Factory for scripted stores whose view rows are keyed by the given ids."""

    def factory(*ids, **kwargs):
        return ScriptedStore(rows=view_rows(*ids), **kwargs)

    return factory


@pytest.fixture
def abc_store():
    """Store whose view yields rows a, b and c."""
    return ScriptedStore(rows=view_rows("a", "b", "c"))


@pytest.fixture
def migrated_change():
    """changes() callback marking each row's document as migrated."""

    def changes(row, docs):
        return [{"_id": row.id, "migrated": True}]

    return changes
