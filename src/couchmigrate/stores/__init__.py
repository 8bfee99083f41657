"""Document store clients."""

from .base import DocumentStore
from .couchdb import CouchDBStore, encode_view_params
from .factory import create_store
from .memory import MemoryDocumentStore, collation_key

__all__ = [
    "DocumentStore",
    "CouchDBStore",
    "MemoryDocumentStore",
    "create_store",
    "encode_view_params",
    "collation_key",
]
