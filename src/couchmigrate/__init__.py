"""couchmigrate - batch migrations for CouchDB-style document stores.

The package pages through a view, lets user callbacks derive document
changes per row (optionally pulling in related documents), applies the
changes with bulk writes and retries rows whose writes conflicted.

Modules:
    driver: MigrationDriver and the migrate()/migrate_sync() entry points
    config: MigrationConfig and configuration file loading
    scanner: Keyset-paginated view scanning
    enricher: Related-document fetching per sub-batch
    changes: Change derivation through the user callback
    applier: Bulk writes with per-row result grouping
    retry: Conflict detection and bounded retry
    progress: Progress statistics and reporters
    stores: Document store interface, CouchDB and in-memory stores
    exceptions: Exception hierarchy

Quick Example:

    ```python
    from couchmigrate import migrate
    from couchmigrate.stores import CouchDBStore

    def add_total(row, docs):
        order = row.doc
        order["total"] = sum(item["price"] for item in order["items"])
        return order

    async with CouchDBStore("http://localhost:5984", "shop", "admin", "secret") as store:
        progress = await migrate(
            store,
            source_design_doc="orders",
            source_view="without_total",
            source_params={"include_docs": True},
            changes=add_total,
        )
    print(progress.get_summary())
    ```
"""

from .config import MigrationConfig, load_config_file, load_plugin
from .driver import MigrationDriver, migrate, migrate_sync
from .exceptions import (
    CallbackError,
    ConfigurationError,
    CouchMigrateError,
    MigrationAbortedError,
    StoreConnectionError,
    StoreError,
    StoreProtocolError,
)
from .progress import LoggingReporter, MigrationProgress, ProgressReporter, RichProgressReporter
from .rows import Cursor, DocumentChange, Row, ViewResult, WriteResult
from .stores import CouchDBStore, DocumentStore, MemoryDocumentStore, create_store

__version__ = "0.1.0"

__all__ = [
    # Entry points
    "migrate",
    "migrate_sync",
    "MigrationDriver",
    "MigrationConfig",
    "load_config_file",
    "load_plugin",
    # Data model
    "Row",
    "Cursor",
    "DocumentChange",
    "ViewResult",
    "WriteResult",
    # Progress
    "MigrationProgress",
    "ProgressReporter",
    "LoggingReporter",
    "RichProgressReporter",
    # Stores
    "DocumentStore",
    "CouchDBStore",
    "MemoryDocumentStore",
    "create_store",
    # Exceptions
    "CouchMigrateError",
    "ConfigurationError",
    "StoreError",
    "StoreConnectionError",
    "StoreProtocolError",
    "CallbackError",
    "MigrationAbortedError",
]
