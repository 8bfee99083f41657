"""Store factory for configuration-driven store creation."""

from __future__ import annotations

import logging
from typing import Any

from ..exceptions import ConfigurationError
from .base import DocumentStore
from .couchdb import CouchDBStore
from .memory import MemoryDocumentStore

logger = logging.getLogger(__name__)

STORE_TYPES: dict[str, type[DocumentStore]] = {
    "couchdb": CouchDBStore,
    "memory": MemoryDocumentStore,
}


def create_store(config: dict[str, Any]) -> DocumentStore:
    """Create a document store from configuration.

    Configuration Options:
        type (str): Store type, ``couchdb`` (default) or ``memory``
        **options: Store-specific options (see each store's ``from_config``)

    Example Configuration:
        store:
          type: couchdb
          url: http://localhost:5984
          database: orders
          username: admin
          password: ${COUCHDB_PASSWORD}

    Raises:
        ConfigurationError: If the type is unknown or required options are missing
    """
    options = dict(config)
    store_type = str(options.pop("type", "couchdb")).lower()
    store_class = STORE_TYPES.get(store_type)
    if store_class is None:
        raise ConfigurationError(
            "store.type",
            f"unknown store type '{store_type}'. Available: {', '.join(sorted(STORE_TYPES))}",
        )

    logger.info("Creating %s store", store_type)
    try:
        return store_class.from_config(options)
    except KeyError as e:
        raise ConfigurationError(f"store.{e.args[0]}", "required option is missing") from e
