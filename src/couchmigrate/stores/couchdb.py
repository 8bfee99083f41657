"""CouchDB HTTP store backed by aiohttp."""

from __future__ import annotations

import asyncio
import json
import logging
import ssl
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import aiohttp

from ..exceptions import StoreConnectionError, StoreError, StoreProtocolError
from ..rows import ViewResult, WriteResult
from .base import DocumentStore

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from ..rows import DocumentChange

logger = logging.getLogger(__name__)

# View parameters CouchDB expects as JSON values
JSON_VIEW_PARAMS = frozenset({"key", "keys", "startkey", "endkey", "start_key", "end_key"})


def encode_view_params(params: Mapping[str, Any]) -> dict[str, str]:
    """Render view query parameters as query-string values.

    Key parameters are JSON encoded, booleans become ``true``/``false`` and
    ``None`` values are dropped. Document id parameters such as
    ``startkey_docid`` are passed through as plain strings.
    """
    encoded: dict[str, str] = {}
    for name, value in params.items():
        if value is None:
            continue
        if name in JSON_VIEW_PARAMS:
            encoded[name] = json.dumps(value)
        elif isinstance(value, bool):
            encoded[name] = "true" if value else "false"
        else:
            encoded[name] = str(value)
    return encoded


class CouchDBStore(DocumentStore):
    """Document store talking to a CouchDB database over HTTP.

    Args:
        url: Server URL, e.g. ``http://localhost:5984``
        database: Database name
        username: Optional user for basic auth
        password: Optional password for basic auth
        timeout: Total request timeout in seconds
        verify_ssl: Verify TLS certificates
        session: Optional pre-built ``aiohttp.ClientSession``; the store does
            not close sessions it did not create

    Example:
        ```python
        store = CouchDBStore("http://localhost:5984", "orders", "admin", "secret")
        async with store:
            result = await store.query_view("orders", "by_date", {"limit": 100})
        ```
    """

    def __init__(
        self,
        url: str,
        database: str,
        username: str | None = None,
        password: str | None = None,
        timeout: float = 30.0,
        verify_ssl: bool = True,
        session: Any = None,
    ) -> None:
        super().__init__({"url": url, "database": database})
        self._url = url.rstrip("/")
        self._database = database
        self._username = username
        self._password = password
        self._timeout = timeout
        self._verify_ssl = verify_ssl
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> CouchDBStore:
        """Create a store from a configuration dictionary.

        Args:
            config: Configuration with keys:
                - url (required): Server URL
                - database (required): Database name
                - username / password: Basic auth credentials
                - timeout: Request timeout in seconds
                - verify_ssl: TLS verification

        Returns:
            Configured CouchDBStore instance
        """
        return cls(
            url=config["url"],
            database=config["database"],
            username=config.get("username"),
            password=config.get("password"),
            timeout=config.get("timeout", 30.0),
            verify_ssl=config.get("verify_ssl", True),
        )

    @property
    def database_url(self) -> str:
        return f"{self._url}/{quote(self._database, safe='')}"

    async def connect(self) -> None:
        """Create the HTTP session if none was supplied."""
        if self._session is not None:
            return

        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        auth = None
        if self._username is not None:
            auth = aiohttp.BasicAuth(self._username, self._password or "")

        ssl_context: bool | ssl.SSLContext = self._verify_ssl
        if not self._verify_ssl:
            ssl_context = ssl.create_default_context()
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE

        self._session = aiohttp.ClientSession(
            headers=headers,
            auth=auth,
            connector=aiohttp.TCPConnector(ssl=ssl_context),
            timeout=aiohttp.ClientTimeout(total=self._timeout),
        )
        self._owns_session = True
        logger.info("CouchDBStore connected: %s", self.database_url)

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            logger.info("CouchDBStore closed")
        self._session = None

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        params: Mapping[str, str] | None = None,
        body: Any = None,
    ) -> Any:
        if self._session is None:
            await self.connect()

        url = f"{self.database_url}/{path}"
        logger.debug("%s %s params=%s", method, url, params)
        try:
            async with self._session.request(method, url, params=params, json=body) as response:
                if response.status >= 400:
                    text = await response.text()
                    logger.error("CouchDB %s failed: HTTP %s: %s", operation, response.status, text)
                    raise StoreError(
                        operation, f"HTTP {response.status}: {text}",
                        status=response.status, body=text,
                    )
                return await response.json()
        except aiohttp.ClientError as e:
            raise StoreConnectionError(operation, str(e)) from e
        except asyncio.TimeoutError as e:
            raise StoreConnectionError(operation, f"timed out after {self._timeout}s") from e

    async def query_view(
        self,
        design_doc: str,
        view: str,
        params: Mapping[str, Any] | None = None,
    ) -> ViewResult:
        path = f"_design/{quote(design_doc, safe='')}/_view/{quote(view, safe='')}"
        data = await self._request(
            "query_view", "GET", path, params=encode_view_params(params or {})
        )
        if not isinstance(data, dict) or not isinstance(data.get("rows"), list):
            raise StoreProtocolError("query_view", "response has no rows list")
        return ViewResult(
            rows=data["rows"],
            total_rows=data.get("total_rows"),
            offset=data.get("offset"),
        )

    async def multi_get(self, keys: Sequence[str]) -> list[dict[str, Any] | None]:
        data = await self._request(
            "multi_get", "POST", "_all_docs",
            params={"include_docs": "true"}, body={"keys": list(keys)},
        )
        rows = data.get("rows") if isinstance(data, dict) else None
        if not isinstance(rows, list) or len(rows) != len(keys):
            raise StoreProtocolError(
                "multi_get", f"expected {len(keys)} rows in _all_docs response"
            )
        # Missing and deleted documents come back without a doc body
        return [row.get("doc") for row in rows]

    async def bulk_write(self, docs: Sequence[DocumentChange]) -> list[WriteResult]:
        data = await self._request("bulk_write", "POST", "_bulk_docs", body={"docs": list(docs)})
        if not isinstance(data, list):
            raise StoreProtocolError("bulk_write", "expected a list of results")
        return [WriteResult.from_response(item) for item in data]
