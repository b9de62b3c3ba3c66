"""Server-level client: owns the transports, the settings and the dispatcher."""

from __future__ import annotations

import logging
from types import TracebackType
from typing import Any

import httpx

from couchops.database import Database
from couchops.dispatch.dispatcher import Dispatcher
from couchops.models.settings import ClientSettings
from couchops.wire.request import RequestBuilder, validate_database_name
from couchops.wire.response import ResponseParser

logger = logging.getLogger(__name__)


class CouchClient:
    """Entry point for talking to one CouchDB/Cloudant server.

    HTTP clients are created lazily unless injected. Everything that is
    shared between concurrent operations (settings, builder, parser) is
    read-only after construction.
    """

    def __init__(
        self,
        settings: ClientSettings | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        sync_http_client: httpx.Client | None = None,
    ) -> None:
        """Initialize with settings and optional pre-built HTTP clients."""
        self.settings = settings or ClientSettings()
        self.builder = RequestBuilder()
        self.parser = ResponseParser()
        self._http = http_client
        self._sync_http = sync_http_client
        self._dispatcher: Dispatcher | None = None
        self._available: bool | None = None

    @classmethod
    def from_env(cls) -> CouchClient:
        """Create a client configured from the COUCH_* environment variables."""
        return cls(ClientSettings.from_env())

    async def __aenter__(self) -> CouchClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def dispatcher(self) -> Dispatcher:
        """The operation dispatcher, created on first use."""
        if self._dispatcher is None:
            self._dispatcher = Dispatcher(
                self._get_client(),
                max_concurrency=self.settings.max_concurrency,
                default_timeout=self.settings.timeout,
                builder=self.builder,
                parser=self.parser,
            )
        return self._dispatcher

    @property
    def sync_client(self) -> httpx.Client:
        """Blocking HTTP client used by synchronous accessors."""
        if self._sync_http is None:
            self._sync_http = httpx.Client(timeout=self.settings.timeout)
        return self._sync_http

    def database(self, name: str) -> Database:
        """Return a context for the named database. The name is validated here."""
        return Database(self, validate_database_name(name))

    def __getitem__(self, name: str) -> Database:
        return self.database(name)

    async def server_info(self) -> dict[str, Any]:
        """Fetch the server welcome document (``GET /``)."""
        client = self._get_client()
        resp = await client.get(
            self.settings.base_url + "/",
            headers=self.builder.headers(self.settings),
        )
        resp.raise_for_status()
        data: dict[str, Any] = resp.json()
        return data

    async def is_available(self) -> bool:
        """Check if the server is reachable. Only caches success, so failures are retried."""
        if self._available is True:
            return True
        try:
            await self.server_info()
            self._available = True
        except httpx.HTTPError:
            logger.warning("CouchDB not reachable at %s", self.settings.base_url)
            self._available = None
        return self._available is True

    def _get_client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.settings.timeout)
        return self._http

    async def close(self) -> None:
        """Cancel outstanding operations and close the HTTP clients if open."""
        if self._dispatcher is not None:
            await self._dispatcher.close()
            self._dispatcher = None
        if self._http is not None:
            await self._http.aclose()
            self._http = None
        if self._sync_http is not None:
            self._sync_http.close()
            self._sync_http = None
        logger.info("Client for %s closed", self.settings.base_url)
