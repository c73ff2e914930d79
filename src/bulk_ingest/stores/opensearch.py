"""
OpenSearch-backed BulkStore.

Only the bulk endpoint is on the ingestion path. The index helpers are thin
pass-throughs to the indices API for scripts and the CLI.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from loguru import logger
from opensearchpy import AsyncOpenSearch
from opensearchpy import exceptions as os_exc

from ..errors import TransportError
from ..settings import OpenSearchSettings


def map_transport_error(e: Exception) -> TransportError:
    """Translate an opensearch-py whole-request failure into our TransportError."""
    if isinstance(e, os_exc.ConnectionTimeout):
        return TransportError(f"connection timeout: {e}")
    if isinstance(e, os_exc.ConnectionError):
        return TransportError(f"connection error: {e}")
    if isinstance(e, os_exc.TransportError):
        status = e.status_code if isinstance(e.status_code, int) else None
        return TransportError(f"bulk request rejected: {e.error}", status_code=status)
    return TransportError(f"{type(e).__name__}: {e}")


class OpenSearchStore:
    """BulkStore over ``AsyncOpenSearch``.

    Usage:
        store = OpenSearchStore.from_settings(OpenSearchSettings())
        await store.ensure_index("my-index", mappings={"properties": {"age": {"type": "integer"}}})
        response = await store.bulk(payload)
        await store.close()
    """

    def __init__(self, client: AsyncOpenSearch, *, refresh: Optional[str] = None):
        self._client = client
        self._refresh = refresh

    @classmethod
    def from_settings(cls, settings: OpenSearchSettings) -> "OpenSearchStore":
        kwargs: Dict[str, Any] = {
            "hosts": settings.host_list,
            "use_ssl": settings.use_ssl,
            "verify_certs": settings.verify_certs,
            "ssl_show_warn": settings.verify_certs,
            "timeout": settings.timeout,
        }
        if settings.username and settings.password:
            kwargs["http_auth"] = (settings.username, settings.password.get_secret_value())
        logger.debug(f"Creating AsyncOpenSearch client for {settings.host_list}")
        return cls(AsyncOpenSearch(**kwargs), refresh=settings.refresh)

    @property
    def client(self) -> AsyncOpenSearch:
        return self._client

    async def close(self) -> None:
        await self._client.close()

    # --------------------------- bulk

    async def bulk(self, payload: bytes) -> Mapping[str, Any]:
        params: Dict[str, Any] = {}
        if self._refresh is not None:
            params["refresh"] = self._refresh
        try:
            return await self._client.bulk(body=payload, params=params)
        except os_exc.TransportError as e:
            raise map_transport_error(e) from e

    # --------------------------- admin pass-throughs

    async def info(self) -> Dict[str, Any]:
        return await self._client.info()

    async def index_exists(self, name: str) -> bool:
        return bool(await self._client.indices.exists(index=name))

    async def create_index(
        self,
        name: str,
        *,
        settings: Optional[Mapping[str, Any]] = None,
        mappings: Optional[Mapping[str, Any]] = None,
    ) -> None:
        body: Dict[str, Any] = {}
        if settings:
            body["settings"] = dict(settings)
        if mappings:
            body["mappings"] = dict(mappings)
        await self._client.indices.create(index=name, body=body or None)
        logger.info(f"Created index {name}")

    async def ensure_index(
        self,
        name: str,
        *,
        settings: Optional[Mapping[str, Any]] = None,
        mappings: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """Create the index unless it exists. Returns True when it was created."""
        if await self.index_exists(name):
            return False
        await self.create_index(name, settings=settings, mappings=mappings)
        return True

    async def delete_index(self, name: str, *, missing_ok: bool = True) -> bool:
        try:
            await self._client.indices.delete(index=name)
        except os_exc.NotFoundError:
            if not missing_ok:
                raise
            return False
        logger.info(f"Deleted index {name}")
        return True
