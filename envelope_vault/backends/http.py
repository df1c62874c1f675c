"""
HTTP Object Store — blob storage behind a REST bucket API, via aiohttp.

Objects are addressed as ``{base_url}/{bucket}/{path}``:
- ``PUT``    stores the raw encrypted bytes
- ``GET``    returns them
- ``DELETE`` removes them

A 404 maps to ``BlobNotFound``; any other error status, connection error
or timeout maps to ``StorageIOError``. Nothing is retried.
"""
import asyncio
import logging
from typing import Optional
from urllib.parse import quote

import aiohttp
import orjson

from ..exceptions import BlobNotFound, StorageIOError
from .base import ObjectStore

logger = logging.getLogger("envelope.vault")

_OCTET_STREAM = "application/octet-stream"


class HttpObjectStore(ObjectStore):
    """aiohttp client of a bucket-style object store.

    An injected ``session`` is left open on ``close()``; a session created
    by the store is owned and closed with it.
    """

    def __init__(
        self,
        base_url: str,
        bucket: str,
        token: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self._token = token
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    def url(self, path: str) -> str:
        return f"{self.base_url}/{quote(self.bucket)}/{quote(path.lstrip('/'))}"

    def _headers(self) -> dict[str, str]:
        headers = {}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    @staticmethod
    async def _error(
        response: aiohttp.ClientResponse, operation: str, path: str
    ) -> StorageIOError:
        body = await response.read()
        detail = body.decode("utf-8", "replace").strip() or response.reason
        try:
            parsed = orjson.loads(body)
        except orjson.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict):
            detail = parsed.get("message") or parsed.get("error") or detail
        return StorageIOError(
            f"Object store {operation} of {path} failed "
            f"with HTTP {response.status}: {detail}",
            operation=operation,
        )

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        headers: Optional[dict[str, str]] = None,
        **kwargs,
    ) -> bytes:
        session = self._get_session()
        try:
            async with session.request(
                method,
                self.url(path),
                headers={**self._headers(), **(headers or {})},
                **kwargs,
            ) as response:
                if response.status == 404:
                    raise BlobNotFound(path, operation=operation)
                if response.status >= 400:
                    raise await self._error(response, operation, path)
                return await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            raise StorageIOError(
                f"Object store {operation} of {path} failed: {err!r}",
                operation=operation,
            ) from err

    async def put(self, path: str, data: bytes) -> None:
        await self._request(
            "PUT", path, "put",
            data=data, headers={"Content-Type": _OCTET_STREAM},
        )
        logger.debug("Stored blob %s (%d bytes)", path, len(data))

    async def get(self, path: str) -> bytes:
        return await self._request("GET", path, "get")

    async def delete(self, path: str) -> None:
        await self._request("DELETE", path, "delete")
        logger.debug("Deleted blob %s", path)

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "HttpObjectStore":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
