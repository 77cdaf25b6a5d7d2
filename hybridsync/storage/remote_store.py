"""HTTP object-store client implementing the storage contract."""

import logging
from collections.abc import Callable
from typing import Any
from urllib.parse import quote

import httpx

from .base import MISSING, AsyncStorage, InvalidValueError, MetaIndex, validate_key
from .serializer import JSONSerializer, Serializer, drop_quotes, md5_fingerprint

logger = logging.getLogger(__name__)

# Object stores cap a single listing page at 1000 objects
MAX_PAGE_SIZE = 1000

OBJECT_SUFFIX = ".json"


class RemoteStore(AsyncStorage):
    """Client for a bucket-style object store.

    Each key is stored as the object ``<instance_name>/<key>.json``. The store
    exposes:

    - ``GET /<name>``: object body (404 when absent)
    - ``PUT /<name>``: upload, responds with an ``ETag`` header
    - ``DELETE /<name>``: delete
    - ``GET /?prefix=&max-keys=&marker=``: paginated JSON listing
      ``{"objects": [{"name", "etag"}], "is_truncated", "next_marker"}``
    """

    def __init__(
        self,
        instance_name: str,
        base_url: str,
        token: str | None = None,
        page_size: int = MAX_PAGE_SIZE,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
        serializer: Serializer | None = None,
        fingerprint: Callable[[str], str] = md5_fingerprint,
    ):
        """Initialize the remote store.

        Args:
            instance_name: Object name prefix for this store.
            base_url: Base URL of the object store (bucket endpoint).
            token: Optional bearer token sent with every request.
            page_size: Objects per listing page, at most 1000.
            timeout: Request timeout in seconds.
            client: Pre-built HTTP client. Not closed by this store.
            serializer: Value codec. Defaults to compact JSON.
            fingerprint: Fallback fingerprint when the server omits an ETag.
        """
        self.instance_name = instance_name
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.page_size = max(1, min(page_size, MAX_PAGE_SIZE))
        self.timeout = timeout
        self._serializer = serializer or JSONSerializer()
        self._fingerprint = fingerprint
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this store created it."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _object_name(self, key: str) -> str:
        return f"{self.instance_name}/{key}{OBJECT_SUFFIX}"

    def _object_path(self, key: str) -> str:
        return "/" + quote(self._object_name(key), safe="/")

    def _key_from_object_name(self, name: str) -> str:
        key = name[len(self.instance_name) + 1 :]
        if key.endswith(OBJECT_SUFFIX):
            key = key[: -len(OBJECT_SUFFIX)]
        return key

    async def get(self, key: str, default: Any = None) -> Any:
        validate_key(key)
        client = await self._get_client()
        response = await client.get(self._object_path(key))
        if response.status_code == 404:
            return default
        response.raise_for_status()
        return self._serializer.deserialize(response.content)

    async def set(self, key: str, value: Any) -> str:
        validate_key(key)
        if value is MISSING:
            raise InvalidValueError(f"Cannot store a missing value under {key!r}")
        data = self._serializer.serialize(value)

        client = await self._get_client()
        response = await client.put(
            self._object_path(key),
            content=data.encode("utf-8"),
            headers={"Content-Type": "application/json"},
        )
        response.raise_for_status()

        etag = response.headers.get("etag")
        if etag is None:
            return self._fingerprint(data)
        return drop_quotes(etag)

    async def remove(self, key: str) -> None:
        validate_key(key)
        client = await self._get_client()
        response = await client.delete(self._object_path(key))
        if response.status_code == 404:
            return
        response.raise_for_status()

    async def meta_index(self) -> MetaIndex:
        client = await self._get_client()
        prefix = f"{self.instance_name}/"
        result: MetaIndex = {}
        marker: str | None = None
        pages = 0

        while True:
            params = {"prefix": prefix, "max-keys": str(self.page_size)}
            if marker:
                params["marker"] = marker
            response = await client.get("/", params=params)
            response.raise_for_status()
            page = response.json()
            pages += 1

            objects = page.get("objects") or []
            for obj in objects:
                key = self._key_from_object_name(obj["name"])
                result[key] = {"etag": drop_quotes(obj["etag"])}

            if not page.get("is_truncated") or not objects:
                break
            marker = page.get("next_marker") or objects[-1]["name"]

        logger.debug(f"Listed {len(result)} remote objects in {pages} page(s)")
        return result
