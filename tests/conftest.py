"""Shared fixtures: in-memory stores and a fake object-store server."""

import hashlib
import json
from urllib.parse import unquote

import httpx
import pytest

from hybridsync.storage import LocalStore, RemoteStore


class FakeObjectServer:
    """In-process bucket speaking the RemoteStore HTTP protocol.

    ETags are quoted upper-case MD5 digests of the object body, as real
    object stores return them.
    """

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.requests: list[httpx.Request] = []
        self.fail_with: int | None = None
        self.fail_methods: set[str] = set()

    def etag(self, name: str) -> str:
        return hashlib.md5(self.objects[name]).hexdigest().upper()

    def put_json(self, name: str, value) -> None:
        self.objects[name] = json.dumps(value, separators=(",", ":")).encode("utf-8")

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None or request.method in self.fail_methods:
            return httpx.Response(self.fail_with or 503, text="injected failure")

        name = unquote(request.url.path.lstrip("/"))

        if request.method == "GET" and not name:
            return self._list(request)
        if request.method == "GET":
            if name not in self.objects:
                return httpx.Response(404, text="NoSuchKey")
            return httpx.Response(200, content=self.objects[name])
        if request.method == "PUT":
            self.objects[name] = request.content
            return httpx.Response(200, headers={"ETag": f'"{self.etag(name)}"'})
        if request.method == "DELETE":
            if name not in self.objects:
                return httpx.Response(404, text="NoSuchKey")
            del self.objects[name]
            return httpx.Response(204)
        return httpx.Response(405)

    def _list(self, request: httpx.Request) -> httpx.Response:
        prefix = request.url.params.get("prefix", "")
        max_keys = int(request.url.params.get("max-keys", "1000"))
        marker = request.url.params.get("marker", "")

        names = sorted(n for n in self.objects if n.startswith(prefix) and n > marker)
        page = names[:max_keys]
        truncated = len(names) > max_keys
        body = {
            "objects": [{"name": n, "etag": f'"{self.etag(n)}"'} for n in page],
            "is_truncated": truncated,
            "next_marker": page[-1] if truncated else "",
        }
        return httpx.Response(200, json=body)


@pytest.fixture
def object_server():
    """Create an empty fake object store."""
    return FakeObjectServer()


@pytest.fixture
def remote_store(object_server):
    """Create a RemoteStore talking to the fake object store."""
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(object_server.handler),
        base_url="http://objects.test",
    )
    return RemoteStore("test", base_url="http://objects.test", client=client)


@pytest.fixture
def local_store():
    """Create an in-memory LocalStore for testing."""
    store = LocalStore("test", ":memory:")
    store.connect()
    yield store
    store.close()
