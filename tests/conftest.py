import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from tilerelay.api.proxy import get_client_factory
from tilerelay.main import create_app


class FakeTileServer:
    """Stands in for the upstream tile host behind the proxy."""

    def __init__(self):
        self.calls = []
        self.status = 200
        self.headers = {"content-type": "image/png"}
        self.delays = {}
        self.error = None
        self.body = None
        self.stream = None

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        if self.error is not None:
            raise self.error
        await asyncio.sleep(self.delays.get(request.url.path, 0))
        body = self.body if self.body is not None else b"png:" + request.url.path.encode()
        headers = dict(self.headers, **{"content-length": str(len(body))})
        stream = self.stream if self.stream is not None else httpx.ByteStream(body)
        return httpx.Response(self.status, headers=headers, stream=stream)


@pytest.fixture
def upstream():
    return FakeTileServer()


@pytest.fixture
def app(upstream):
    app = create_app()
    app.dependency_overrides[get_client_factory] = lambda: (
        lambda: httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    )
    return app


@pytest.fixture
def client(app):
    return TestClient(app)
