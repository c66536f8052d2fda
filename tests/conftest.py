import json

import httpx
import pytest
import pytest_asyncio

import db
from config import LINE_ACCESS_TOKEN_KEY


@pytest_asyncio.fixture
async def store(tmp_path, monkeypatch):
    """Fresh SQLite database per test, schema created from the ORM metadata."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'bridge.db'}")
    await db.dispose_engine()
    await db.create_all()
    yield
    await db.dispose_engine()


@pytest_asyncio.fixture
async def access_token(store):
    await db.set_setting(LINE_ACCESS_TOKEN_KEY, "line-token-123")
    return "line-token-123"


class FakeLineApi:
    """Records every call made through ``transport``; fails on demand."""

    def __init__(self):
        self.calls = []
        self.fail = False

    def _handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.calls.append({
            "method": request.method,
            "path": request.url.path,
            "json": body,
            "auth": request.headers.get("authorization"),
        })
        if self.fail:
            return httpx.Response(500, text='{"message":"The request body has 1 error(s)"}')
        if request.url.path.startswith("/v2/bot/profile/"):
            return httpx.Response(200, json={
                "userId": request.url.path.rsplit("/", 1)[-1],
                "displayName": "Alice",
                "pictureUrl": "https://example.com/a.png",
            })
        return httpx.Response(200, json={})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    def texts(self):
        return [m["text"] for c in self.calls for m in c["json"]["messages"]]


@pytest.fixture
def line_api():
    return FakeLineApi()
