"""
PawMatch Backend — Rate Limiter Tests
=======================================

What we test:
    ✅ Callers are keyed by client address, never by credential headers
    ✅ Inactive entries are dropped on a fixed request count
    ✅ Active entries survive cleanup
"""

import time
from types import SimpleNamespace

import pytest
from starlette.requests import Request
from starlette.responses import PlainTextResponse

from pawmatch.config import settings
from pawmatch.middleware.rate_limit import RateLimitMiddleware, caller_key


def make_request(host="10.0.0.1", headers=None, path="/api/conversations"):
    raw_headers = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({
        "type": "http",
        "method": "GET",
        "scheme": "http",
        "path": path,
        "root_path": "",
        "query_string": b"",
        "headers": raw_headers,
        "client": (host, 50000) if host else None,
        "server": ("test", 80),
    })


async def ok(request):
    return PlainTextResponse("ok")


class TestCallerKey:
    def test_client_address(self):
        assert caller_key(make_request("203.0.113.7")) == "ip:203.0.113.7"

    def test_credentials_do_not_change_the_key(self):
        plain = caller_key(make_request("203.0.113.7"))
        with_device = caller_key(make_request("203.0.113.7", {"X-Device-Key": "dev-1"}))
        with_bearer = caller_key(make_request("203.0.113.7", {"Authorization": "Bearer abc"}))
        assert plain == with_device == with_bearer

    def test_missing_client(self):
        assert caller_key(make_request(host=None)) == "ip:unknown"


class TestCleanup:
    def setup_method(self):
        self.middleware = RateLimitMiddleware(app=ok)

    @pytest.mark.asyncio
    async def test_inactive_entries_dropped_on_schedule(self, monkeypatch):
        monkeypatch.setattr(RateLimitMiddleware, "CLEANUP_EVERY", 5)
        stale = time.time() - settings.rate_limit_window - 10
        self.middleware._requests["ip:198.51.100.1"] = [stale]
        self.middleware._requests["ip:198.51.100.2"] = []

        for _ in range(4):
            await self.middleware.dispatch(make_request(), ok)
        assert "ip:198.51.100.1" in self.middleware._requests

        await self.middleware.dispatch(make_request(), ok)

        assert "ip:198.51.100.1" not in self.middleware._requests
        assert "ip:198.51.100.2" not in self.middleware._requests
        assert len(self.middleware._requests["ip:10.0.0.1"]) == 5

    @pytest.mark.asyncio
    async def test_active_entries_survive(self, monkeypatch):
        monkeypatch.setattr(RateLimitMiddleware, "CLEANUP_EVERY", 1)
        self.middleware._requests["ip:198.51.100.1"] = [time.time() - 1]

        await self.middleware.dispatch(make_request(), ok)

        assert len(self.middleware._requests["ip:198.51.100.1"]) == 1

    @pytest.mark.asyncio
    async def test_many_addresses_do_not_accumulate(self, monkeypatch):
        monkeypatch.setattr(RateLimitMiddleware, "CLEANUP_EVERY", 10)
        monkeypatch.setattr(settings, "rate_limit_window", 60)

        now = time.time()
        monkeypatch.setattr("pawmatch.middleware.rate_limit.time", SimpleNamespace(time=lambda: now))
        for i in range(10):
            await self.middleware.dispatch(make_request(f"192.0.2.{i}"), ok)

        monkeypatch.setattr("pawmatch.middleware.rate_limit.time", SimpleNamespace(time=lambda: now + 120))
        for _ in range(10):
            await self.middleware.dispatch(make_request("10.0.0.1"), ok)

        assert list(self.middleware._requests) == ["ip:10.0.0.1"]
