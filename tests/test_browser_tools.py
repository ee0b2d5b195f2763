from __future__ import annotations

import httpx
import pytest

from tether.errors import ToolExecutionError
from tether.tools.base import ToolInvocation
from tether.tools.browser import BrowserToolBackend, HostThrottle, blocked_host


def _transport(body: bytes = b"hello world", status: int = 200, calls: list | None = None) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(str(request.url))
        return httpx.Response(status, content=body, headers={"content-type": "text/plain; charset=utf-8"})

    return httpx.MockTransport(handler)


@pytest.mark.parametrize(
    ("host", "blocked"),
    [
        ("localhost", True),
        ("127.0.0.1", True),
        ("10.0.0.8", True),
        ("printer.local", True),
        ("", True),
        ("example.com", False),
        ("93.184.216.34", False),
    ],
)
def test_blocked_host(host: str, blocked: bool) -> None:
    assert blocked_host(host) is blocked


@pytest.mark.asyncio
async def test_fetch_returns_text_and_caches() -> None:
    calls: list = []
    backend = BrowserToolBackend(transport=_transport(calls=calls))

    first = await backend.fetch("https://example.com/page")
    second = await backend.fetch("https://example.com/page")

    assert first["content"] == "hello world"
    assert first["error"] is None
    assert second["cached"] is True
    assert calls == ["https://example.com/page"]


@pytest.mark.asyncio
async def test_fetch_truncates_to_max_bytes() -> None:
    backend = BrowserToolBackend(transport=_transport(body=b"a" * 100))

    result = await backend.fetch("https://example.com/big", max_bytes=10)

    assert result["content"] == "a" * 10
    assert result["truncated"] is True


@pytest.mark.asyncio
async def test_fetch_rejects_plain_http_and_private_hosts() -> None:
    backend = BrowserToolBackend(transport=_transport())

    insecure = await backend.fetch("http://example.com")
    private = await backend.fetch("https://192.168.1.1/admin")

    assert insecure["error"].startswith("Invalid URL")
    assert "Blocked host" in private["error"]


@pytest.mark.asyncio
async def test_http_error_status_is_reported_and_not_cached() -> None:
    calls: list = []
    backend = BrowserToolBackend(transport=_transport(body=b"", status=404, calls=calls))

    first = await backend.fetch("https://example.com/missing")
    await backend.fetch("https://example.com/missing")

    assert first["error"] == "HTTP 404 for https://example.com/missing"
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_invalid_url_surfaces_as_tool_error() -> None:
    backend = BrowserToolBackend(transport=_transport())
    invocation = ToolInvocation(tool_call_id="c1", name="browser_fetch", arguments={"url": "ftp://example.com"})

    with pytest.raises(ToolExecutionError, match="Invalid URL"):
        await backend.call(invocation)


def test_throttle_window_and_cooldown() -> None:
    throttle = HostThrottle(window_s=60, max_calls=2, error_threshold=2, cooldown_s=60)

    assert throttle.check("a.com") is None
    assert throttle.check("a.com") is None
    assert "rate limit" in throttle.check("a.com")
    assert "cooldown" in throttle.check("a.com")

    throttle.record_error("b.com")
    assert throttle.check("b.com") is None
    throttle.record_error("b.com")
    assert "cooldown" in throttle.check("b.com")
