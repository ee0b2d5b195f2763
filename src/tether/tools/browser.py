"""Browser tools: fetch external pages for the model."""

from __future__ import annotations

import ipaddress
import logging
import time
from collections import deque
from typing import Any, Dict
from urllib.parse import urlparse

import httpx
from aiocache import SimpleMemoryCache

from tether.log_utils import log_event
from tether.tools.args import BrowserFetchArgs
from tether.tools.functions import FunctionToolBackend
from tether.tools.registry import ToolSource

logger = logging.getLogger(__name__)

SAFE_SCHEMES = {"https"}

DEFAULT_FETCH_MAX_BYTES = 20_000
DEFAULT_FETCH_TIMEOUT = 30.0
DEFAULT_FETCH_WINDOW_S = 10.0
DEFAULT_FETCH_MAX_CALLS = 6
DEFAULT_FETCH_ERROR_THRESHOLD = 3
DEFAULT_FETCH_COOLDOWN_S = 30.0


def blocked_host(host: str | None) -> bool:
    """Reject local or private hosts."""
    if not host:
        return True
    lowered = host.lower()
    if lowered == "localhost":
        return True
    try:
        ip_obj = ipaddress.ip_address(lowered)
    except ValueError:
        return lowered.endswith(".local")
    return ip_obj.is_private or ip_obj.is_loopback or ip_obj.is_link_local


class HostThrottle:
    """Sliding-window call limit per host with an error-triggered cooldown."""

    def __init__(
        self,
        *,
        window_s: float = DEFAULT_FETCH_WINDOW_S,
        max_calls: int = DEFAULT_FETCH_MAX_CALLS,
        error_threshold: int = DEFAULT_FETCH_ERROR_THRESHOLD,
        cooldown_s: float = DEFAULT_FETCH_COOLDOWN_S,
    ) -> None:
        self.window_s = window_s
        self.max_calls = max_calls
        self.error_threshold = error_threshold
        self.cooldown_s = cooldown_s
        self._calls: dict[str, deque[float]] = {}
        self._errors: dict[str, int] = {}
        self._cooldowns: dict[str, float] = {}

    def check(self, host: str) -> str | None:
        """Return an error message when ``host`` is throttled."""
        now = time.monotonic()
        cooldown_until = self._cooldowns.get(host)
        if cooldown_until and now < cooldown_until:
            return f"browser_fetch cooldown active for host {host}"

        calls = self._calls.setdefault(host, deque())
        while calls and now - calls[0] > self.window_s:
            calls.popleft()
        if len(calls) >= self.max_calls:
            self._cooldowns[host] = now + self.cooldown_s
            return f"browser_fetch rate limit exceeded for host {host}"
        calls.append(now)
        return None

    def record_error(self, host: str) -> None:
        errors = self._errors.get(host, 0) + 1
        self._errors[host] = errors
        if errors >= self.error_threshold:
            self._cooldowns[host] = time.monotonic() + self.cooldown_s

    def record_success(self, host: str) -> None:
        self._errors.pop(host, None)


class BrowserToolBackend(FunctionToolBackend):
    """Exposes ``browser_fetch``: https-only GET with size limits and caching."""

    source = ToolSource.BROWSER

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_FETCH_TIMEOUT,
        default_max_bytes: int = DEFAULT_FETCH_MAX_BYTES,
        throttle: HostThrottle | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__()
        self.timeout = timeout
        self.default_max_bytes = default_max_bytes
        self.throttle = throttle or HostThrottle()
        self._transport = transport
        self._cache = SimpleMemoryCache()
        self.register(
            "browser_fetch",
            self.fetch,
            args_model=BrowserFetchArgs,
            description="Fetch an https URL and return its text content",
        )

    async def fetch(self, url: str, max_bytes: int | None = None) -> Dict[str, Any]:
        limit = max_bytes or self.default_max_bytes
        parsed = urlparse(url)
        if parsed.scheme not in SAFE_SCHEMES:
            return {"content": None, "error": f"Invalid URL: only https URLs are allowed ({url})"}
        if blocked_host(parsed.hostname):
            return {"content": None, "error": "Blocked host for security reasons."}

        cache_key = f"{url}|{limit}"
        cached = await self._cache.get(cache_key)
        if cached is not None:
            return {**cached, "cached": True}

        host = parsed.hostname or ""
        rate_error = self.throttle.check(host)
        if rate_error:
            return {"content": None, "error": rate_error}

        headers = {
            "User-Agent": "tether-fetch/1.0",
            "Accept": "text/*, application/json;q=0.9, */*;q=0.1",
        }
        try:
            async with httpx.AsyncClient(
                follow_redirects=True, timeout=self.timeout, transport=self._transport
            ) as client:
                async with client.stream("GET", url, headers=headers) as response:
                    collected = bytearray()
                    truncated = False
                    async for chunk in response.aiter_bytes():
                        if len(collected) + len(chunk) > limit:
                            collected.extend(chunk[: max(limit - len(collected), 0)])
                            truncated = True
                            break
                        collected.extend(chunk)
                    status_code = response.status_code
                    final_url = str(response.url)
                    result = {
                        "content": collected.decode(response.encoding or "utf-8", errors="replace"),
                        "error": f"HTTP {status_code} for {final_url}" if status_code >= 400 else None,
                        "status_code": status_code,
                        "url": final_url,
                        "content_type": response.headers.get("content-type", ""),
                        "truncated": truncated,
                    }
        except httpx.HTTPError as exc:
            self.throttle.record_error(host)
            log_event(logger, "tool.browser.error", level=logging.WARNING, url=url, error=str(exc))
            return {"content": None, "error": str(exc) or exc.__class__.__name__}

        if result["error"]:
            self.throttle.record_error(host)
        else:
            self.throttle.record_success(host)
            await self._cache.set(cache_key, result)
        log_event(
            logger,
            "tool.browser.fetch",
            level=logging.DEBUG,
            url=url,
            status=result["status_code"],
            truncated=result["truncated"],
        )
        return result

    async def clear_cache(self) -> None:
        await self._cache.clear()


__all__ = ["BrowserToolBackend", "HostThrottle", "blocked_host"]
