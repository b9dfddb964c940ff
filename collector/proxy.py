"""
Same-origin proxy to the observations backend.

The browser asks for `/api/proxy?path=/waves/?start=...`; we resolve the
logical path against the configured backend origin, forward the GET with
the cold-start retry policy and relay status, body and content-type
untouched.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

import httpx
from pydantic import BaseModel

from collector.resilient_fetcher import (
    RetryPolicy,
    RetryingRequest,
    SleepFn,
    UpstreamExhausted,
)

logger = logging.getLogger("proxy")

DEFAULT_PROXY_PATH = "/health"
DEFAULT_CONTENT_TYPE = "application/json"

_RE_ABSOLUTE_URL = re.compile(r"^https?://", re.IGNORECASE)


class ProxyErrorBody(BaseModel):
    ok: bool = False
    error: str = "proxy_error"
    detail: str
    base: str
    got: str
    target: Optional[str] = None


@dataclass
class RelayedResponse:
    status_code: int
    content: bytes
    content_type: str


def logical_path(raw: str) -> str:
    """
    Reduce a requested path to "/path?query".

    Absolute http(s) URLs lose their scheme and host, and leading slashes
    are collapsed so the result can never be read as "//other-host".
    """
    path_with_query = raw
    if _RE_ABSOLUTE_URL.match(raw):
        parts = urlsplit(raw)
        path_with_query = parts.path + (f"?{parts.query}" if parts.query else "")
    return "/" + path_with_query.lstrip("/")


def build_target_url(raw: str, base_url: str) -> str:
    """Resolve a logical path against the backend origin."""
    base = httpx.URL(base_url)
    if base.scheme not in ("http", "https") or not base.host:
        raise ValueError(f"invalid backend base URL: {base_url!r}")
    return str(base.join(logical_path(raw)))


def safe_target_url(raw: str, base_url: str) -> Optional[str]:
    try:
        return build_target_url(raw, base_url)
    except (ValueError, httpx.InvalidURL):
        return None


def proxy_error(detail: str, base_url: str, raw: str) -> ProxyErrorBody:
    return ProxyErrorBody(
        detail=detail,
        base=base_url,
        got=raw,
        target=safe_target_url(raw, base_url),
    )


def _relay(response: httpx.Response) -> RelayedResponse:
    return RelayedResponse(
        status_code=response.status_code,
        content=response.content,
        content_type=response.headers.get("content-type") or DEFAULT_CONTENT_TYPE,
    )


async def forward(
    raw: str,
    base_url: str,
    client: httpx.AsyncClient,
    policy: RetryPolicy,
    sleep: SleepFn = asyncio.sleep,
):
    """
    Forward one proxied GET.

    Returns a RelayedResponse for any upstream answer the policy accepts,
    and a ProxyErrorBody once every attempt has failed.
    """
    try:
        target = build_target_url(raw, base_url)
    except (ValueError, httpx.InvalidURL) as e:
        logger.warning(f"Cannot resolve proxy path {raw!r}: {e}")
        return proxy_error(str(e), base_url, raw)

    request = RetryingRequest(client, target, policy, sleep=sleep)
    try:
        response = await request.run()
    except UpstreamExhausted as e:
        return proxy_error(str(e.last_error or e), base_url, raw)
    return _relay(response)
