"""
Observations backend client.

Knows the backend's logical endpoints (summary, tides, waves, health) and
runs the full acquisition pipeline for each series:
fetch (with retries) -> row extraction -> field mapping -> dedup merge.
"""

from __future__ import annotations

import logging
from datetime import date, tzinfo
from typing import Any, List, Optional, Union
from urllib.parse import quote

import httpx

from collector.resilient_fetcher import RetryPolicy, UpstreamExhausted, fetch_json, fetch_response
from config import BackendConfig, get_zone
from core.field_mapper import map_observations, map_tide_events
from core.merger import merge_records
from core.models import CanonicalObservation, CanonicalTideEvent
from core.time_parser import to_local_iso

logger = logging.getLogger("backend_client")

PROXY_ENDPOINT = "/api/proxy"
SUMMARY_PATH = "/waves/summary"
HEALTH_PATH = "/health"
WAVES_KIND = "waves"
TIDES_KIND = "tides"

DayLike = Union[date, str]


def api(path: str) -> str:
    """Proxy URL for a logical backend path."""
    return f"{PROXY_ENDPOINT}?path={quote(path, safe='')}"


def range_path(kind: str, start: DayLike, end: DayLike, tz: Optional[tzinfo] = None) -> str:
    """`/<kind>/?start=<day start>&end=<day end>` in local wall time."""
    start_iso = quote(to_local_iso(start, end=False, tz=tz), safe="")
    end_iso = quote(to_local_iso(end, end=True, tz=tz), safe="")
    return f"/{kind}/?start={start_iso}&end={end_iso}"


class BackendClient:
    """
    Fetches and normalizes backend series.

    With use_proxy=True `base_url` is the dashboard origin and every path is
    sent through its /api/proxy endpoint; otherwise `base_url` is the
    backend origin itself.
    """

    def __init__(
        self,
        base_url: str,
        *,
        use_proxy: bool = True,
        policy: Optional[RetryPolicy] = None,
        tz: Optional[tzinfo] = None,
        warmup_timeout_s: float = 4.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.use_proxy = use_proxy
        self.policy = policy or RetryPolicy()
        self.tz = tz or get_zone(None)
        self.warmup_timeout_s = warmup_timeout_s
        self._client = client

    @classmethod
    def from_config(cls, config: BackendConfig, **kwargs) -> "BackendClient":
        kwargs.setdefault("use_proxy", False)
        base_url = kwargs.pop("base_url", None) or config.base_url
        policy = RetryPolicy(
            max_attempts=config.fetch_max_attempts,
            base_delay_s=config.backoff_base_s,
            timeout_s=config.request_timeout_s,
        )
        return cls(
            base_url,
            policy=policy,
            tz=config.tzinfo,
            warmup_timeout_s=config.warmup_timeout_s,
            **kwargs,
        )

    def url_for(self, path: str) -> str:
        relative = api(path) if self.use_proxy else path
        return f"{self.base_url}{relative}"

    async def get_json(self, path: str, max_attempts: Optional[int] = None) -> Any:
        return await fetch_json(
            self.url_for(path),
            max_attempts=max_attempts,
            policy=self.policy,
            client=self._client,
        )

    async def fetch_summary(self) -> Any:
        return await self.get_json(SUMMARY_PATH)

    async def fetch_waves(self, start: DayLike, end: DayLike) -> List[CanonicalObservation]:
        payload = await self.get_json(range_path(WAVES_KIND, start, end, self.tz))
        records = map_observations(payload, self.tz)
        merged = merge_records(records)
        logger.info(f"waves {start}..{end}: {len(records)} rows -> {len(merged)} observations")
        return merged

    async def fetch_tides(self, start: DayLike, end: DayLike) -> List[CanonicalTideEvent]:
        payload = await self.get_json(range_path(TIDES_KIND, start, end, self.tz))
        records = map_tide_events(payload, self.tz)
        merged = merge_records(records)
        logger.info(f"tides {start}..{end}: {len(records)} rows -> {len(merged)} events")
        return merged

    async def wake(self) -> bool:
        """
        Fire one short health ping so a sleeping backend starts booting.

        Failures are expected while the backend is cold and only logged.
        """
        policy = RetryPolicy(max_attempts=1, timeout_s=self.warmup_timeout_s)
        url = self.url_for(HEALTH_PATH)
        try:
            await fetch_response(url, policy=policy, client=self._client)
        except UpstreamExhausted as e:
            logger.debug(f"Warm-up ping to {url} did not complete: {e}")
            return False
        return True
