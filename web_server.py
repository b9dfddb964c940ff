# Load environment variables FIRST (before any other imports)
from __future__ import annotations

from dotenv import load_dotenv
load_dotenv()

import asyncio
import logging
import os
from datetime import date, datetime
from typing import Any, Dict, Optional, Set, Tuple

import httpx
from fastapi import FastAPI, Response
from fastapi.responses import JSONResponse

# Silence verbose loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
logger = logging.getLogger("web_server")

from config import BackendConfig, load_backend_config
from collector.backend_client import BackendClient
from collector.proxy import DEFAULT_PROXY_PATH, ProxyErrorBody, forward
from collector.resilient_fetcher import UpstreamExhausted, proxy_policy
from core.display import (
    is_multi_day,
    observation_chart_points,
    summary_fields,
    tide_chart_points,
    tide_extremes,
    upcoming_extremes,
)

CONFIG: BackendConfig = load_backend_config()

# Backoff wait between upstream attempts (patched in tests)
_backoff_sleep = asyncio.sleep

# Strong references to fire-and-forget tasks until they finish
_background_tasks: Set[asyncio.Task] = set()

app = FastAPI(title="Coastal Dashboard")


def _upstream_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=CONFIG.request_timeout_s, follow_redirects=True)


def _backend_client(client: httpx.AsyncClient) -> BackendClient:
    return BackendClient.from_config(CONFIG, client=client)


def _day_range(start: Optional[str], end: Optional[str]) -> Tuple[date, date]:
    today = datetime.now(CONFIG.tzinfo).date()
    start_day = date.fromisoformat(start) if start else today
    end_day = date.fromisoformat(end) if end else start_day
    if end_day < start_day:
        raise ValueError("end must not be before start")
    return start_day, end_day


def _bad_request(detail: str) -> JSONResponse:
    return JSONResponse(status_code=422, content={"ok": False, "error": "invalid_range", "detail": detail})


def _upstream_failed(e: UpstreamExhausted) -> JSONResponse:
    return JSONResponse(
        status_code=502,
        content={
            "ok": False,
            "error": "upstream_exhausted",
            "detail": str(e),
            "status": e.status_code,
        },
    )


def _finish_background_task(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Background task {task.get_name()} failed: {exc!r}")


def _spawn(coro, name: str) -> asyncio.Task:
    task = asyncio.create_task(coro, name=name)
    _background_tasks.add(task)
    task.add_done_callback(_finish_background_task)
    return task


@app.on_event("startup")
async def startup_event():
    """Wake the backend in the background; it may be suspended."""
    _spawn(warm_backend(), "warm_backend")


async def warm_backend() -> bool:
    async with _upstream_client() as client:
        awake = await _backend_client(client).wake()
    logger.info(f"Backend warm-up ping {'answered' if awake else 'pending'} ({CONFIG.base_url})")
    return awake


@app.get("/api/proxy")
async def proxy(path: str = DEFAULT_PROXY_PATH):
    """
    Relay a GET to the backend.

    `path` is the logical backend path (already URL-decoded once by the
    framework). Upstream status, body and content-type are passed through;
    total failure answers 502 with a JSON error body.
    """
    policy = proxy_policy(
        max_attempts=CONFIG.proxy_max_attempts,
        base_delay_s=CONFIG.backoff_base_s,
        timeout_s=CONFIG.request_timeout_s,
    )
    async with _upstream_client() as client:
        result = await forward(path, CONFIG.base_url, client, policy, sleep=_backoff_sleep)

    if isinstance(result, ProxyErrorBody):
        logger.error(f"Proxy failed for {path!r}: {result.detail}")
        return JSONResponse(status_code=502, content=result.model_dump())
    return Response(
        content=result.content,
        status_code=result.status_code,
        headers={"content-type": result.content_type},
    )


@app.get("/api/waves")
async def get_waves(start: Optional[str] = None, end: Optional[str] = None):
    """Deduplicated, time-ordered wave observations for a day range (default: today)."""
    try:
        start_day, end_day = _day_range(start, end)
    except ValueError as e:
        return _bad_request(str(e))

    async with _upstream_client() as client:
        try:
            observations = await _backend_client(client).fetch_waves(start_day, end_day)
        except UpstreamExhausted as e:
            return _upstream_failed(e)

    return {
        "start": start_day.isoformat(),
        "end": end_day.isoformat(),
        "items": [o.to_dict() for o in observations],
        "chart": observation_chart_points(observations),
        "multi_day": is_multi_day(observations, CONFIG.tzinfo),
    }


@app.get("/api/tides")
async def get_tides(start: Optional[str] = None, end: Optional[str] = None):
    """Tide heights and high/low events for a day range (default: today)."""
    try:
        start_day, end_day = _day_range(start, end)
    except ValueError as e:
        return _bad_request(str(e))

    async with _upstream_client() as client:
        try:
            events = await _backend_client(client).fetch_tides(start_day, end_day)
        except UpstreamExhausted as e:
            return _upstream_failed(e)

    now = datetime.now(CONFIG.tzinfo)
    return {
        "start": start_day.isoformat(),
        "end": end_day.isoformat(),
        "items": [e.to_dict() for e in events],
        "chart": tide_chart_points(events),
        "extremes": [e.to_dict() for e in tide_extremes(events)],
        "upcoming": [e.to_dict() for e in upcoming_extremes(events, now)],
        "multi_day": is_multi_day(events, CONFIG.tzinfo),
    }


@app.get("/api/summary")
async def get_summary():
    """Daily averages, flattened into labelled display fields."""
    async with _upstream_client() as client:
        try:
            summary = await _backend_client(client).fetch_summary()
        except UpstreamExhausted as e:
            return _upstream_failed(e)

    fields: list[Dict[str, Any]] = summary_fields(summary)
    return {"site": CONFIG.site_name, "fields": fields}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "3000")))
