import asyncio
from datetime import date, timezone
from pathlib import Path
import sys

import httpx
import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import web_server
from collector.backend_client import BackendClient, api, range_path
from collector.resilient_fetcher import RetryPolicy, UpstreamExhausted
from config import BackendConfig
from core.models import TideType

UTC = timezone.utc
FAST = RetryPolicy(max_attempts=2, base_delay_s=0.0)

WAVE_ROWS = {
    "items": [
        {"ts": "2024-01-01 10:00:05", "hs": 1.4},
        {"ts": "2024-01-01 10:00:00", "waveHeight": 1.2, "tp": None},
        {"datetime": "2024-01-01T10:00:00Z", "wavePeriod": 8.5, "wd": 400},
        {"hs": 9.9},
    ]
}


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_api_encodes_the_whole_logical_path():
    assert api("/health") == "/api/proxy?path=%2Fhealth"
    assert api("/waves/?start=a&end=b") == "/api/proxy?path=%2Fwaves%2F%3Fstart%3Da%26end%3Db"


def test_range_path_uses_local_day_bounds():
    path = range_path("tides", date(2024, 1, 1), "2024-01-02", UTC)
    assert path == "/tides/?start=2024-01-01T00%3A00%3A00&end=2024-01-02T23%3A59%3A59"


def test_url_for_direct_and_proxied():
    direct = BackendClient("http://backend.test/", use_proxy=False)
    proxied = BackendClient("http://dash.test")
    assert direct.url_for("/health") == "http://backend.test/health"
    assert proxied.url_for("/health") == "http://dash.test/api/proxy?path=%2Fhealth"


def test_fetch_waves_runs_the_full_pipeline():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=WAVE_ROWS)

    async def scenario():
        async with _client(handler) as http:
            backend = BackendClient("http://backend.test", use_proxy=False, policy=FAST, tz=UTC, client=http)
            return await backend.fetch_waves("2024-01-01", "2024-01-01")

    observations = asyncio.run(scenario())

    assert seen[0].url.path == "/waves/"
    assert seen[0].url.params["start"] == "2024-01-01T00:00:00"
    assert seen[0].url.params["end"] == "2024-01-01T23:59:59"

    assert len(observations) == 3
    untimed, first, second = observations
    assert untimed.time is None and untimed.hs == 9.9
    assert (first.hs, first.tp, first.wd) == (1.2, 8.5, 40.0)
    assert second.hs == 1.4


def test_fetch_tides_through_the_proxy():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"data": [
            {"time": "2024-01-01 16:40", "height": 0.2, "type": "baixa-mar"},
            {"time": "2024-01-01 10:20", "height": 1.3, "type": "preamar"},
        ]})

    async def scenario():
        async with _client(handler) as http:
            backend = BackendClient("http://dash.test", policy=FAST, tz=UTC, client=http)
            return await backend.fetch_tides(date(2024, 1, 1), date(2024, 1, 1))

    events = asyncio.run(scenario())

    assert seen[0].url.path == "/api/proxy"
    assert seen[0].url.params["path"].startswith("/tides/?start=2024-01-01T00%3A00%3A00")
    assert [e.type for e in events] == [TideType.HIGH, TideType.LOW]


def test_exhaustion_propagates():
    async def scenario():
        async with _client(lambda r: httpx.Response(503)) as http:
            backend = BackendClient("http://backend.test", use_proxy=False, policy=FAST, client=http)
            await backend.fetch_summary()

    with pytest.raises(UpstreamExhausted) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.attempts == 2


def test_wake_reports_whether_backend_answered():
    def refuse(request):
        raise httpx.ConnectError("refused", request=request)

    async def scenario(handler):
        async with _client(handler) as http:
            return await BackendClient("http://backend.test", use_proxy=False, client=http).wake()

    assert asyncio.run(scenario(lambda r: httpx.Response(200, json={"status": "ok"}))) is True
    assert asyncio.run(scenario(refuse)) is False
    assert asyncio.run(scenario(lambda r: httpx.Response(503))) is False


def test_from_config_uses_configured_backend():
    config = BackendConfig(base_url="http://backend.test", fetch_max_attempts=3, timezone="UTC")
    backend = BackendClient.from_config(config)
    assert backend.use_proxy is False
    assert backend.policy.max_attempts == 3
    assert backend.url_for("/health") == "http://backend.test/health"

    via_dash = BackendClient.from_config(config, base_url="http://dash.test", use_proxy=True)
    assert via_dash.url_for("/health") == "http://dash.test/api/proxy?path=%2Fhealth"


@pytest.fixture
def dashboard(monkeypatch):
    def install(handler):
        monkeypatch.setattr(
            web_server,
            "CONFIG",
            BackendConfig(base_url="http://backend.test", timezone="UTC", fetch_max_attempts=2, backoff_base_s=0.0),
        )
        monkeypatch.setattr(web_server, "_upstream_client", lambda: _client(handler))
        return TestClient(web_server.app)

    return install


def test_waves_endpoint(dashboard):
    client = dashboard(lambda r: httpx.Response(200, json=WAVE_ROWS))
    resp = client.get("/api/waves", params={"start": "2024-01-01"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["start"] == data["end"] == "2024-01-01"
    assert len(data["items"]) == 3
    assert [p["hs"] for p in data["chart"]] == [1.2, 1.4]
    assert data["multi_day"] is False


def test_tides_endpoint_lists_extremes(dashboard):
    rows = [
        {"time": "2024-01-01 04:00", "height": 1.2, "type": "High"},
        {"time": "2024-01-01 07:00", "height": 0.8},
        {"time": "2024-01-02 10:00", "height": 0.1, "type": "Low"},
    ]
    client = dashboard(lambda r: httpx.Response(200, json=rows))
    resp = client.get("/api/tides", params={"start": "2024-01-01", "end": "2024-01-02"})
    data = resp.json()
    assert len(data["items"]) == 3
    assert [e["type"] for e in data["extremes"]] == ["High", "Low"]
    assert data["multi_day"] is True


def test_summary_endpoint(dashboard):
    summary = {"site": "Leme", "stats": {"date": "2024-01-01", "hs_avg": 1.234, "dp_avg": 156.4}}
    client = dashboard(lambda r: httpx.Response(200, json=summary))
    data = client.get("/api/summary").json()
    displays = {f["key"]: f["display"] for f in data["fields"]}
    assert displays == {"date": "2024-01-01", "hs_avg": "1.23 m", "dp_avg": "156° SSE"}


def test_endpoint_reports_exhausted_backend(dashboard):
    client = dashboard(lambda r: httpx.Response(500))
    resp = client.get("/api/summary")
    assert resp.status_code == 502
    assert resp.json()["error"] == "upstream_exhausted"
    assert resp.json()["status"] == 500


def test_invalid_range_is_rejected(dashboard):
    client = dashboard(lambda r: httpx.Response(200, json=[]))
    assert client.get("/api/waves", params={"start": "yesterday"}).status_code == 422
    assert client.get("/api/tides", params={"start": "2024-01-02", "end": "2024-01-01"}).status_code == 422


def test_summary_endpoint_survives_nan_literals(dashboard):
    body = b'{"date": "2024-01-01", "hs_avg": 1.2, "dp_avg": NaN, "wind_dir_avg": Infinity}'
    client = dashboard(lambda r: httpx.Response(200, content=body, headers={"content-type": "application/json"}))
    resp = client.get("/api/summary")
    assert resp.status_code == 200
    fields = {f["key"]: f for f in resp.json()["fields"]}
    assert fields["dp_avg"]["value"] is None
    assert fields["dp_avg"]["display"] == "—"
    assert fields["wind_dir_avg"]["display"] == "—"
    assert fields["hs_avg"]["display"] == "1.2 m"
