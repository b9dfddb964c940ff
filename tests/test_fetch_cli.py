from pathlib import Path
import sys
from types import SimpleNamespace

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import fetch_cli
from collector.backend_client import BackendClient


def test_render_table_aligns_columns():
    out = fetch_cli.render_table(["Time", "Hs (m)"], [["01/01 10:00", "1.5"], ["01/01 11:00", "12.25"]])
    lines = out.splitlines()
    assert lines[0] == "Time         Hs (m)"
    assert lines[1] == "-----------  ------"
    assert lines[2] == "01/01 10:00     1.5"
    assert lines[3] == "01/01 11:00   12.25"


def test_build_client_direct_and_via_proxy(monkeypatch):
    monkeypatch.setenv("BACKEND_URL", "http://backend.test")

    direct, _ = fetch_cli.build_client(SimpleNamespace(via_proxy=None))
    assert isinstance(direct, BackendClient)
    assert direct.url_for("/health") == "http://backend.test/health"

    proxied, _ = fetch_cli.build_client(SimpleNamespace(via_proxy="http://localhost:3000"))
    assert proxied.url_for("/health") == "http://localhost:3000/api/proxy?path=%2Fhealth"
