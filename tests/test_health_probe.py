from types import SimpleNamespace

import pytest
import requests

from apps.bot import health


def probe(monkeypatch, argv, response=None, error=None):
    calls = []

    def fake_get(url, timeout):
        calls.append(url)
        if error is not None:
            raise error
        return response

    monkeypatch.setattr(health.sys, "argv", argv)
    monkeypatch.setattr(health.requests, "get", fake_get)
    with pytest.raises(SystemExit) as exc_info:
        health.main()
    return exc_info.value.code, calls


def test_healthy_bot(monkeypatch):
    response = SimpleNamespace(ok=True, json=lambda: {"status": "ok"})
    code, calls = probe(monkeypatch, ["health"], response)
    assert code == 0
    assert calls == ["http://127.0.0.1:8080/health"]


def test_scrapper_port_is_used(monkeypatch):
    response = SimpleNamespace(ok=True, json=lambda: {"status": "ok"})
    _, calls = probe(monkeypatch, ["health", "scrapper"], response)
    assert calls == ["http://127.0.0.1:8081/health"]


def test_unreachable_service(monkeypatch):
    code, _ = probe(monkeypatch, ["health"], error=requests.ConnectionError("refused"))
    assert code == 1
