from __future__ import annotations

from datetime import date

from fastapi.testclient import TestClient
from kombu.exceptions import OperationalError

from ratebridge.main import create_app
from ratebridge.worker import tasks


class _FakeTask:
    def __init__(self) -> None:
        self.calls: list[tuple] = []

    def delay(self, *args):
        self.calls.append(args)
        return type("AsyncResult", (), {"id": "task-123"})()


def _client() -> TestClient:
    return TestClient(create_app())


def test_healthz():
    resp = _client().get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}
    assert resp.headers.get("x-request-id")


def test_convert_returns_result(add_rate):
    add_rate("EUR", "USD", "0.95", date(2024, 1, 3))

    resp = _client().post(
        "/api/convert", json={"amount": "100", "from_currency": "eur", "to_currency": "USD"}
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["from_currency"] == "EUR"
    assert body["to_currency"] == "USD"
    assert body["converted_amount"] == "95.00"
    assert body["rate_date"] == "2024-01-03"
    assert body["is_direct_rate"] is True
    assert body["intermediate_currency"] is None


def test_convert_validation_errors_are_422():
    client = _client()

    negative = client.post(
        "/api/convert", json={"amount": "-5", "from_currency": "EUR", "to_currency": "USD"}
    )
    assert negative.status_code == 422
    assert "positive" in negative.json()["detail"]

    unknown = client.post(
        "/api/convert", json={"amount": "5", "from_currency": "XXX", "to_currency": "USD"}
    )
    assert unknown.status_code == 422
    assert "XXX" in unknown.json()["detail"]


def test_convert_accepts_padded_lowercase_codes(add_rate):
    add_rate("EUR", "USD", "0.95", date(2024, 1, 3))
    client = _client()

    resp = client.post(
        "/api/convert", json={"amount": "100", "from_currency": " eur ", "to_currency": "usd"}
    )
    assert resp.status_code == 200
    assert resp.json()["from_currency"] == "EUR"
    assert resp.json()["converted_amount"] == "95.00"

    too_long = client.post(
        "/api/convert", json={"amount": "5", "from_currency": "XXXX", "to_currency": "USD"}
    )
    assert too_long.status_code == 422
    assert "XXXX" in too_long.json()["detail"]


def test_convert_missing_rate_is_404():
    resp = _client().post(
        "/api/convert", json={"amount": "5", "from_currency": "EUR", "to_currency": "CHF"}
    )
    assert resp.status_code == 404
    assert "EUR" in resp.json()["detail"]


def test_list_currencies():
    resp = _client().get("/api/currencies")
    assert resp.status_code == 200
    codes = {c["code"] for c in resp.json()}
    assert len(codes) == 33
    assert {"USD", "EUR", "JPY"} <= codes


def test_latest_rates_for_base(add_rate):
    add_rate("USD", "EUR", "0.90", date(2024, 1, 1))
    add_rate("USD", "EUR", "0.91", date(2024, 1, 2))
    add_rate("USD", "GBP", "0.79", date(2024, 1, 2))
    client = _client()

    resp = client.get("/api/exchange-rates/usd")
    assert resp.status_code == 200
    rows = resp.json()
    assert [r["target_code"] for r in rows] == ["EUR", "GBP"]
    assert {r["date"] for r in rows} == {"2024-01-02"}

    assert client.get("/api/exchange-rates/XXX").status_code == 404


def test_sync_endpoints_dispatch_tasks(monkeypatch):
    daily = _FakeTask()
    single = _FakeTask()
    monkeypatch.setattr(tasks, "sync_daily_rates_task", daily)
    monkeypatch.setattr(tasks, "sync_rates_task", single)
    client = _client()

    resp = client.post("/api/exchange-rates/sync-daily")
    assert resp.status_code == 202
    assert resp.json()["task_id"] == "task-123"
    assert daily.calls == [()]

    resp = client.post("/api/exchange-rates/sync", json={"base_currency": "gbp"})
    assert resp.status_code == 202
    assert resp.json()["base_currency"] == "GBP"
    assert single.calls == [("GBP", False)]

    resp = client.post("/api/exchange-rates/sync", json={})
    assert resp.status_code == 202
    assert single.calls[-1] == (None, False)


def test_sync_passes_force_and_resolves_default_base(monkeypatch):
    single = _FakeTask()
    monkeypatch.setattr(tasks, "sync_rates_task", single)
    client = _client()

    resp = client.post("/api/exchange-rates/sync", json={"base_currency": "gbp", "force": True})
    assert resp.status_code == 202
    assert resp.json()["force"] is True
    assert single.calls == [("GBP", True)]

    resp = client.post("/api/exchange-rates/sync", json={"use_default_base": True})
    assert resp.status_code == 202
    assert resp.json()["base_currency"] == "USD"
    assert single.calls[-1] == ("USD", False)


def test_sync_rejects_unsupported_base(monkeypatch):
    single = _FakeTask()
    monkeypatch.setattr(tasks, "sync_rates_task", single)

    resp = _client().post("/api/exchange-rates/sync", json={"base_currency": "XXX"})

    assert resp.status_code == 422
    assert single.calls == []


def test_sync_returns_503_when_broker_is_down(monkeypatch):
    class _DownTask:
        def delay(self, *args):
            raise OperationalError("Error 111 connecting to localhost:6379. Connection refused.")

    monkeypatch.setattr(tasks, "sync_daily_rates_task", _DownTask())

    resp = _client().post("/api/exchange-rates/sync-daily")

    assert resp.status_code == 503
